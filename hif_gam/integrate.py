from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy.integrate import cumulative_trapezoid

from .errors import IntegrationError


@dataclass(frozen=True, eq=False)
class AucSeries:
    time: np.ndarray
    response: np.ndarray
    cumulative: np.ndarray

    @property
    def total(self) -> float:
        return float(self.cumulative[-1])

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({"time": self.time, "response": self.response, "auc": self.cumulative})


def cumulative_auc(time, response) -> AucSeries:
    """Running trapezoidal integral of ``response`` over ``time``, starting at zero.

    Confidence bands on the response are not carried into the integral.
    """
    try:
        t = np.asarray(time, dtype=float).ravel()
        r = np.asarray(response, dtype=float).ravel()
    except (TypeError, ValueError) as e:
        raise IntegrationError(f"time and response must be numeric: {e}") from e
    if t.size != r.size:
        raise IntegrationError(f"time and response lengths differ ({t.size} vs {r.size})")
    if t.size < 2:
        raise IntegrationError(f"need at least two time points to integrate, got {t.size}")
    if not (np.all(np.isfinite(t)) and np.all(np.isfinite(r))):
        raise IntegrationError("time and response must be finite")
    steps = np.diff(t)
    if np.any(steps <= 0.0):
        bad = int(np.argmax(steps <= 0.0)) + 1
        raise IntegrationError(
            f"time must be strictly increasing; t[{bad}]={t[bad]:g} follows t[{bad - 1}]={t[bad - 1]:g}"
        )
    cum = cumulative_trapezoid(r, t, initial=0.0)
    return AucSeries(time=t, response=r, cumulative=cum)


def auc_from_curve(curve) -> AucSeries:
    return cumulative_auc(curve.x, curve.fit)
