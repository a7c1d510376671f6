from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd
from pygam import LinearGAM, f, s

from .model import GamFit
from .terms import FACTOR, RANDOM, SMOOTH


@dataclass(frozen=True)
class ReferenceComparison:
    model_spec: str
    rmse_between: float
    correlation: float
    r2_model: float
    r2_reference: float
    reference_aicc: float | None
    reference_edof: float | None

    def as_dict(self) -> dict:
        return dict(self.__dict__)


def r2_score(y: np.ndarray, mu: np.ndarray) -> float:
    sst = float(np.sum((y - float(np.mean(y))) ** 2))
    if sst <= 0.0:
        return 0.0
    sse = float(np.sum((y - mu) ** 2))
    return 1.0 - sse / sst


def _pygam_inputs(fit: GamFit):
    data = fit.data
    columns = []
    col_of: dict[str, int] = {}

    def col(var, categorical):
        if var in col_of:
            return col_of[var]
        values = data[var]
        if categorical:
            values = pd.Categorical(values.astype(str)).codes.astype(float)
        columns.append(np.asarray(values, dtype=float))
        col_of[var] = len(columns) - 1
        return col_of[var]

    terms = None
    parts = []
    for blk in fit.terms.blocks:
        spec = blk.spec
        if spec.kind == SMOOTH:
            i = col(spec.var, False)
            if spec.by:
                j = col(spec.by, False)
                term = s(i, n_splines=spec.k, by=j)
                parts.append(f"s({i}, n_splines={spec.k}, by={j})")
            else:
                term = s(i, n_splines=spec.k)
                parts.append(f"s({i}, n_splines={spec.k})")
        elif spec.kind in (FACTOR, RANDOM):
            i = col(spec.var, True)
            term = f(i)
            parts.append(f"f({i})")
        else:
            continue
        terms = term if terms is None else terms + term
    X = np.column_stack(columns)
    return X, terms, "LinearGAM(" + " + ".join(parts) + ")"


def compare_with_pygam(fit: GamFit, lam_grid=None) -> ReferenceComparison:
    """Refit the same term structure with pyGAM (lambda by AICc grid search) and compare fitted values."""
    X, terms, model_spec = _pygam_inputs(fit)
    y = np.asarray(fit.y, dtype=float)
    if lam_grid is None:
        lam_grid = np.logspace(-3, 3, 11)
    gam = LinearGAM(terms)
    gam.gridsearch(X, y, lam=lam_grid, objective="AICc", progress=False)
    ref = np.asarray(gam.predict(X), dtype=float)
    ours = np.asarray(fit.fitted, dtype=float)

    if np.std(ref) > 0.0 and np.std(ours) > 0.0:
        corr = float(np.corrcoef(ref, ours)[0, 1])
    else:
        corr = float("nan")
    aicc = gam.statistics_.get("AICc")
    edof = gam.statistics_.get("edof")
    return ReferenceComparison(
        model_spec=f"{model_spec} [lam by AICc grid search]",
        rmse_between=float(np.sqrt(np.mean((ref - ours) ** 2))),
        correlation=corr,
        r2_model=r2_score(y, ours),
        r2_reference=r2_score(y, ref),
        reference_aicc=float(aicc) if aicc is not None else None,
        reference_edof=float(edof) if edof is not None else None,
    )
