"""
Penalized likelihood fit of the additive model.

Coefficients solve the penalized normal equations
``(X'X + sum_j lambda_j S_j) beta = X'y``. The smoothing parameters are chosen
by maximising the Laplace marginal likelihood with the scale parameter
profiled out. Under "ML" only the penalized coefficients are integrated out
and the unpenalized ones (intercept, parametric factors) are treated as fixed;
"REML" integrates those too. The optimiser works on log smoothing parameters
and is restarted from a few starting points, keeping the best optimum.
"""

from __future__ import annotations

import math
import warnings
from dataclasses import dataclass, field
from pathlib import Path

import joblib
import numpy as np
import pandas as pd
from scipy.optimize import minimize
from tqdm import tqdm

from .config import ModelConfig
from .errors import FitError
from .terms import ModelSpec, TermSet, default_model_spec

LOG_LAMBDA_BOUNDS = (-12.0, 18.0)
LOG_LAMBDA_STARTS = (-2.0, 2.0, 6.0)
PENALTY_RANK_TOL = 1e-7
_BAD_SCORE = 1e30


@dataclass(frozen=True, eq=False)
class GamFit:
    spec: ModelSpec
    terms: TermSet
    method: str
    data: pd.DataFrame
    coef: np.ndarray
    Vp: np.ndarray
    edf_coef: np.ndarray
    lam: np.ndarray
    scale: float
    fitted: np.ndarray
    residuals: np.ndarray
    y: np.ndarray
    score: float
    converged: bool
    n_dropped: int = 0
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def n(self) -> int:
        return int(self.y.size)

    @property
    def edf(self) -> float:
        return float(np.sum(self.edf_coef))

    @property
    def df_residual(self) -> float:
        return float(self.n - self.edf)

    @property
    def coef_names(self) -> list[str]:
        return self.terms.coef_names()

    def term_edf(self, label: str) -> float:
        blk = self.terms.block(label)
        return float(np.sum(self.edf_coef[blk.cols]))

    def smoothing_parameters(self) -> pd.Series:
        index = []
        seen: dict[str, int] = {}
        for owner in self.terms.penalty_owner:
            seen[owner] = seen.get(owner, 0) + 1
            index.append(f"{owner}[{seen[owner]}]")
        return pd.Series(np.asarray(self.lam, dtype=float), index=index, name="lambda")

    def predict(self, frame: pd.DataFrame, exclude_random: bool = False) -> tuple[np.ndarray, np.ndarray]:
        """Linear predictor and its standard error for the rows of ``frame``."""
        x = self.terms.model_matrix(frame, exclude_random=exclude_random)
        return self.predict_rows(x)

    def predict_rows(self, x: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        fit = x @ self.coef
        se = np.sqrt(np.maximum(np.einsum("ij,jk,ik->i", x, self.Vp, x), 0.0))
        return fit, se


def _frozen(a: np.ndarray) -> np.ndarray:
    out = np.array(a, dtype=float, copy=True)
    out.setflags(write=False)
    return out


def _split_penalized(penalties: list[np.ndarray], p: int) -> tuple[np.ndarray, np.ndarray]:
    """Orthonormal bases for the penalized range and the unpenalized null space of the summed penalty."""
    if not penalties:
        return np.zeros((p, 0)), np.eye(p)
    total = np.zeros((p, p))
    for s in penalties:
        total += s / max(np.linalg.norm(s, ord=1), 1e-300)
    vals, vecs = np.linalg.eigh(0.5 * (total + total.T))
    keep = vals > PENALTY_RANK_TOL * np.max(np.abs(vals))
    return vecs[:, keep], vecs[:, ~keep]


def _criterion(rho, ctx):
    lam = np.exp(rho)
    S = np.zeros_like(ctx["XtX"])
    for lam_i, sk in zip(lam, ctx["S_list"]):
        S += lam_i * sk
    A = ctx["XtX"] + S
    try:
        L = np.linalg.cholesky(A)
    except np.linalg.LinAlgError:
        return _BAD_SCORE
    beta = np.linalg.solve(L.T, np.linalg.solve(L, ctx["Xty"]))
    resid = ctx["y"] - ctx["X"] @ beta
    dp = float(resid @ resid + beta @ S @ beta)
    if not np.isfinite(dp) or dp <= 0.0:
        return _BAD_SCORE

    S_r = np.zeros_like(ctx["XRtXR"])
    for lam_i, sk in zip(lam, ctx["S_r_list"]):
        S_r += lam_i * sk
    sign_s, logdet_s = np.linalg.slogdet(S_r)
    if sign_s <= 0 or not np.isfinite(logdet_s):
        return _BAD_SCORE

    if ctx["method"] == "REML":
        n_eff = ctx["n"] - ctx["Mp"]
        logdet_a = 2.0 * float(np.sum(np.log(np.diag(L))))
    else:
        n_eff = ctx["n"]
        sign_a, logdet_a = np.linalg.slogdet(ctx["XRtXR"] + S_r)
        if sign_a <= 0:
            return _BAD_SCORE
    if n_eff <= 0:
        return _BAD_SCORE

    # -log likelihood with the scale parameter profiled out (phi = D_p / n_eff).
    val = 0.5 * (n_eff * math.log(2.0 * math.pi * dp / n_eff) + n_eff + logdet_a - logdet_s)
    if not np.isfinite(val):
        return _BAD_SCORE
    return val


def fit_gam(
    data: pd.DataFrame,
    spec: ModelSpec | None = None,
    config: ModelConfig | None = None,
    progress: bool = False,
) -> GamFit:
    config = config or ModelConfig()
    spec = spec or default_model_spec(config)

    missing = [v for v in spec.variables if v not in data.columns]
    if missing:
        raise FitError(f"Model variable(s) not found in data: {', '.join(missing)}")

    # Private copy; the caller's frame is never touched.
    frame = data.loc[:, list(spec.variables)].copy()
    n_before = len(frame)
    frame = frame.dropna().reset_index(drop=True)
    n_dropped = n_before - len(frame)
    try:
        y = frame[spec.response].to_numpy(dtype=float)
    except (TypeError, ValueError) as e:
        raise FitError(f"Response '{spec.response}' is not numeric: {e}") from e

    terms = TermSet.build(spec, frame, select=config.select)
    X = terms.model_matrix(frame)
    n, p = X.shape

    rng_basis, null_basis = _split_penalized(terms.penalties, p)
    Mp = null_basis.shape[1]
    if n <= Mp:
        raise FitError(f"Only {n} complete observations for {Mp} unpenalized coefficients")
    rank_f = int(np.linalg.matrix_rank(X @ null_basis)) if Mp else 0
    if rank_f < Mp:
        raise FitError(
            "Model matrix is rank deficient in its unpenalized part "
            f"(rank {rank_f} < {Mp}); check for collinear parametric terms"
        )

    X_r = X @ rng_basis
    ctx = {
        "X": X,
        "y": y,
        "n": n,
        "Mp": Mp,
        "method": config.method,
        "XtX": X.T @ X,
        "Xty": X.T @ y,
        "S_list": terms.penalties,
        "XRtXR": X_r.T @ X_r,
        "S_r_list": [rng_basis.T @ s @ rng_basis for s in terms.penalties],
    }

    m = len(terms.penalties)
    captured: list[str] = []
    best = None
    if m:
        bounds = [LOG_LAMBDA_BOUNDS] * m
        starts = [np.full(m, v) for v in LOG_LAMBDA_STARTS]
        with warnings.catch_warnings(record=True) as wlist:
            warnings.simplefilter("always")
            for x0 in tqdm(starts, desc="Fitting smoothing parameters", disable=not progress):
                opt = minimize(_criterion, x0=x0, args=(ctx,), method="L-BFGS-B", bounds=bounds)
                if not np.all(np.isfinite(opt.x)) or not np.isfinite(opt.fun):
                    continue
                if best is None or opt.fun < best.fun:
                    best = opt
        captured.extend(str(w.message) for w in wlist)
        if best is None or best.fun >= _BAD_SCORE:
            raise FitError("Smoothing parameter optimisation produced no finite likelihood; the penalized system is singular")
        rho = np.asarray(best.x, dtype=float)
        converged = bool(best.success)
        if not converged:
            captured.append(f"smoothing parameter optimisation stopped early: {best.message}")
        score = float(best.fun)
    else:
        rho = np.zeros(0)
        converged = True
        score = float(_criterion(rho, ctx))

    lam = np.exp(rho)
    S = np.zeros((p, p))
    for lam_i, sk in zip(lam, terms.penalties):
        S += lam_i * sk
    A = ctx["XtX"] + S
    try:
        A_inv = np.linalg.inv(A)
    except np.linalg.LinAlgError as e:
        raise FitError(f"Penalized normal equations are singular: {e}") from e
    coef = A_inv @ ctx["Xty"]
    if not np.all(np.isfinite(coef)):
        raise FitError("Fitted coefficients are not finite")

    edf_coef = np.diag(A_inv @ ctx["XtX"])
    fitted = X @ coef
    residuals = y - fitted
    edf = float(np.sum(edf_coef))
    df_resid = max(n - edf, 1e-8)
    scale = float(residuals @ residuals) / df_resid
    Vp = A_inv * scale

    return GamFit(
        spec=spec,
        terms=terms,
        method=config.method,
        data=frame,
        coef=_frozen(coef),
        Vp=_frozen(0.5 * (Vp + Vp.T)),
        edf_coef=_frozen(edf_coef),
        lam=_frozen(lam),
        scale=scale,
        fitted=_frozen(fitted),
        residuals=_frozen(residuals),
        y=_frozen(y),
        score=score,
        converged=converged,
        n_dropped=int(n_dropped),
        warnings=tuple(captured),
    )


def save_fit(fit: GamFit, path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    joblib.dump(fit, path)
    return path


def load_fit(path) -> GamFit:
    fit = joblib.load(Path(path))
    if not isinstance(fit, GamFit):
        raise TypeError(f"{path} does not hold a fitted model")
    return fit
