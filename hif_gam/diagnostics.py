"""
Residual checks on a fitted model. Nothing here refits or alters the model;
every finding is a warning string on the report and the run carries on.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.stats.diagnostic import acorr_ljungbox
from statsmodels.tsa.stattools import acf

from .config import DiagnosticsConfig
from .model import GamFit
from .terms import SMOOTH


@dataclass(frozen=True, eq=False)
class ResidualCheck:
    scaled_residuals: np.ndarray
    ks_statistic: float
    ks_p_value: float
    dispersion_ratio: float
    dispersion_p_value: float
    n_outliers: int
    outlier_p_value: float


@dataclass(frozen=True, eq=False)
class AutocorrelationCheck:
    lags: np.ndarray
    acf: np.ndarray
    bound: float
    ljung_box_statistic: float
    ljung_box_p_value: float

    @property
    def exceeding_lags(self) -> list[int]:
        return [int(lag) for lag, v in zip(self.lags, self.acf) if lag > 0 and abs(v) > self.bound]


@dataclass(frozen=True, eq=False)
class DiagnosticsReport:
    k_check: pd.DataFrame
    residuals: ResidualCheck
    autocorrelation: AutocorrelationCheck
    flags: tuple[str, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.flags


def _k_index(ordered_resid: np.ndarray, var: float) -> float:
    if ordered_resid.size < 2 or var <= 0.0:
        return float("nan")
    return float(np.mean(np.diff(ordered_resid) ** 2) / (2.0 * var))


def basis_check(fit: GamFit, cfg: DiagnosticsConfig) -> pd.DataFrame:
    """k', edf, k-index and its randomisation p-value per spline smooth."""
    rng = np.random.default_rng(cfg.seed)
    resid = np.asarray(fit.residuals, dtype=float)
    var = float(np.var(resid, ddof=1)) if resid.size > 1 else 0.0
    rows = {}
    for blk in fit.terms.blocks_of_kind(SMOOTH):
        x = fit.data[blk.spec.var].to_numpy(dtype=float)
        order = np.argsort(x, kind="mergesort")
        k_index = _k_index(resid[order], var)
        sims = np.array([_k_index(rng.permutation(resid), var) for _ in range(cfg.n_rep)])
        p_value = float(np.mean(sims <= k_index)) if np.isfinite(k_index) else float("nan")
        k_prime = blk.n_coef
        edf = fit.term_edf(blk.label)
        rows[blk.label] = {
            "k_prime": float(k_prime),
            "edf": edf,
            "edf_ratio": edf / k_prime,
            "k_index": k_index,
            "p_value": p_value,
            "increase_k": bool(edf / k_prime >= cfg.edf_ratio_threshold),
        }
    cols = ["k_prime", "edf", "edf_ratio", "k_index", "p_value", "increase_k"]
    return pd.DataFrame.from_dict(rows, orient="index", columns=cols)


def simulated_residuals(fit: GamFit, cfg: DiagnosticsConfig) -> ResidualCheck:
    """Quantile residuals against responses simulated from the fitted Gaussian model."""
    rng = np.random.default_rng(cfg.seed)
    y = np.asarray(fit.y, dtype=float)
    mu = np.asarray(fit.fitted, dtype=float)
    n = y.size
    sims = mu[None, :] + rng.normal(0.0, np.sqrt(fit.scale), size=(cfg.n_sim, n))

    below = np.sum(sims < y[None, :], axis=0)
    ties = np.sum(sims == y[None, :], axis=0)
    scaled = (below + rng.uniform(size=n) * (ties + 1)) / (cfg.n_sim + 1)
    ks = stats.kstest(scaled, "uniform")

    obs_var = float(np.var(y - mu))
    sim_var = np.var(sims - mu[None, :], axis=1)
    ratio = obs_var / float(np.mean(sim_var)) if np.mean(sim_var) > 0 else float("nan")
    disp_p = float(min(1.0, 2.0 * min(np.mean(sim_var >= obs_var), np.mean(sim_var <= obs_var))))

    n_out = int(np.sum((below == 0) | (below == cfg.n_sim)))
    out_p = float(stats.binomtest(n_out, n, p=2.0 / (cfg.n_sim + 1)).pvalue)

    return ResidualCheck(
        scaled_residuals=scaled,
        ks_statistic=float(ks.statistic),
        ks_p_value=float(ks.pvalue),
        dispersion_ratio=ratio,
        dispersion_p_value=disp_p,
        n_outliers=n_out,
        outlier_p_value=out_p,
    )


def residual_autocorrelation(fit: GamFit, cfg: DiagnosticsConfig, level: float = 0.95) -> AutocorrelationCheck:
    resid = np.asarray(fit.residuals, dtype=float)
    n = resid.size
    nlags = int(max(1, min(cfg.max_lag, n - 2)))
    values = acf(resid, nlags=nlags, fft=False)
    lb = acorr_ljungbox(resid, lags=[nlags])
    bound = float(stats.norm.ppf(0.5 + level / 2.0) / np.sqrt(n))
    return AutocorrelationCheck(
        lags=np.arange(values.size),
        acf=np.asarray(values, dtype=float),
        bound=bound,
        ljung_box_statistic=float(lb["lb_stat"].iloc[0]),
        ljung_box_p_value=float(lb["lb_pvalue"].iloc[0]),
    )


def run_diagnostics(fit: GamFit, config: DiagnosticsConfig | None = None) -> DiagnosticsReport:
    cfg = config or DiagnosticsConfig()
    k_check = basis_check(fit, cfg)
    resid = simulated_residuals(fit, cfg)
    auto = residual_autocorrelation(fit, cfg)

    flags = []
    for label, row in k_check.iterrows():
        if row["increase_k"]:
            flags.append(
                f"{label}: edf {row['edf']:.2f} is close to k' = {int(row['k_prime'])} "
                f"(k-index {row['k_index']:.2f}, p = {row['p_value']:.3f}); consider a larger k"
            )
    if resid.ks_p_value < cfg.alpha:
        flags.append(
            f"simulated residuals deviate from uniform (KS D = {resid.ks_statistic:.3f}, p = {resid.ks_p_value:.3g})"
        )
    if resid.dispersion_p_value < cfg.alpha:
        flags.append(
            f"residual dispersion differs from the fitted model "
            f"(ratio {resid.dispersion_ratio:.2f}, p = {resid.dispersion_p_value:.3g})"
        )
    if resid.outlier_p_value < cfg.alpha:
        flags.append(
            f"{resid.n_outliers} residual(s) fall outside the simulation envelope (p = {resid.outlier_p_value:.3g})"
        )
    if auto.ljung_box_p_value < cfg.alpha:
        lags = ", ".join(str(v) for v in auto.exceeding_lags[:10]) or "none individually"
        flags.append(
            f"residuals are autocorrelated (Ljung-Box Q = {auto.ljung_box_statistic:.2f}, "
            f"p = {auto.ljung_box_p_value:.3g}; lags beyond the band: {lags})"
        )
    return DiagnosticsReport(k_check=k_check, residuals=resid, autocorrelation=auto, flags=tuple(flags))
