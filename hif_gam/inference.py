from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy import stats

from .model import GamFit
from .terms import FACTOR, RANDOM, SMOOTH


@dataclass(frozen=True, eq=False)
class ModelSummary:
    formula: str
    method: str
    n: int
    parametric: pd.DataFrame
    smooth: pd.DataFrame
    r_sq_adj: float
    dev_explained: float
    scale: float
    score: float

    def to_text(self) -> str:
        out = [
            "Family: gaussian",
            "Link function: identity",
            "",
            "Formula:",
            self.formula,
            "",
            "Parametric coefficients:",
            self.parametric.to_string(float_format=lambda v: f"{v:.4g}"),
            "",
            "Approximate significance of smooth terms:",
            self.smooth.to_string(float_format=lambda v: f"{v:.4g}"),
            "",
            f"R-sq.(adj) = {self.r_sq_adj:.3f}   Deviance explained = {100.0 * self.dev_explained:.1f}%",
            f"-{self.method} = {self.score:.4f}  Scale est. = {self.scale:.5g}  n = {self.n}",
        ]
        return "\n".join(out)


def wald_statistic(beta: np.ndarray, V: np.ndarray, rank: int | None = None) -> tuple[float, int]:
    """``beta' V^{r-} beta`` with ``V`` truncated to its ``rank`` leading eigenvalues."""
    vals, vecs = np.linalg.eigh(0.5 * (V + V.T))
    order = np.argsort(vals)[::-1]
    vals, vecs = vals[order], vecs[:, order]
    if rank is not None:
        vals, vecs = vals[:rank], vecs[:, :rank]
    top = vals[0] if vals.size else 0.0
    keep = vals > max(top, 0.0) * 1e-10
    if not np.any(keep):
        return 0.0, 0
    proj = vecs[:, keep].T @ beta
    return float(np.sum(proj * proj / vals[keep])), int(np.sum(keep))


def _smooth_test(fit: GamFit, blk) -> dict:
    edf = fit.term_edf(blk.label)
    beta = fit.coef[blk.cols]
    V = fit.Vp[blk.cols, blk.cols]
    rank = int(min(max(1, round(edf)), blk.n_coef))
    stat, used = wald_statistic(beta, V, rank=rank)
    df_resid = max(fit.df_residual, 1.0)
    if used == 0:
        return {"edf": edf, "ref_df": float(rank), "F": 0.0, "p_value": 1.0}
    f_val = stat / used
    return {
        "edf": edf,
        "ref_df": float(used),
        "F": f_val,
        "p_value": float(stats.f.sf(f_val, used, df_resid)),
    }


def _parametric_table(fit: GamFit) -> pd.DataFrame:
    names = fit.coef_names
    idx = [0]
    for blk in fit.terms.blocks_of_kind(FACTOR):
        idx.extend(range(blk.cols.start, blk.cols.stop))
    est = fit.coef[idx]
    se = np.sqrt(np.diag(fit.Vp)[idx])
    with np.errstate(divide="ignore", invalid="ignore"):
        t_val = np.where(se > 0.0, est / se, np.nan)
    p_val = 2.0 * stats.t.sf(np.abs(t_val), max(fit.df_residual, 1.0))
    return pd.DataFrame(
        {"estimate": est, "std_error": se, "t_value": t_val, "p_value": p_val},
        index=[names[i] for i in idx],
    )


def summarize(fit: GamFit) -> ModelSummary:
    rows = {}
    for blk in fit.terms.blocks:
        if blk.kind in (SMOOTH, RANDOM):
            rows[blk.label] = _smooth_test(fit, blk)
    smooth = pd.DataFrame.from_dict(rows, orient="index", columns=["edf", "ref_df", "F", "p_value"])

    y = fit.y
    tss = float(np.sum((y - y.mean()) ** 2))
    rss = float(fit.residuals @ fit.residuals)
    n = fit.n
    if tss > 0.0:
        dev_expl = 1.0 - rss / tss
        r_sq_adj = 1.0 - (rss / max(fit.df_residual, 1e-8)) / (tss / max(n - 1, 1))
    else:
        dev_expl = 0.0
        r_sq_adj = 0.0

    return ModelSummary(
        formula=fit.spec.formula,
        method=fit.method,
        n=n,
        parametric=_parametric_table(fit),
        smooth=smooth,
        r_sq_adj=float(r_sq_adj),
        dev_explained=float(dev_expl),
        scale=float(fit.scale),
        score=float(fit.score),
    )


def anova(fit: GamFit) -> pd.DataFrame:
    """Term-wise Wald decomposition: is each term's whole contribution distinguishable from zero?"""
    df_resid = max(fit.df_residual, 1.0)
    rows = []
    for blk in fit.terms.blocks:
        if blk.kind == FACTOR:
            if blk.n_coef == 0:
                continue
            stat, used = wald_statistic(fit.coef[blk.cols], fit.Vp[blk.cols, blk.cols])
            f_val = stat / used if used else 0.0
            p_val = float(stats.f.sf(f_val, used, df_resid)) if used else 1.0
            rows.append(
                {"term": blk.label, "kind": "parametric", "df": float(blk.n_coef), "edf": np.nan, "F": f_val, "p_value": p_val}
            )
        else:
            res = _smooth_test(fit, blk)
            rows.append(
                {"term": blk.label, "kind": "smooth", "df": res["ref_df"], "edf": res["edf"], "F": res["F"], "p_value": res["p_value"]}
            )
    return pd.DataFrame(rows, columns=["term", "kind", "df", "edf", "F", "p_value"]).set_index("term")
