"""
Derived curves from a fitted model: centred partial effects, fixed-covariate
predictions for an "average individual", and marginal means over the observed
covariate distribution. Random-effect terms are excluded from both prediction
modes, so the curves are population level.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd
from scipy import stats

from .config import TIME_COL, GridSpec, ReferenceValues
from .model import GamFit
from .terms import FACTOR, RANDOM, SMOOTH

# Alias -> which variable of the by-smooth pair varies along the curve.
SELECTOR_ALIASES = {
    "time_by_proportion": "var",
    "time": "var",
    "proportion": "by",
}


@dataclass(frozen=True, eq=False)
class PartialEffect:
    term: str
    var: str
    x: np.ndarray
    fit: np.ndarray
    se: np.ndarray
    lower: np.ndarray
    upper: np.ndarray
    data_values: np.ndarray
    held: dict[str, Any] = field(default_factory=dict)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "term": self.term,
                "var": self.var,
                "x": self.x,
                "fit": self.fit,
                "se": self.se,
                "lower": self.lower,
                "upper": self.upper,
            }
        )


@dataclass(frozen=True, eq=False)
class PredictionCurve:
    kind: str
    var: str
    x: np.ndarray
    fit: np.ndarray
    se: np.ndarray
    lower: np.ndarray
    upper: np.ndarray
    covariates: dict[str, Any] = field(default_factory=dict)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {self.var: self.x, "fit": self.fit, "se": self.se, "lower": self.lower, "upper": self.upper}
        )


def _z(level: float) -> float:
    if not 0.0 < level < 1.0:
        raise ValueError(f"confidence level must lie in (0, 1), got {level}")
    return float(stats.norm.ppf(0.5 + level / 2.0))


def _resolve_selector(fit: GamFit, selector: str):
    """Map a selector onto (block, varying column, held column or None)."""
    blocks = fit.terms.blocks
    for blk in blocks:
        if blk.label == selector and blk.kind != FACTOR:
            return blk, blk.spec.var, blk.spec.by
    if selector in SELECTOR_ALIASES:
        role = SELECTOR_ALIASES[selector]
        by_blocks = [b for b in blocks if b.kind == SMOOTH and b.spec.by]
        if selector == "time":
            by_blocks = [b for b in by_blocks if b.spec.var == TIME_COL] or by_blocks
        if by_blocks:
            blk = by_blocks[0]
            if role == "var":
                return blk, blk.spec.var, blk.spec.by
            return blk, blk.spec.by, blk.spec.var
    for blk in blocks:
        if blk.kind == FACTOR:
            continue
        if blk.spec.var == selector:
            return blk, blk.spec.var, blk.spec.by
        if blk.spec.by == selector:
            return blk, blk.spec.by, blk.spec.var
    choices = [b.label for b in blocks if b.kind != FACTOR] + sorted(SELECTOR_ALIASES)
    raise KeyError(f"No smooth term matches '{selector}'; choose from: {', '.join(choices)}")


def partial_effect(fit: GamFit, selector: str, grid=None, n: int = 100, level: float = 0.95) -> PartialEffect:
    """Centred contribution of one smooth term over its covariate.

    For a by-smooth the other variable of the pair is held at its observed
    mean. Contributions are centred so they sum to zero over the observations,
    and ``data_values`` carries those centred per-observation contributions.
    """
    blk, var, held_var = _resolve_selector(fit, selector)
    data = fit.data
    z = _z(level)

    if blk.kind == RANDOM:
        levels = list(blk.term.levels)
        x_grid = np.array(levels, dtype=object)
        grid_frame = pd.DataFrame({var: levels})
    else:
        observed = data[var].to_numpy(dtype=float)
        if grid is None:
            x_grid = np.linspace(observed.min(), observed.max(), int(n))
        elif isinstance(grid, GridSpec):
            x_grid = grid.values(observed)
        else:
            x_grid = np.asarray(grid, dtype=float)
        grid_frame = pd.DataFrame({var: x_grid})

    data_frame = pd.DataFrame({var: data[var].to_numpy()})
    held = {}
    if held_var is not None:
        held[held_var] = float(data[held_var].mean())
        grid_frame[held_var] = held[held_var]
        data_frame[held_var] = held[held_var]

    x_data = blk.term.design(data_frame)
    center = x_data.mean(axis=0)
    x_rows = blk.term.design(grid_frame) - center
    beta = fit.coef[blk.cols]
    V = fit.Vp[blk.cols, blk.cols]
    est = x_rows @ beta
    se = np.sqrt(np.maximum(np.einsum("ij,jk,ik->i", x_rows, V, x_rows), 0.0))
    data_values = (x_data - center) @ beta

    return PartialEffect(
        term=blk.label,
        var=var,
        x=x_grid,
        fit=est,
        se=se,
        lower=est - z * se,
        upper=est + z * se,
        data_values=data_values,
        held=held,
    )


def _covariate_columns(fit: GamFit, var: str) -> tuple[list[str], list[str]]:
    """Non-random covariates other than ``var``: (continuous, categorical)."""
    continuous, categorical = [], []
    for blk in fit.terms.blocks:
        if blk.kind == RANDOM:
            continue
        cols = categorical if blk.kind == FACTOR else continuous
        for v in blk.spec.variables:
            if v != var and v not in continuous and v not in categorical:
                cols.append(v)
    return continuous, categorical


def _grid_values(fit: GamFit, var: str, grid) -> np.ndarray:
    if var not in fit.data.columns:
        raise KeyError(f"'{var}' is not a model variable")
    if any(blk.kind in (FACTOR, RANDOM) and blk.spec.var == var for blk in fit.terms.blocks):
        raise ValueError(f"'{var}' is categorical; predictions vary a continuous covariate")
    grid = grid if grid is not None else GridSpec()
    if isinstance(grid, GridSpec):
        return grid.values(fit.data[var])
    return np.asarray(grid, dtype=float)


def most_frequent_level(values: pd.Series) -> str:
    counts = pd.Series(values).astype(str).value_counts(sort=False)
    top = counts.max()
    # First level in category order among ties, so the choice is deterministic.
    if isinstance(getattr(values, "dtype", None), pd.CategoricalDtype):
        order = [str(c) for c in values.cat.categories]
    else:
        order = sorted(counts.index)
    return next(lvl for lvl in order if counts.get(lvl, 0) == top)


def _curve(kind, var, x, rows, fit: GamFit, level, covariates) -> PredictionCurve:
    est, se = fit.predict_rows(rows)
    z = _z(level)
    return PredictionCurve(
        kind=kind,
        var=var,
        x=x,
        fit=est,
        se=se,
        lower=est - z * se,
        upper=est + z * se,
        covariates=covariates,
    )


def predict_fixed(
    fit: GamFit,
    var: str = TIME_COL,
    grid=None,
    reference: ReferenceValues | dict | None = None,
    level: float = 0.95,
) -> PredictionCurve:
    """Population-level prediction with every other covariate at one representative value."""
    x = _grid_values(fit, var, grid)
    if reference is None:
        reference = ReferenceValues()
    ref = reference.as_dict() if isinstance(reference, ReferenceValues) else dict(reference)
    continuous, categorical = _covariate_columns(fit, var)

    covariates: dict[str, Any] = {}
    for col in continuous:
        if ref.get(col) is None:
            raise ValueError(f"No reference value for continuous covariate '{col}'")
        covariates[col] = float(ref[col])
    for col in categorical:
        lvl = ref.get(col)
        covariates[col] = str(lvl) if lvl is not None else most_frequent_level(fit.data[col])

    frame = pd.DataFrame({var: x})
    for col, val in covariates.items():
        frame[col] = val
    rows = fit.terms.model_matrix(frame, exclude_random=True)
    return _curve("fixed", var, x, rows, fit, level, covariates)


def predict_marginal(
    fit: GamFit,
    var: str = TIME_COL,
    grid=None,
    weights: str = "proportional",
    level: float = 0.95,
) -> PredictionCurve:
    """Marginal mean over the observed covariate distribution.

    Continuous covariates sit at their observed means. Categorical covariates
    are averaged over their observed combinations, weighted by how often each
    combination occurs (``"proportional"``) or uniformly over all level
    combinations (``"equal"``). The averaged design row gives both the mean and
    its standard error.
    """
    if weights not in {"proportional", "equal"}:
        raise ValueError(f"weights must be 'proportional' or 'equal', got {weights!r}")
    x = _grid_values(fit, var, grid)
    data = fit.data
    continuous, categorical = _covariate_columns(fit, var)

    means = {col: float(data[col].mean()) for col in continuous}
    if not categorical:
        combos = [()]
        w = np.ones(1)
    elif weights == "proportional":
        counts = data.groupby([data[c].astype(str) for c in categorical], observed=True).size()
        combos = [k if isinstance(k, tuple) else (k,) for k in counts.index]
        w = counts.to_numpy(dtype=float)
    else:
        levels = [[str(c) for c in pd.Categorical(data[col].astype(str)).categories] for col in categorical]
        for blk in fit.terms.blocks_of_kind(FACTOR):
            if blk.spec.var in categorical:
                levels[categorical.index(blk.spec.var)] = list(blk.term.levels)
        combos = list(itertools.product(*levels))
        w = np.ones(len(combos))
    w = w / w.sum()

    n_grid = x.size
    frames = []
    for combo in combos:
        f = pd.DataFrame({var: x})
        for col, val in means.items():
            f[col] = val
        for col, val in zip(categorical, combo):
            f[col] = val
        frames.append(f)
    frame = pd.concat(frames, ignore_index=True)
    # Random-effect columns are zeroed, so the frame needs no subject column.
    rows = fit.terms.model_matrix(frame, exclude_random=True)
    rows = rows.reshape(len(combos), n_grid, -1)
    averaged = np.einsum("c,cgp->gp", w, rows)

    covariates: dict[str, Any] = dict(means)
    for i, col in enumerate(categorical):
        marginal: dict[str, float] = {}
        for combo, wi in zip(combos, w):
            marginal[str(combo[i])] = marginal.get(str(combo[i]), 0.0) + float(wi)
        covariates[col] = marginal
    return _curve("marginal", var, x, averaged, fit, level, covariates)
