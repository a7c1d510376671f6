"""
Term structure of the additive model and the design matrices built from it.

A ``ModelSpec`` is the fixed symbolic formula. ``TermSet.build`` binds it to a
data frame: spline bases are placed over the observed covariate ranges, factor
levels are frozen, and every penalty is expressed in the coordinates of the
full coefficient vector. After that the set only evaluates design rows for new
frames.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd

from .basis import (
    bspline_transformer,
    diff_penalty,
    penalty_nullspace,
    scale_penalty,
    sum_to_zero_constraint,
)
from .config import (
    AGE_COL,
    POOL_TEMP_COL,
    PROPORTION_COL,
    SEX_COL,
    SUBJECT_COL,
    TIME_COL,
    ModelConfig,
)
from .errors import FitError

SMOOTH = "smooth"
FACTOR = "factor"
RANDOM = "random"


@dataclass(frozen=True)
class TermSpec:
    kind: str
    var: str
    k: int | None = None
    by: str | None = None

    @property
    def label(self) -> str:
        if self.kind == SMOOTH:
            return f"s({self.var}):{self.by}" if self.by else f"s({self.var})"
        if self.kind == RANDOM:
            return f"s({self.var})"
        return self.var

    @property
    def formula(self) -> str:
        if self.kind == SMOOTH:
            by = f", by = {self.by}" if self.by else ""
            return f"s({self.var}{by}, k = {self.k})"
        if self.kind == RANDOM:
            return f's({self.var}, bs = "re")'
        return self.var

    @property
    def variables(self) -> tuple[str, ...]:
        return (self.var, self.by) if self.by else (self.var,)


def smooth(var, k=10, by=None) -> TermSpec:
    return TermSpec(SMOOTH, var, k=int(k), by=by)


def factor(var) -> TermSpec:
    return TermSpec(FACTOR, var)


def random_effect(var) -> TermSpec:
    return TermSpec(RANDOM, var)


@dataclass(frozen=True)
class ModelSpec:
    response: str
    terms: tuple[TermSpec, ...]

    @property
    def formula(self) -> str:
        return f"{self.response} ~ " + " + ".join(t.formula for t in self.terms)

    @property
    def variables(self) -> tuple[str, ...]:
        out = [self.response]
        for t in self.terms:
            out.extend(v for v in t.variables if v not in out)
        return tuple(out)

    def term(self, label: str) -> TermSpec:
        for t in self.terms:
            if t.label == label:
                return t
        raise KeyError(label)


def default_model_spec(cfg: ModelConfig | None = None) -> ModelSpec:
    cfg = cfg or ModelConfig()
    return ModelSpec(
        response=cfg.response,
        terms=(
            smooth(TIME_COL, k=cfg.k_time, by=PROPORTION_COL),
            smooth(AGE_COL, k=cfg.k_age),
            factor(SEX_COL),
            smooth(POOL_TEMP_COL, k=cfg.k_pool_temp),
            random_effect(SUBJECT_COL),
        ),
    )


def _as_text(values) -> pd.Series:
    s = pd.Series(values)
    if isinstance(s.dtype, pd.CategoricalDtype):
        return s.astype(str)
    return s.map(lambda v: str(int(v)) if isinstance(v, float) and v.is_integer() else str(v).strip())


def _levels(values: pd.Series) -> list[str]:
    if isinstance(values.dtype, pd.CategoricalDtype):
        return [str(c) for c in values.cat.remove_unused_categories().cat.categories]
    return sorted(set(_as_text(values)))


def _codes(values, levels: list[str], var: str) -> np.ndarray:
    s = _as_text(values)
    unknown_mask = ~s.isin(levels)
    if unknown_mask.any():
        unknown = sorted(set(s[unknown_mask]))
        raise ValueError(f"Unknown level(s) for '{var}': {', '.join(unknown)} (known: {', '.join(levels)})")
    return np.asarray(pd.Categorical(s, categories=levels).codes)


class SmoothTerm:
    """Centred cubic B-spline smooth; with a numeric ``by`` the basis is scaled by it and left uncentred."""

    def __init__(self, spec: TermSpec, data: pd.DataFrame, select: bool):
        self.spec = spec
        x = data[spec.var].to_numpy(dtype=float)
        n_unique = int(np.unique(x).size)
        if n_unique < spec.k:
            raise FitError(
                f"{spec.label} has fewer unique covariate values ({n_unique}) than its "
                f"maximum basis dimension k={spec.k}"
            )
        try:
            self.transformer = bspline_transformer(x, spec.k)
        except ValueError as e:
            raise FitError(f"{spec.label}: {e}") from e
        b = self.transformer.transform(x.reshape(-1, 1))
        s = diff_penalty(b.shape[1], order=2)
        if spec.by is None:
            self.z = sum_to_zero_constraint(b)
            s = self.z.T @ s @ self.z
        else:
            self.z = None
        self.penalties = [s]
        if select:
            null = penalty_nullspace(s)
            if null.shape[1] > 0:
                self.penalties.append(null @ null.T)
        self.n_coef = b.shape[1] if self.z is None else self.z.shape[1]
        self.x_range = (float(np.min(x)), float(np.max(x)))

    def design(self, frame: pd.DataFrame, exclude_random: bool = False) -> np.ndarray:
        x = np.asarray(frame[self.spec.var], dtype=float).reshape(-1, 1)
        b = self.transformer.transform(x)
        if self.z is not None:
            b = b @ self.z
        if self.spec.by is not None:
            b = b * np.asarray(frame[self.spec.by], dtype=float).reshape(-1, 1)
        return b

    def coef_names(self) -> list[str]:
        return [f"{self.spec.label}.{i}" for i in range(1, self.n_coef + 1)]


class FactorTerm:
    """Unpenalized treatment-coded factor; the first level is the reference."""

    def __init__(self, spec: TermSpec, data: pd.DataFrame):
        self.spec = spec
        self.levels = _levels(data[spec.var])
        self.penalties: list[np.ndarray] = []
        self.n_coef = len(self.levels) - 1

    def design(self, frame: pd.DataFrame, exclude_random: bool = False) -> np.ndarray:
        codes = _codes(frame[self.spec.var], self.levels, self.spec.var)
        out = np.zeros((len(codes), self.n_coef))
        rows = np.nonzero(codes > 0)[0]
        out[rows, codes[rows] - 1] = 1.0
        return out

    def coef_names(self) -> list[str]:
        return [f"{self.spec.var}{lvl}" for lvl in self.levels[1:]]


class RandomTerm:
    """One coefficient per level under a ridge penalty: a penalized random intercept."""

    def __init__(self, spec: TermSpec, data: pd.DataFrame):
        self.spec = spec
        self.levels = _levels(data[spec.var])
        self.n_coef = len(self.levels)
        self.penalties = [np.eye(self.n_coef)]

    def design(self, frame: pd.DataFrame, exclude_random: bool = False) -> np.ndarray:
        if exclude_random:
            return np.zeros((len(frame), self.n_coef))
        codes = _codes(frame[self.spec.var], self.levels, self.spec.var)
        out = np.zeros((len(codes), self.n_coef))
        out[np.arange(len(codes)), codes] = 1.0
        return out

    def coef_names(self) -> list[str]:
        return [f"{self.spec.label}.{i}" for i in range(1, self.n_coef + 1)]


@dataclass
class TermBlock:
    spec: TermSpec
    term: object
    cols: slice

    @property
    def label(self) -> str:
        return self.spec.label

    @property
    def kind(self) -> str:
        return self.spec.kind

    @property
    def n_coef(self) -> int:
        return self.cols.stop - self.cols.start


class TermSet:
    def __init__(self, spec: ModelSpec, blocks: list[TermBlock], penalties: list[np.ndarray], penalty_owner: list[str]):
        self.spec = spec
        self.blocks = blocks
        self.penalties = penalties
        self.penalty_owner = penalty_owner
        self.n_coef = 1 + sum(b.n_coef for b in blocks)

    @classmethod
    def build(cls, spec: ModelSpec, data: pd.DataFrame, select: bool = True) -> TermSet:
        blocks = []
        start = 1
        for t in spec.terms:
            if t.kind == SMOOTH:
                term = SmoothTerm(t, data, select=select)
            elif t.kind == FACTOR:
                term = FactorTerm(t, data)
            elif t.kind == RANDOM:
                term = RandomTerm(t, data)
            else:
                raise FitError(f"Unknown term kind '{t.kind}' for {t.var}")
            blocks.append(TermBlock(spec=t, term=term, cols=slice(start, start + term.n_coef)))
            start += term.n_coef

        p = start
        penalties = []
        owner = []
        for blk in blocks:
            if not blk.term.penalties:
                continue
            x_block = blk.term.design(data)
            for s in blk.term.penalties:
                full = np.zeros((p, p))
                full[blk.cols, blk.cols] = scale_penalty(s, x_block)
                penalties.append(full)
                owner.append(blk.label)
        return cls(spec, blocks, penalties, owner)

    def model_matrix(self, frame: pd.DataFrame, exclude_random: bool = False) -> np.ndarray:
        n = len(frame)
        x = np.empty((n, self.n_coef))
        x[:, 0] = 1.0
        for blk in self.blocks:
            x[:, blk.cols] = blk.term.design(frame, exclude_random=exclude_random)
        return x

    def coef_names(self) -> list[str]:
        names = ["(Intercept)"]
        for blk in self.blocks:
            names.extend(blk.term.coef_names())
        return names

    def block(self, label: str) -> TermBlock:
        for blk in self.blocks:
            if blk.label == label:
                return blk
        raise KeyError(label)

    def blocks_of_kind(self, kind: str) -> list[TermBlock]:
        return [b for b in self.blocks if b.kind == kind]
