from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

RESPONSE_COL = "oxygen_cons"
TIME_COL = "exact"
PROPORTION_COL = "percentdailytotal"
AGE_COL = "age"
SEX_COL = "sex"
POOL_TEMP_COL = "pool_temp"
SUBJECT_COL = "animal"
KCAL_COL = "kcal"


@dataclass(frozen=True)
class GridSpec:
    """Inclusive grid over one predictor; ``observed=True`` uses every observed value instead."""

    start: float = 0.0
    stop: float = 130.0
    step: float = 1.0
    observed: bool = False

    @classmethod
    def every_observed(cls) -> GridSpec:
        return cls(observed=True)

    def values(self, observed_values=None) -> np.ndarray:
        if self.observed:
            if observed_values is None:
                raise ValueError("an observed grid needs the observed covariate values")
            vals = pd.to_numeric(pd.Series(observed_values), errors="raise").dropna()
            return np.unique(vals.to_numpy(dtype=float))
        if not (np.isfinite(self.start) and np.isfinite(self.stop) and np.isfinite(self.step)):
            raise ValueError(f"grid bounds must be finite: {self}")
        if self.step <= 0.0:
            raise ValueError(f"grid step must be positive, got {self.step}")
        if self.stop < self.start:
            raise ValueError(f"grid stop {self.stop} is below start {self.start}")
        # Small slack so 0..130 by 1 keeps 130 despite float rounding.
        n = int(np.floor((self.stop - self.start) / self.step + 1e-9)) + 1
        return self.start + self.step * np.arange(n, dtype=float)


@dataclass(frozen=True)
class ModelConfig:
    response: str = RESPONSE_COL
    k_time: int = 10
    k_age: int = 4
    k_pool_temp: int = 4
    method: str = "ML"
    select: bool = True

    def __post_init__(self):
        if self.method not in {"ML", "REML"}:
            raise ValueError(f"method must be 'ML' or 'REML', got {self.method!r}")


@dataclass(frozen=True)
class ReferenceValues:
    """Covariate values for the "average individual" prediction. ``sex=None`` picks the most frequent level."""

    percentdailytotal: float = 0.23
    age: float = 21.4
    pool_temp: float = 22.8
    sex: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            PROPORTION_COL: self.percentdailytotal,
            AGE_COL: self.age,
            POOL_TEMP_COL: self.pool_temp,
            SEX_COL: self.sex,
        }


@dataclass(frozen=True)
class DiagnosticsConfig:
    n_sim: int = 250
    n_rep: int = 400
    seed: int = 42
    edf_ratio_threshold: float = 0.9
    alpha: float = 0.05
    max_lag: int = 20


@dataclass(frozen=True)
class PlotStyle:
    palette: tuple[str, ...] = ("#1b9e77", "#d95f02", "#7570b3", "#e7298a", "#66a61e", "#e6ab02")
    line_color: str = "#08306b"
    band_alpha: float = 0.2
    cmap: str = "viridis"
    point_size: float = 18.0
    figsize: tuple[float, float] = (7.0, 4.5)
    dpi: int = 150
    font_size: float = 10.0

    def rc(self) -> dict[str, Any]:
        return {
            "font.size": self.font_size,
            "axes.spines.top": False,
            "axes.spines.right": False,
        }


@dataclass(frozen=True)
class AnalysisConfig:
    model: ModelConfig = field(default_factory=ModelConfig)
    reference: ReferenceValues = field(default_factory=ReferenceValues)
    grid: GridSpec = field(default_factory=GridSpec)
    diagnostics: DiagnosticsConfig = field(default_factory=DiagnosticsConfig)
    plot_style: PlotStyle = field(default_factory=PlotStyle)
    level: float = 0.95

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> AnalysisConfig:
        sections = {
            "model": ModelConfig,
            "reference": ReferenceValues,
            "grid": GridSpec,
            "diagnostics": DiagnosticsConfig,
            "plot_style": PlotStyle,
        }
        unknown = sorted(set(payload) - set(sections) - {"level"})
        if unknown:
            raise ValueError(f"Unknown config section(s): {', '.join(unknown)}")
        kwargs: dict[str, Any] = {}
        for name, section_cls in sections.items():
            raw = payload.get(name)
            if raw is None:
                continue
            allowed = {f.name for f in fields(section_cls)}
            bad = sorted(set(raw) - allowed)
            if bad:
                raise ValueError(f"Unknown key(s) in config section '{name}': {', '.join(bad)}")
            # JSON has no tuples; frozen dataclasses keep them hashable.
            cleaned = {k: tuple(v) if isinstance(v, list) else v for k, v in raw.items()}
            kwargs[name] = section_cls(**cleaned)
        if "level" in payload:
            kwargs["level"] = float(payload["level"])
        cfg = cls(**kwargs)
        if not 0.0 < cfg.level < 1.0:
            raise ValueError(f"confidence level must lie in (0, 1), got {cfg.level}")
        return cfg

    @classmethod
    def from_json(cls, path: Path) -> AnalysisConfig:
        return cls.from_dict(json.loads(Path(path).read_text()))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def with_grid(self, **changes) -> AnalysisConfig:
        return replace(self, grid=replace(self.grid, **changes))

    def with_seed(self, seed: int) -> AnalysisConfig:
        return replace(self, diagnostics=replace(self.diagnostics, seed=int(seed)))
