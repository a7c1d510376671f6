from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from .config import SUBJECT_COL, TIME_COL, AnalysisConfig
from .data import load_observations
from .diagnostics import DiagnosticsReport, run_diagnostics
from .inference import ModelSummary, anova, summarize
from .integrate import AucSeries, auc_from_curve
from .model import GamFit, fit_gam, save_fit
from .predict import PartialEffect, PredictionCurve, partial_effect, predict_fixed, predict_marginal
from .terms import FACTOR, default_model_spec

if TYPE_CHECKING:
    from .reference import ReferenceComparison

PARTIAL_SELECTORS = ("time_by_proportion", "proportion", "age", "pool_temp")


@dataclass(eq=False)
class AnalysisResult:
    data_path: Path
    config: AnalysisConfig
    fit: GamFit
    diagnostics: DiagnosticsReport
    summary: ModelSummary
    anova: object
    partials: list[PartialEffect]
    fixed: PredictionCurve
    marginal: PredictionCurve
    auc: AucSeries
    reference: ReferenceComparison | None = None
    figures: dict[str, Path] = field(default_factory=dict)
    outputs: dict[str, Path] = field(default_factory=dict)


def _quiet(tag: str, msg: str) -> None:
    pass


def _partials(fit: GamFit, level: float) -> list[PartialEffect]:
    out = []
    seen = set()
    for sel in PARTIAL_SELECTORS:
        try:
            pe = partial_effect(fit, sel, level=level)
        except KeyError:
            continue
        key = (pe.term, pe.var)
        if key not in seen:
            seen.add(key)
            out.append(pe)
    for blk in fit.terms.blocks:
        if blk.kind == FACTOR:
            continue
        pe = partial_effect(fit, blk.label, level=level)
        if (pe.term, pe.var) not in seen:
            seen.add((pe.term, pe.var))
            out.append(pe)
    return out


def run_analysis(
    data_path,
    out_dir=None,
    config: AnalysisConfig | None = None,
    sheet=0,
    make_plots: bool = True,
    pygam_check: bool = False,
    save_model: bool = False,
    progress: bool = False,
    log=None,
) -> AnalysisResult:
    """Load, fit, check, summarise, predict and integrate; write artifacts when ``out_dir`` is given.

    ``log`` receives ``(tag, message)`` status pairs; the pipeline itself never prints.
    """
    cfg = config or AnalysisConfig()
    say = log or _quiet

    data_path = Path(data_path)
    say("LOAD", f"reading {data_path}")
    data = load_observations(data_path, sheet=sheet)
    say("LOAD", f"{len(data)} observations, {data[SUBJECT_COL].nunique()} animals")

    spec = default_model_spec(cfg.model)
    say("FIT", spec.formula)
    fit = fit_gam(data, spec=spec, config=cfg.model, progress=progress)
    say("FIT", f"method={fit.method} edf={fit.edf:.2f} scale={fit.scale:.4g} converged={fit.converged}")
    for w in fit.warnings:
        say("FIT", f"warning: {w}")

    diagnostics = run_diagnostics(fit, cfg.diagnostics)
    for flag in diagnostics.flags:
        say("DIAGNOSTIC", flag)

    summary = summarize(fit)
    table = anova(fit)
    partials = _partials(fit, cfg.level)
    fixed = predict_fixed(fit, TIME_COL, grid=cfg.grid, reference=cfg.reference, level=cfg.level)
    marginal = predict_marginal(fit, TIME_COL, grid=cfg.grid, level=cfg.level)
    auc = auc_from_curve(marginal)
    say("AUC", f"total over {auc.time[0]:g}-{auc.time[-1]:g} min = {auc.total:.3f}")

    reference = None
    if pygam_check:
        from .reference import compare_with_pygam

        reference = compare_with_pygam(fit)
        say("PYGAM", f"correlation={reference.correlation:.4f} rmse_between={reference.rmse_between:.4g}")

    result = AnalysisResult(
        data_path=data_path,
        config=cfg,
        fit=fit,
        diagnostics=diagnostics,
        summary=summary,
        anova=table,
        partials=partials,
        fixed=fixed,
        marginal=marginal,
        auc=auc,
        reference=reference,
    )

    if out_dir is None:
        return result
    out_dir = Path(out_dir)
    if make_plots:
        from . import plotting

        style = cfg.plot_style
        result.figures = {
            "partial_effects": plotting.plot_partial_effects(partials, out_dir / "partial_effects.png", style),
            "fixed_prediction": plotting.plot_prediction(
                fixed, out_dir / "fixed_prediction.png", observations=data, style=style,
                title="Predicted oxygen consumption, average individual",
            ),
            "marginal_prediction": plotting.plot_prediction(
                marginal, out_dir / "marginal_prediction.png", style=style,
                title="Marginal mean oxygen consumption",
            ),
            "auc": plotting.plot_auc(auc, out_dir / "auc.png", style),
            "diagnostics": plotting.plot_diagnostics(diagnostics, fit, out_dir / "diagnostics.png", style),
        }
    if save_model:
        result.outputs["model.joblib"] = save_fit(fit, out_dir / "model.joblib")
    from .report import write_outputs

    result.outputs.update(write_outputs(result, out_dir))
    say("WRITE", f"{len(result.outputs) + len(result.figures)} artifacts in {out_dir}")
    return result
