from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd


def fmt_float(v: Any, digits: int = 4) -> str:
    if v is None:
        return ""
    try:
        fv = float(v)
    except (TypeError, ValueError):
        return str(v)
    if not np.isfinite(fv):
        return "NA"
    return f"{fv:.{digits}g}"


def markdown_table(df: pd.DataFrame, index_label: str = "") -> list[str]:
    headers = [index_label] + [str(c) for c in df.columns]
    aligns = [":--------------"] + ["-------------:"] * len(df.columns)
    out = ["| " + " | ".join(headers) + " |", "| " + " | ".join(aligns) + " |"]
    for idx, row in df.iterrows():
        cells = [f"`{idx}`"] + [fmt_float(v) if not isinstance(v, (bool, np.bool_)) else str(bool(v)) for v in row]
        out.append("| " + " | ".join(cells) + " |")
    return out


def _jsonable(v):
    if isinstance(v, dict):
        return {str(k): _jsonable(x) for k, x in v.items()}
    if isinstance(v, (list, tuple)):
        return [_jsonable(x) for x in v]
    if isinstance(v, np.ndarray):
        return [_jsonable(x) for x in v.tolist()]
    if isinstance(v, (np.floating, float)):
        fv = float(v)
        return fv if np.isfinite(fv) else None
    if isinstance(v, (np.integer,)):
        return int(v)
    if isinstance(v, (np.bool_,)):
        return bool(v)
    return v


def build_payload(result) -> dict[str, Any]:
    summary = result.summary
    payload = {
        "created_at_utc": datetime.now(timezone.utc).isoformat(),
        "data_path": str(result.data_path),
        "formula": summary.formula,
        "method": summary.method,
        "n": summary.n,
        "n_dropped": result.fit.n_dropped,
        "converged": result.fit.converged,
        "fit_warnings": list(result.fit.warnings),
        "r_sq_adj": summary.r_sq_adj,
        "dev_explained": summary.dev_explained,
        "scale": summary.scale,
        "score": summary.score,
        "smoothing_parameters": result.fit.smoothing_parameters().to_dict(),
        "parametric": summary.parametric.to_dict(orient="index"),
        "smooth": summary.smooth.to_dict(orient="index"),
        "anova": result.anova.to_dict(orient="index"),
        "diagnostics": {
            "flags": list(result.diagnostics.flags),
            "k_check": result.diagnostics.k_check.to_dict(orient="index"),
            "ks_p_value": result.diagnostics.residuals.ks_p_value,
            "dispersion_ratio": result.diagnostics.residuals.dispersion_ratio,
            "dispersion_p_value": result.diagnostics.residuals.dispersion_p_value,
            "n_outliers": result.diagnostics.residuals.n_outliers,
            "ljung_box_p_value": result.diagnostics.autocorrelation.ljung_box_p_value,
        },
        "fixed_covariates": result.fixed.covariates,
        "marginal_covariates": result.marginal.covariates,
        "auc_total": result.auc.total,
        "auc_grid": {"start": float(result.auc.time[0]), "stop": float(result.auc.time[-1]), "n": int(result.auc.time.size)},
        "config": result.config.to_dict(),
    }
    if result.reference is not None:
        payload["pygam_reference"] = result.reference.as_dict()
    return _jsonable(payload)


def render_markdown(result) -> str:
    summary = result.summary
    md: list[str] = []
    md.append("# Oxygen consumption after feeding: GAM analysis\n")
    md.append(f"- Data: `{result.data_path}`")
    md.append(f"- Formula: `{summary.formula}`")
    md.append(f"- Method: `{summary.method}` (term selection: `{str(result.config.model.select).lower()}`)")
    md.append(f"- n = {summary.n} (dropped incomplete rows: {result.fit.n_dropped})")
    md.append(f"- R-sq.(adj) = {summary.r_sq_adj:.3f}, deviance explained = {100.0 * summary.dev_explained:.1f}%")
    md.append("")
    md.append("## Parametric coefficients\n")
    md.extend(markdown_table(summary.parametric, "term"))
    md.append("")
    md.append("## Smooth terms\n")
    md.extend(markdown_table(summary.smooth, "term"))
    md.append("")
    md.append("## ANOVA\n")
    md.extend(markdown_table(result.anova.drop(columns=["kind"]), "term"))
    md.append("")
    md.append("## Diagnostics\n")
    md.extend(markdown_table(result.diagnostics.k_check, "term"))
    md.append("")
    if result.diagnostics.flags:
        for flag in result.diagnostics.flags:
            md.append(f"* warning: {flag}")
    else:
        md.append("No diagnostic warnings.")
    md.append("")
    md.append("## Heat increment of feeding\n")
    md.append(
        f"Cumulative area under the marginal mean curve from {result.auc.time[0]:g} to "
        f"{result.auc.time[-1]:g} min: **{result.auc.total:.2f}**."
    )
    md.append("The confidence band of the curve is not propagated into this total.")
    md.append("")
    if result.reference is not None:
        ref = result.reference
        md.append("## pyGAM cross-check\n")
        md.append(f"* `{ref.model_spec}`")
        md.append(f"* RMSE between fitted values: {ref.rmse_between:.4g}; correlation {ref.correlation:.4f}")
        md.append(f"* R2 here {ref.r2_model:.4f} vs pyGAM {ref.r2_reference:.4f}")
        md.append("")
    if result.figures:
        md.append("## Figures\n")
        for name, path in result.figures.items():
            md.append(f"![{name}]({Path(path).name})")
        md.append("")
    return "\n".join(md).rstrip() + "\n"


def write_outputs(result, out_dir) -> dict[str, Path]:
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    written: dict[str, Path] = {}

    def put(name: str, text: str):
        path = out_dir / name
        path.write_text(text, encoding="utf-8")
        written[name] = path

    def put_csv(name: str, df: pd.DataFrame, index: bool = False):
        path = out_dir / name
        df.to_csv(path, index=index)
        written[name] = path

    put("summary.txt", result.summary.to_text() + "\n")
    put_csv("parametric.csv", result.summary.parametric, index=True)
    put_csv("smooths.csv", result.summary.smooth, index=True)
    put_csv("anova.csv", result.anova, index=True)
    put_csv("k_check.csv", result.diagnostics.k_check, index=True)
    put_csv("partial_effects.csv", pd.concat([pe.to_frame() for pe in result.partials], ignore_index=True))
    put_csv("fixed_prediction.csv", result.fixed.to_frame())
    put_csv("marginal_prediction.csv", result.marginal.to_frame())
    put_csv("auc.csv", result.auc.to_frame())
    put("results.json", json.dumps(build_payload(result), indent=2))
    put("report.md", render_markdown(result))
    return written
