from __future__ import annotations

import math
import os
from pathlib import Path

# Configure matplotlib backend BEFORE importing pyplot
import matplotlib

if "DISPLAY" not in os.environ or not os.environ["DISPLAY"]:
    matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import pandas as pd  # noqa: E402

from .config import KCAL_COL, RESPONSE_COL, PlotStyle  # noqa: E402


def _save(fig, path: Path, style: PlotStyle) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, dpi=style.dpi, facecolor="white")
    plt.close(fig)
    return path


def plot_partial_effects(effects, path, style: PlotStyle | None = None) -> Path:
    style = style or PlotStyle()
    n = len(effects)
    ncols = min(2, max(n, 1))
    nrows = max(1, math.ceil(n / ncols))
    with plt.rc_context(style.rc()):
        fig, axes = plt.subplots(
            nrows,
            ncols,
            figsize=(style.figsize[0] * ncols / 1.4, style.figsize[1] * nrows / 1.2),
            squeeze=False,
            constrained_layout=True,
        )
        flat = axes.ravel()
        for ax, pe in zip(flat, effects):
            if pe.x.dtype == object:
                pos = np.arange(pe.x.size)
                ax.errorbar(
                    pos,
                    pe.fit,
                    yerr=[pe.fit - pe.lower, pe.upper - pe.fit],
                    fmt="o",
                    color=style.line_color,
                    capsize=3,
                )
                ax.set_xticks(pos)
                ax.set_xticklabels([str(v) for v in pe.x], rotation=45, ha="right")
            else:
                ax.fill_between(pe.x, pe.lower, pe.upper, color=style.line_color, alpha=style.band_alpha, linewidth=0)
                ax.plot(pe.x, pe.fit, color=style.line_color)
            ax.axhline(0.0, color="grey", linewidth=0.6, linestyle="--")
            held = ", ".join(f"{k} = {v:.3g}" for k, v in pe.held.items())
            ax.set_title(pe.term + (f" ({held})" if held else ""), fontsize=style.font_size)
            ax.set_xlabel(pe.var)
            ax.set_ylabel("Partial effect")
        for ax in flat[n:]:
            ax.axis("off")
        return _save(fig, path, style)


def plot_prediction(curve, path, observations: pd.DataFrame | None = None, style: PlotStyle | None = None, title=None) -> Path:
    """Prediction ± confidence band; observed points coloured by meal size in kcal when given."""
    style = style or PlotStyle()
    with plt.rc_context(style.rc()):
        fig, ax = plt.subplots(figsize=style.figsize, constrained_layout=True)
        if observations is not None and curve.var in observations.columns:
            obs_y = observations[RESPONSE_COL] if RESPONSE_COL in observations.columns else None
            if obs_y is not None:
                if KCAL_COL in observations.columns:
                    sc = ax.scatter(
                        observations[curve.var],
                        obs_y,
                        c=observations[KCAL_COL],
                        cmap=style.cmap,
                        s=style.point_size,
                        alpha=0.7,
                        edgecolors="none",
                    )
                    fig.colorbar(sc, ax=ax, label=KCAL_COL)
                else:
                    ax.scatter(observations[curve.var], obs_y, s=style.point_size, color=style.palette[0], alpha=0.7)
        ax.fill_between(curve.x, curve.lower, curve.upper, color=style.line_color, alpha=style.band_alpha, linewidth=0)
        ax.plot(curve.x, curve.fit, color=style.line_color, linewidth=2.0)
        ax.set_xlabel(curve.var)
        ax.set_ylabel(RESPONSE_COL)
        ax.set_title(title or f"{curve.kind.capitalize()} prediction over {curve.var}", fontsize=style.font_size)
        return _save(fig, path, style)


def plot_auc(series, path, style: PlotStyle | None = None) -> Path:
    style = style or PlotStyle()
    with plt.rc_context(style.rc()):
        fig, ax = plt.subplots(figsize=style.figsize, constrained_layout=True)
        ax.plot(series.time, series.cumulative, color=style.palette[1], linewidth=2.0)
        ax.annotate(
            f"total = {series.total:.1f}",
            xy=(series.time[-1], series.cumulative[-1]),
            xytext=(-10, -15),
            textcoords="offset points",
            ha="right",
        )
        ax.set_xlabel("time since feeding (min)")
        ax.set_ylabel("cumulative AUC")
        ax.set_title("Cumulative area under the marginal mean curve", fontsize=style.font_size)
        return _save(fig, path, style)


def plot_diagnostics(report, fit, path, style: PlotStyle | None = None) -> Path:
    style = style or PlotStyle()
    with plt.rc_context(style.rc()):
        fig, axes = plt.subplots(
            2, 2, figsize=(style.figsize[0] * 1.5, style.figsize[1] * 1.5), constrained_layout=True
        )
        ax_qq, ax_rf, ax_hist, ax_acf = axes.ravel()

        scaled = np.sort(report.residuals.scaled_residuals)
        expected = (np.arange(1, scaled.size + 1) - 0.5) / scaled.size
        ax_qq.scatter(expected, scaled, s=8, color=style.palette[2])
        ax_qq.plot([0, 1], [0, 1], color="grey", linestyle="--", linewidth=0.8)
        ax_qq.set_title(f"Uniform QQ (KS p = {report.residuals.ks_p_value:.3f})", fontsize=style.font_size)
        ax_qq.set_xlabel("expected")
        ax_qq.set_ylabel("scaled residual")

        ax_rf.scatter(fit.fitted, fit.residuals, s=8, color=style.palette[0], alpha=0.7)
        ax_rf.axhline(0.0, color="grey", linewidth=0.8)
        ax_rf.set_title("Residuals vs fitted", fontsize=style.font_size)
        ax_rf.set_xlabel("fitted")
        ax_rf.set_ylabel("residual")

        ax_hist.hist(fit.residuals, bins=30, color=style.palette[3], alpha=0.8)
        ax_hist.set_title("Residual distribution", fontsize=style.font_size)
        ax_hist.set_xlabel("residual")

        auto = report.autocorrelation
        ax_acf.vlines(auto.lags, 0.0, auto.acf, color=style.line_color)
        ax_acf.axhline(auto.bound, color="grey", linestyle="--", linewidth=0.8)
        ax_acf.axhline(-auto.bound, color="grey", linestyle="--", linewidth=0.8)
        ax_acf.set_title(f"Residual ACF (Ljung-Box p = {auto.ljung_box_p_value:.3f})", fontsize=style.font_size)
        ax_acf.set_xlabel("lag")
        return _save(fig, path, style)
