"""Heat increment of feeding from respirometry: additive model, predictions and cumulative AUC."""

from .config import AnalysisConfig, GridSpec, ModelConfig, ReferenceValues
from .data import load_observations
from .diagnostics import run_diagnostics
from .errors import FitError, HifError, IntegrationError, LoadError
from .inference import anova, summarize
from .integrate import auc_from_curve, cumulative_auc
from .model import GamFit, fit_gam, load_fit, save_fit
from .predict import partial_effect, predict_fixed, predict_marginal
from .terms import ModelSpec, default_model_spec

__version__ = "0.1.0"

__all__ = [
    "AnalysisConfig",
    "FitError",
    "GamFit",
    "GridSpec",
    "HifError",
    "IntegrationError",
    "LoadError",
    "ModelConfig",
    "ModelSpec",
    "ReferenceValues",
    "anova",
    "auc_from_curve",
    "cumulative_auc",
    "default_model_spec",
    "fit_gam",
    "load_fit",
    "load_observations",
    "partial_effect",
    "predict_fixed",
    "predict_marginal",
    "run_diagnostics",
    "save_fit",
    "summarize",
]
