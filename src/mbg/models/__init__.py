"""Model fitting and posterior draws.

- inference: Backend protocol and the reference Laplace GLM backend
- draws: Coefficient draws, cell draws and cell-level summaries
- submodels: Scikit-learn submodels for stacked generalization
"""

from mbg.models.inference import (
    InferenceBackend,
    InferenceError,
    LaplaceGLMBackend,
    PosteriorFit,
    LINKS,
    resolve_backend,
)
from mbg.models.draws import draw_parameters, generate_cell_draws, summarize_cell_draws
from mbg.models.submodels import SubmodelResult, run_regression_submodels

__all__ = [
    "InferenceBackend",
    "InferenceError",
    "LaplaceGLMBackend",
    "PosteriorFit",
    "LINKS",
    "resolve_backend",
    "draw_parameters",
    "generate_cell_draws",
    "summarize_cell_draws",
    "SubmodelResult",
    "run_regression_submodels",
]
