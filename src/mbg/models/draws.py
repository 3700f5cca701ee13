"""Posterior draws of coefficients and of the cell-level field.

Parameter draws are (n_params, n_samples); cell draws are
(n_cells, n_samples) with row ``i`` belonging to cell id ``i + 1``, the
layout the aggregator consumes.
"""

import logging
from typing import Optional, Sequence

import numpy as np
import pandas as pd
import xarray as xr
from scipy import linalg
from scipy.special import expit

from mbg.aggregation.summary import summarize_draws
from mbg.contracts import require, assert_cell_draws
from mbg.grid.id_raster import cell_values_to_raster, n_cells
from mbg.models.inference import InferenceError, PosteriorFit

__all__ = ['draw_parameters', 'generate_cell_draws', 'summarize_cell_draws', 'INVERSE_LINKS']

logger = logging.getLogger(__name__)

INVERSE_LINKS = {
    "logit": expit,
    "log": np.exp,
    "identity": lambda eta: eta,
}


def draw_parameters(fit: PosteriorFit, n_samples: int, seed: Optional[int] = None) -> np.ndarray:
    """Sample coefficients from ``N(mean, precision^-1)``.

    Uses the Cholesky factor ``L`` of the precision: with ``z ~ N(0, I)``,
    ``mean + L^-T z`` has covariance ``(L L^T)^-1``. Identical seeds give
    identical draws.

    Raises
    ------
    InferenceError
        Precision is not symmetric positive definite.
    """
    if n_samples < 1:
        raise ValueError(f"n_samples must be positive, got {n_samples}")
    precision = np.asarray(fit.precision, dtype=np.float64)
    try:
        chol = linalg.cholesky(precision, lower=True)
    except linalg.LinAlgError as exc:
        raise InferenceError(f"posterior precision is not positive definite: {exc}") from exc

    rng = np.random.default_rng(seed)
    z = rng.standard_normal((fit.n_params, n_samples))
    offsets = linalg.solve_triangular(chol.T, z, lower=False)
    return fit.mean[:, None] + offsets


def generate_cell_draws(param_draws: np.ndarray, design: pd.DataFrame, link: str = "logit",
                        names: Optional[Sequence[str]] = None) -> np.ndarray:
    """Linear predictor per cell and sample, mapped through the inverse link.

    Parameters
    ----------
    param_draws : np.ndarray
        (n_params, n_samples) from draw_parameters().
    design : pd.DataFrame
        Cell design matrix indexed by cell id 1..N.
    link : {"logit", "log", "identity"}
    names : sequence of str, optional
        Coefficient order of ``param_draws``; the design columns are
        reordered to match.

    Returns
    -------
    np.ndarray
        (n_cells, n_samples)
    """
    if link not in INVERSE_LINKS:
        raise ValueError(f"Unknown link: {link}")
    if names is not None:
        missing = [n for n in names if n not in design.columns]
        require(
            not missing,
            f"Draws contract violated: coefficients {missing} have no column in the cell design matrix"
        )
        design = design[list(names)]

    X = np.asarray(design, dtype=np.float64)
    require(
        X.shape[1] == param_draws.shape[0],
        f"Draws contract violated: design has {X.shape[1]} columns, draws have {param_draws.shape[0]} coefficients"
    )
    cell_draws = INVERSE_LINKS[link](X @ param_draws)
    assert_cell_draws(cell_draws, X.shape[0])
    logger.info("Generated cell draws: %d cells x %d samples", *cell_draws.shape)
    return cell_draws


def summarize_cell_draws(cell_draws: np.ndarray, id_raster: xr.DataArray,
                         lower: float = 0.025, upper: float = 0.975) -> xr.Dataset:
    """Mean and interval rasters on the ID raster grid."""
    assert_cell_draws(cell_draws, n_cells(id_raster))
    stats = summarize_draws(cell_draws, lower, upper)
    summary = xr.Dataset({
        col: cell_values_to_raster(stats[col].to_numpy(), id_raster, name=col)
        for col in stats.columns
    })
    summary.attrs.update({"ui_lower": lower, "ui_upper": upper, "n_samples": cell_draws.shape[1]})
    return summary.rio.write_crs(id_raster.rio.crs)
