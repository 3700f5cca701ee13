"""Covariate rasters: loading, normalization and design matrices.

Covariates must sit on exactly the ID raster's grid. They are reduced to
per-cell vectors (ordered by cell id) for the design matrix, so a
covariate value missing on any valid cell is a pipeline error.
"""

import logging
from pathlib import Path
from typing import Dict, Mapping, Union

import numpy as np
import pandas as pd
import xarray as xr
import rioxarray

from mbg.contracts import require
from mbg.contracts.base import format_ids
from mbg.grid.geometry import as_2d, check_raster_alignment
from mbg.grid.id_raster import n_cells, raster_to_cell_values

__all__ = ['load_covariates', 'normalize_covariates', 'build_cell_design_matrix']

logger = logging.getLogger(__name__)


def load_covariates(paths: Mapping[str, Union[str, Path]],
                    id_raster: xr.DataArray) -> Dict[str, xr.DataArray]:
    """Open covariate GeoTIFFs and check they align with the ID raster.

    Raises
    ------
    FileNotFoundError
        If a covariate file does not exist.
    ValueError
        Names the covariate whose grid does not match.
    """
    covariates = {}
    for name, path in paths.items():
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Covariate '{name}' not found: {path}")
        raster = as_2d(rioxarray.open_rasterio(path, masked=True))
        check_raster_alignment(raster, id_raster, name)
        raster.name = name
        covariates[name] = raster
        logger.debug("Loaded covariate %s from %s", name, path)
    logger.info("Loaded %d covariates", len(covariates))
    return covariates


def normalize_covariates(covariates: Mapping[str, xr.DataArray], id_raster: xr.DataArray,
                         method: str = "zscore") -> Dict[str, xr.DataArray]:
    """Rescale each covariate using statistics over the valid cells.

    ``zscore`` centres on the mean and divides by the standard deviation;
    ``minmax`` maps to [0, 1]; ``none`` returns the inputs unchanged. The
    scaling constants are kept in each raster's attrs.

    Raises
    ------
    ValueError
        Unknown method, or a covariate that is constant over the study area.
    """
    if method not in ("zscore", "minmax", "none"):
        raise ValueError(f"Unknown normalization method: {method}")
    if method == "none":
        return dict(covariates)

    out = {}
    for name, raster in covariates.items():
        values = raster_to_cell_values(raster, id_raster)
        values = values[np.isfinite(values)]
        if method == "zscore":
            center, scale = float(np.mean(values)), float(np.std(values))
        else:
            center, scale = float(np.min(values)), float(np.max(values) - np.min(values))
        if not scale > 0:
            raise ValueError(f"covariate '{name}' is constant over the study area")

        scaled = (raster - center) / scale
        scaled.attrs = {**raster.attrs, "normalization": method,
                        "center": center, "scale": scale}
        scaled.name = name
        out[name] = scaled
    return out


def build_cell_design_matrix(covariates: Mapping[str, xr.DataArray], id_raster: xr.DataArray,
                             intercept: bool = True) -> pd.DataFrame:
    """Design matrix with one row per valid cell, indexed by cell id.

    Raises
    ------
    ContractViolation
        If any valid cell has a missing covariate value.
    """
    columns = {}
    if intercept:
        columns["intercept"] = np.ones(n_cells(id_raster))
    for name, raster in covariates.items():
        values = raster_to_cell_values(raster, id_raster)
        bad = ~np.isfinite(values)
        require(
            not bad.any(),
            f"Covariate contract violated: '{name}' is missing on cell ids "
            f"{format_ids(np.flatnonzero(bad) + 1)}"
        )
        columns[name] = values

    require(len(columns) > 0, "Covariate contract violated: design matrix has no columns")
    design = pd.DataFrame(columns, index=pd.RangeIndex(1, n_cells(id_raster) + 1, name="cell_id"))
    return design
