"""Map point-referenced survey data onto the ID raster."""

import logging
import numpy as np
import pandas as pd
import xarray as xr
from rasterio.transform import rowcol

from mbg.grid.geometry import grid_transform

__all__ = ['assign_points_to_cells']

logger = logging.getLogger(__name__)


def assign_points_to_cells(points: pd.DataFrame, id_raster: xr.DataArray,
                           x_field: str = "x", y_field: str = "y",
                           collapse: bool = False,
                           outcome_field: str = "indicator",
                           trials_field: str = "samplesize") -> pd.DataFrame:
    """Attach a ``cell_id`` column to survey points.

    Points outside the grid or on cells outside the study area are dropped
    and the number dropped is logged. With ``collapse=True`` points sharing
    a cell are merged: outcome and trials are summed and the coordinates
    are replaced by the cell's row in the output.

    Parameters
    ----------
    points : pd.DataFrame
        Survey data in the ID raster's CRS.
    id_raster : xr.DataArray
        Output of build_id_raster().

    Returns
    -------
    pd.DataFrame
        New frame; the input is not modified.

    Raises
    ------
    ValueError
        Missing coordinate, outcome or trials columns.
    """
    required = [x_field, y_field]
    if collapse:
        required += [outcome_field, trials_field]
    missing = [c for c in required if c not in points.columns]
    if missing:
        raise ValueError(f"survey data is missing columns {missing}")

    transform = grid_transform(id_raster)
    rows, cols = rowcol(transform, points[x_field].to_numpy(), points[y_field].to_numpy())
    rows = np.asarray(rows, dtype=np.int64).reshape(-1)
    cols = np.asarray(cols, dtype=np.int64).reshape(-1)

    height, width = id_raster.shape
    inside = (rows >= 0) & (rows < height) & (cols >= 0) & (cols < width)
    cell_ids = np.full(len(points), np.nan)
    cell_ids[inside] = id_raster.values[rows[inside], cols[inside]]
    valid = np.isfinite(cell_ids)

    n_dropped = int((~valid).sum())
    if n_dropped:
        logger.warning("Dropped %d of %d survey points outside the study area",
                       n_dropped, len(points))

    out = points.loc[valid].copy()
    out["cell_id"] = cell_ids[valid].astype(np.int64)

    if collapse and len(out) > 0:
        n_before = len(out)
        out = (
            out.groupby("cell_id", sort=True)[[outcome_field, trials_field]]
            .sum()
            .reset_index()
        )
        logger.info("Collapsed %d survey points into %d cells", n_before, len(out))

    return out.reset_index(drop=True)
