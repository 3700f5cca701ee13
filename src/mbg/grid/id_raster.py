"""Build the ID raster that indexes every pixel-level draw.

The ID raster is the backbone of the pipeline: each valid pixel holds a
unique integer cell id, and row ``i`` of every cell-level matrix (design
matrix, draws, population weights) belongs to cell id ``i + 1``.

Cell ids are assigned in row-major order over valid cells, starting at 1.
Invalid cells (outside every polygon, or NaN in the template) are NaN.

Rasterization rules:

- ``center``: a pixel is valid when its centre falls inside a polygon
- ``touched``: a pixel is valid when any polygon touches it
- ``majority``: a pixel is valid when at least ``majority_threshold`` of its
  area is covered by the union of the polygons
"""

import logging
import numpy as np
import xarray as xr
import geopandas as gpd
import shapely
from rasterio.features import rasterize

from mbg.contracts import require, assert_id_raster
from mbg.grid.geometry import check_crs_match, grid_transform, as_2d

__all__ = [
    'build_id_raster',
    'n_cells',
    'cell_index',
    'cell_centres',
    'cell_geometries',
    'cell_area',
    'raster_to_cell_values',
    'cell_values_to_raster',
]

logger = logging.getLogger(__name__)


def build_id_raster(polygons: gpd.GeoDataFrame, template: xr.DataArray,
                    rule: str = "touched", majority_threshold: float = 0.5) -> xr.DataArray:
    """Rasterize a polygon layer onto a template grid as sequential cell ids.

    Parameters
    ----------
    polygons : gpd.GeoDataFrame
        Study-area polygons. Must share the template's CRS.
    template : xr.DataArray
        Raster defining resolution, extent and CRS. Cells that are NaN in a
        floating-point template are excluded from the study area.
    rule : {"center", "touched", "majority"}
        Which pixels count as inside the polygons.
    majority_threshold : float
        Minimum covered fraction for the ``majority`` rule.

    Returns
    -------
    xr.DataArray
        float64 grid, NaN outside the study area, ids 1..N inside.

    Raises
    ------
    ValueError
        Undefined or mismatched CRS, unknown rule.
    ContractViolation
        Rotated template, or no polygon overlaps any template cell.
    """
    if rule not in ("center", "touched", "majority"):
        raise ValueError(f"Unknown rasterize rule: {rule}")

    template = as_2d(template)
    check_crs_match(polygons, template)
    transform = grid_transform(template)
    shape = template.shape

    geoms = [g for g in polygons.geometry if g is not None and not g.is_empty]
    require(len(geoms) > 0, "Grid contract violated: polygon layer has no geometries")

    touched = rasterize(
        ((g, 1) for g in geoms),
        out_shape=shape,
        transform=transform,
        fill=0,
        all_touched=(rule != "center"),
        dtype="uint8",
    ).astype(bool)

    if rule == "majority":
        rows, cols = np.nonzero(touched)
        boxes = _boxes(transform, rows, cols)
        covered = shapely.area(shapely.intersection(boxes, shapely.union_all(geoms)))
        keep = covered / abs(transform.a * transform.e) >= majority_threshold
        mask = np.zeros(shape, dtype=bool)
        mask[rows[keep], cols[keep]] = True
    else:
        mask = touched

    template_values = template.values
    if np.issubdtype(template_values.dtype, np.floating):
        mask &= np.isfinite(template_values)
    nodata = template.rio.nodata
    if nodata is not None and np.isfinite(nodata):
        mask &= template_values != nodata

    require(
        mask.any(),
        "Grid contract violated: no template cell falls inside the polygon layer"
    )

    ids = np.full(shape, np.nan)
    ids[mask] = np.arange(1, int(mask.sum()) + 1)

    id_raster = xr.DataArray(
        ids,
        dims=("y", "x"),
        coords={"y": template["y"].values, "x": template["x"].values},
        name="cell_id",
        attrs={
            "long_name": "Cell identifiers",
            "rasterize_rule": rule,
            "n_cells": int(mask.sum()),
        },
    )
    id_raster = id_raster.rio.write_crs(template.rio.crs).rio.write_transform(transform)

    assert_id_raster(id_raster)
    logger.info("ID raster built: rule=%s, shape=%s, valid cells=%d",
                rule, shape, int(mask.sum()))
    return id_raster


def n_cells(id_raster: xr.DataArray) -> int:
    """Number of valid cells."""
    return int(np.isfinite(id_raster.values).sum())


def cell_index(id_raster: xr.DataArray):
    """Row and column of every valid cell, ordered by cell id."""
    values = id_raster.values
    rows, cols = np.nonzero(np.isfinite(values))
    order = np.argsort(values[rows, cols], kind="stable")
    return rows[order], cols[order]


def cell_centres(id_raster: xr.DataArray):
    """x and y coordinates of every valid cell centre, ordered by cell id."""
    rows, cols = cell_index(id_raster)
    return id_raster["x"].values[cols], id_raster["y"].values[rows]


def cell_area(id_raster: xr.DataArray) -> float:
    """Area of a single cell in CRS units."""
    transform = grid_transform(id_raster)
    return abs(transform.a * transform.e)


def cell_geometries(id_raster: xr.DataArray) -> np.ndarray:
    """Shapely boxes for every valid cell; element ``i`` is cell id ``i + 1``."""
    rows, cols = cell_index(id_raster)
    return _boxes(grid_transform(id_raster), rows, cols)


def raster_to_cell_values(raster: xr.DataArray, id_raster: xr.DataArray) -> np.ndarray:
    """Extract a per-cell vector (ordered by cell id) from an aligned raster."""
    raster = as_2d(raster)
    require(
        raster.shape == id_raster.shape,
        f"Grid contract violated: raster shape {raster.shape} does not match ID raster {id_raster.shape}"
    )
    rows, cols = cell_index(id_raster)
    return raster.values[rows, cols].astype(np.float64)


def cell_values_to_raster(values: np.ndarray, id_raster: xr.DataArray,
                          name: str = None) -> xr.DataArray:
    """Scatter a per-cell vector back onto the ID raster grid."""
    values = np.asarray(values, dtype=np.float64)
    require(
        values.shape == (n_cells(id_raster),),
        f"Grid contract violated: {values.shape[0]} values for {n_cells(id_raster)} cells"
    )
    rows, cols = cell_index(id_raster)
    out = np.full(id_raster.shape, np.nan)
    out[rows, cols] = values
    da = xr.DataArray(out, dims=("y", "x"), coords={"y": id_raster["y"].values,
                                                      "x": id_raster["x"].values}, name=name)
    return da.rio.write_crs(id_raster.rio.crs).rio.write_transform(id_raster.rio.transform())


def _boxes(transform, rows: np.ndarray, cols: np.ndarray) -> np.ndarray:
    x0 = transform.c + cols * transform.a
    x1 = x0 + transform.a
    y0 = transform.f + rows * transform.e
    y1 = y0 + transform.e
    return shapely.box(np.minimum(x0, x1), np.minimum(y0, y1),
                       np.maximum(x0, x1), np.maximum(y0, y1))
