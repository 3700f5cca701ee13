"""Build the polygon-to-cell aggregation table.

For each polygon and each valid grid cell it overlaps, the table records
the fraction of the cell's area that lies inside the polygon. The result
is a sparse relation (most cell-polygon pairs never appear), stored as a
DataFrame with columns:

- ``<polygon_id_field>``: polygon identifier
- any ``keep_fields`` copied from the polygon attributes (used to define
  coarser aggregation levels, e.g. the region a commune belongs to)
- ``cell_id``: integer id from the ID raster
- ``area_fraction``: intersection area / cell area, in (0, 1]

Candidate cells are narrowed with a shapely STRtree over the cell boxes
before exact intersections are computed. Cells fully covered by a polygon
contribute exactly 1.0; cells with no measurable overlap are omitted.
"""

import logging
from typing import Iterable, Sequence

import numpy as np
import pandas as pd
import geopandas as gpd
import shapely
import xarray as xr

from mbg.contracts import assert_id_raster, assert_aggregation_table
from mbg.contracts.base import format_ids
from mbg.grid.geometry import check_crs_match
from mbg.grid.id_raster import cell_geometries, cell_area

__all__ = ['build_aggregation_table', 'validate_aggregation_table']

logger = logging.getLogger(__name__)


def build_aggregation_table(
    polygons: gpd.GeoDataFrame,
    id_raster: xr.DataArray,
    polygon_id_field: str,
    keep_fields: Sequence[str] = (),
    on_empty: str = "warn",
    min_area_fraction: float = 1e-12,
) -> pd.DataFrame:
    """Compute (polygon, cell, area fraction) triples.

    Parameters
    ----------
    polygons : gpd.GeoDataFrame
        Polygon layer with a unique identifier column.
    id_raster : xr.DataArray
        Output of build_id_raster(); same CRS as ``polygons``.
    polygon_id_field : str
        Column holding the unique polygon identifier.
    keep_fields : sequence of str, optional
        Extra polygon attributes copied onto every row.
    on_empty : {"warn", "error"}
        What to do with polygons that overlap no valid cell.
    min_area_fraction : float
        Fractions at or below this are treated as no overlap.

    Returns
    -------
    pd.DataFrame
        Sorted by (polygon id, cell id).

    Raises
    ------
    ValueError
        Missing or non-unique id field, missing keep field, CRS mismatch,
        or empty polygons with ``on_empty="error"``.
    """
    if on_empty not in ("warn", "error"):
        raise ValueError(f"Unknown on_empty policy: {on_empty}")

    keep_fields = [f for f in keep_fields if f != polygon_id_field]
    _check_fields(polygons, polygon_id_field, keep_fields)
    check_crs_match(polygons, id_raster)
    assert_id_raster(id_raster)

    boxes = cell_geometries(id_raster)
    full_area = cell_area(id_raster)
    tree = shapely.STRtree(boxes)

    frames = []
    empty = []
    for _, row in polygons.iterrows():
        poly_id = row[polygon_id_field]
        geom = row.geometry
        if geom is None or geom.is_empty:
            empty.append(poly_id)
            continue

        candidates = np.sort(tree.query(geom, predicate="intersects"))
        if candidates.size == 0:
            empty.append(poly_id)
            continue

        fractions = shapely.area(shapely.intersection(boxes[candidates], geom)) / full_area
        fractions = np.minimum(fractions, 1.0)
        fractions[shapely.covers(geom, boxes[candidates])] = 1.0

        keep = fractions > min_area_fraction
        if not keep.any():
            empty.append(poly_id)
            continue

        frame = pd.DataFrame({
            "cell_id": (candidates[keep] + 1).astype(np.int64),
            "area_fraction": fractions[keep],
        })
        frame.insert(0, polygon_id_field, poly_id)
        for pos, field in enumerate(keep_fields, start=1):
            frame.insert(pos, field, row[field])
        frames.append(frame)

    if empty:
        message = (
            f"{len(empty)} polygons overlap no valid cell of the ID raster: "
            f"{format_ids(empty)}"
        )
        if on_empty == "error":
            raise ValueError(message)
        logger.warning(message)

    columns = [polygon_id_field, *keep_fields, "cell_id", "area_fraction"]
    if frames:
        table = pd.concat(frames, ignore_index=True)
    else:
        table = pd.DataFrame({c: pd.Series(dtype=object) for c in columns})
        table["cell_id"] = table["cell_id"].astype(np.int64)
        table["area_fraction"] = table["area_fraction"].astype(np.float64)

    table = table[columns].sort_values(
        [polygon_id_field, "cell_id"], kind="stable"
    ).reset_index(drop=True)

    assert_aggregation_table(table, polygon_id_field)
    logger.info("Aggregation table built: %d polygons, %d rows, %d split cells",
                table[polygon_id_field].nunique(), len(table),
                int((table["area_fraction"] < 1.0).sum()))
    return table


def validate_aggregation_table(table: pd.DataFrame, polygon_id_field: str,
                               keep_fields: Iterable[str] = ()) -> pd.DataFrame:
    """Check a table loaded from disk before it is used for aggregation.

    Structural problems raise ContractViolation. Cells whose fractions sum
    to more than one (overlapping polygons) are allowed but logged, since
    a level built from overlapping polygons is not a partition.

    Returns
    -------
    pd.DataFrame
        A copy with ``cell_id`` coerced to int64.
    """
    missing = [f for f in keep_fields if f not in table.columns]
    if missing:
        raise ValueError(f"aggregation table is missing fields {missing}")

    table = table.copy()
    if "cell_id" in table.columns and table["cell_id"].dtype.kind == "f":
        if np.all(np.mod(table["cell_id"].to_numpy(), 1) == 0):
            table["cell_id"] = table["cell_id"].astype(np.int64)
    assert_aggregation_table(table, polygon_id_field)

    totals = table.groupby("cell_id")["area_fraction"].sum()
    over = totals[totals > 1.0 + 1e-9]
    if len(over) > 0:
        logger.warning(
            "%d cells have area fractions summing above 1 (overlapping polygons): %s",
            len(over), format_ids(over.index),
        )
    return table


def _check_fields(polygons: gpd.GeoDataFrame, polygon_id_field: str, keep_fields) -> None:
    if polygon_id_field not in polygons.columns:
        raise ValueError(
            f"polygon id field '{polygon_id_field}' not found in polygon layer "
            f"(columns: {list(polygons.columns)})"
        )
    missing = [f for f in keep_fields if f not in polygons.columns]
    if missing:
        raise ValueError(f"fields {missing} not found in polygon layer")

    ids = polygons[polygon_id_field]
    if ids.isna().any():
        raise ValueError(
            f"polygon id field '{polygon_id_field}' has {int(ids.isna().sum())} missing values"
        )
    duplicated = ids[ids.duplicated()].unique()
    if len(duplicated) > 0:
        raise ValueError(
            f"polygon id field '{polygon_id_field}' is not unique: duplicated ids "
            f"{format_ids(duplicated)}"
        )
