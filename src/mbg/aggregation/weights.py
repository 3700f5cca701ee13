"""Per-polygon cell weights for one aggregation level.

Effective weight of a cell in a polygon is ``area_fraction x population``.
Rows of the same cell inside one polygon of the level (a cell split
between two communes of the same region) are summed. With method
``mean`` the weights are normalized to sum to one within each polygon;
with method ``sum`` the raw effective weights are used, so the aggregate
is a total (e.g. population at risk).

Polygons whose effective weights sum to zero are resolved by the explicit
zero-weight policy:

- ``area``: reweight by area fraction alone
- ``missing``: no weights; the polygon's draws become NaN
- ``error``: raise DegenerateWeightError
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
import pandas as pd
import xarray as xr
from scipy import sparse

from mbg.contracts import (
    DegenerateWeightError,
    FailurePolicy,
    require,
    assert_area_fractions,
    assert_table_matches_draws,
)
from mbg.contracts.base import format_ids
from mbg.grid.id_raster import raster_to_cell_values

__all__ = ['WeightMatrix', 'build_weight_matrix', 'population_to_cell_weights']

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WeightMatrix:
    """Sparse (n_polygons x n_cells) weights plus per-polygon bookkeeping."""
    keys: pd.DataFrame
    matrix: sparse.csr_matrix
    n_cells: np.ndarray
    total_weight: np.ndarray
    fallback: np.ndarray

    @property
    def missing(self) -> np.ndarray:
        """Polygons whose draws are emitted as NaN."""
        return self.fallback == FailurePolicy.MISSING.value

    def row_sums(self) -> np.ndarray:
        return np.asarray(self.matrix.sum(axis=1)).ravel()


def population_to_cell_weights(population: xr.DataArray, id_raster: xr.DataArray) -> np.ndarray:
    """Per-cell population weights ordered by cell id.

    Missing (NaN) population is treated as zero weight; negative values are
    clipped to zero and logged.
    """
    weights = raster_to_cell_values(population, id_raster)
    weights = np.where(np.isfinite(weights), weights, 0.0)
    n_negative = int((weights < 0).sum())
    if n_negative:
        logger.warning("Clipped %d negative population values to zero", n_negative)
        weights = np.maximum(weights, 0.0)
    return weights


def build_weight_matrix(
    table: pd.DataFrame,
    id_fields: Sequence[str],
    n_cells: int,
    population: Optional[np.ndarray] = None,
    method: str = "mean",
    zero_weight_policy: str = "area",
) -> WeightMatrix:
    """Group the aggregation table into polygons of one level and weight cells.

    Parameters
    ----------
    table : pd.DataFrame
        Aggregation table (cell_id, area_fraction and the level's id fields).
    id_fields : sequence of str
        Columns whose unique combinations define the level's polygons.
    n_cells : int
        Number of cells in the draws matrix.
    population : np.ndarray, optional
        Per-cell weights ordered by cell id. None means uniform weight 1.0.
    method : {"mean", "sum"}
    zero_weight_policy : {"area", "missing", "error"}

    Raises
    ------
    ContractViolation
        Missing id field, cell ids outside 1..n_cells, mis-sized population,
        area fractions outside (0, 1].
    DegenerateWeightError
        Zero-weight polygon under the ``error`` policy.
    """
    id_fields = list(id_fields)
    if method not in ("mean", "sum"):
        raise ValueError(f"Unknown aggregation method: {method}")
    policy = FailurePolicy(zero_weight_policy)

    missing = [f for f in id_fields if f not in table.columns]
    require(
        not missing,
        f"Aggregation contract violated: level id fields {missing} not in aggregation table"
    )
    require(
        len(table) > 0,
        "Aggregation contract violated: aggregation table has no rows"
    )
    assert_table_matches_draws(table, n_cells)
    assert_area_fractions(table)

    grouped = table.groupby(id_fields, sort=True, dropna=False)
    codes = grouped.ngroup().to_numpy()
    keys = grouped.size().reset_index()[id_fields]
    n_polygons = len(keys)

    cells = table["cell_id"].to_numpy(dtype=np.int64) - 1
    area = table["area_fraction"].to_numpy(dtype=np.float64)

    if population is None:
        effective = area
    else:
        population = np.asarray(population, dtype=np.float64)
        require(
            population.shape == (n_cells,),
            f"Aggregation contract violated: population has {population.shape[0]} values, "
            f"draws have {n_cells} cells"
        )
        effective = area * population[cells]

    shape = (n_polygons, n_cells)
    area_matrix = sparse.coo_matrix((area, (codes, cells)), shape=shape).tocsr()
    effective_matrix = sparse.coo_matrix((effective, (codes, cells)), shape=shape).tocsr()
    area_matrix.sum_duplicates()
    effective_matrix.sum_duplicates()

    total_weight = np.asarray(effective_matrix.sum(axis=1)).ravel()
    cells_per_polygon = np.diff(area_matrix.indptr)
    fallback = np.full(n_polygons, "none", dtype=object)

    if method == "sum":
        matrix = effective_matrix
    else:
        degenerate = ~(total_weight > 0)
        if degenerate.any():
            degenerate_keys = _describe_keys(keys[degenerate])
            if policy is FailurePolicy.ERROR:
                raise DegenerateWeightError(
                    f"zero total effective weight in {int(degenerate.sum())} polygons: "
                    f"{degenerate_keys}"
                )
            fallback[degenerate] = policy.value
            if policy is FailurePolicy.AREA:
                area_total = np.asarray(area_matrix.sum(axis=1)).ravel()
                no_area = degenerate & ~(area_total > 0)
                if no_area.any():
                    raise DegenerateWeightError(
                        f"zero total area fraction in {int(no_area.sum())} polygons, "
                        f"area fallback impossible: {_describe_keys(keys[no_area])}"
                    )
                logger.info("Area-fraction fallback for %d zero-weight polygons: %s",
                            int(degenerate.sum()), degenerate_keys)
            else:
                logger.warning("Zero-weight polygons emitted as missing: %s", degenerate_keys)

        use_effective = sparse.diags((~degenerate).astype(np.float64))
        use_area = sparse.diags(
            (degenerate & (policy is FailurePolicy.AREA)).astype(np.float64)
        )
        combined = (use_effective @ effective_matrix + use_area @ area_matrix).tocsr()

        sums = np.asarray(combined.sum(axis=1)).ravel()
        scale = np.divide(1.0, sums, out=np.zeros_like(sums), where=sums > 0)
        matrix = (sparse.diags(scale) @ combined).tocsr()

    return WeightMatrix(
        keys=keys,
        matrix=matrix,
        n_cells=cells_per_polygon,
        total_weight=total_weight,
        fallback=fallback,
    )


def _describe_keys(keys: pd.DataFrame) -> str:
    if keys.shape[1] == 1:
        return format_ids(keys.iloc[:, 0])
    return format_ids(tuple(row) for row in keys.itertuples(index=False))
