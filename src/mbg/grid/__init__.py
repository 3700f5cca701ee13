"""Grid preparation modules.

- id_raster: Rasterize polygons to sequential cell ids
- aggregation_table: Polygon/cell fractional overlap relation
- covariates: Covariate loading, normalization, design matrices
- points: Map survey points to cell ids
"""

from mbg.grid.id_raster import (
    build_id_raster,
    n_cells,
    cell_centres,
    raster_to_cell_values,
    cell_values_to_raster,
)
from mbg.grid.aggregation_table import build_aggregation_table, validate_aggregation_table
from mbg.grid.covariates import load_covariates, normalize_covariates, build_cell_design_matrix
from mbg.grid.points import assign_points_to_cells

__all__ = [
    "build_id_raster",
    "n_cells",
    "cell_centres",
    "raster_to_cell_values",
    "cell_values_to_raster",
    "build_aggregation_table",
    "validate_aggregation_table",
    "load_covariates",
    "normalize_covariates",
    "build_cell_design_matrix",
    "assign_points_to_cells",
]
