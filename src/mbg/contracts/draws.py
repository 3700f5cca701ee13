"""Draws contracts.

Cell draws are indexed by cell id: row i belongs to cell id i + 1. Every
consumer of the draws matrix relies on this, so the shape is checked
against the ID raster and against any aggregation table before use.
"""

import numpy as np
import pandas as pd
from mbg.contracts.base import require, format_ids


def assert_cell_draws(cell_draws: np.ndarray, n_cells: int = None) -> None:
    """Enforce cell-draws contract.

    Parameters
    ----------
    cell_draws : np.ndarray
        Matrix of shape (n_cells, n_samples)

    n_cells : int, optional
        Number of valid cells in the ID raster. When given, the row count
        must match exactly.

    Raises
    ------
    ContractViolation
        If the matrix is malformed or mis-sized
    """
    require(
        isinstance(cell_draws, np.ndarray),
        f"Draws contract violated: got {type(cell_draws)}, expected ndarray"
    )
    require(
        cell_draws.ndim == 2,
        f"Draws contract violated: draws have {cell_draws.ndim} dims, expected 2 (cells x samples)"
    )
    require(
        cell_draws.shape[1] >= 1,
        "Draws contract violated: at least one posterior sample expected"
    )
    if n_cells is not None:
        require(
            cell_draws.shape[0] == n_cells,
            f"Draws contract violated: {cell_draws.shape[0]} rows in draws matrix, "
            f"ID raster has {n_cells} valid cells"
        )


def assert_table_matches_draws(table: pd.DataFrame, n_cells: int) -> None:
    """Every cell id referenced by the table must exist in the draws matrix.

    Raises
    ------
    ContractViolation
        Dimension mismatch; names the offending cell ids
    """
    cell_ids = table["cell_id"].to_numpy()
    bad = (cell_ids < 1) | (cell_ids > n_cells)
    require(
        not bad.any(),
        "dimension mismatch: aggregation table references cell_id not present in "
        f"draws matrix (draws have {n_cells} cells; offending cell ids "
        f"{format_ids(np.unique(cell_ids[bad]))})"
    )
