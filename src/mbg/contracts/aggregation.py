"""Aggregation stage contracts.

Two boundaries are checked here:

- the aggregation table, before it is used: required columns, fractions in
  (0, 1], integer cell ids;
- the aggregated output, after each level: key/draw/summary shapes agree
  and every interval is ordered.
"""

import numpy as np
import pandas as pd
from mbg.contracts.base import require, format_ids


def assert_aggregation_table(table: pd.DataFrame, polygon_id_field: str) -> None:
    """Enforce aggregation table contract.

    Parameters
    ----------
    table : pd.DataFrame
        Output of build_aggregation_table() (or a table loaded from disk)

    polygon_id_field : str
        Name of the polygon identifier column

    Raises
    ------
    ContractViolation
        If structural requirements are violated
    """
    require(
        isinstance(table, pd.DataFrame),
        f"Aggregation table contract violated: got {type(table)}, expected DataFrame"
    )
    for col in (polygon_id_field, "cell_id", "area_fraction"):
        require(
            col in table.columns,
            f"Aggregation table contract violated: missing required column '{col}'"
        )

    if len(table) == 0:
        return

    require(
        table["cell_id"].dtype.kind in {"i", "u"},
        f"Aggregation table contract violated: cell_id dtype is {table['cell_id'].dtype}, expected integer"
    )

    assert_area_fractions(table)

    dup = table.duplicated(subset=[polygon_id_field, "cell_id"])
    require(
        not dup.any(),
        "Aggregation table contract violated: duplicated (polygon, cell) rows "
        f"for polygons {format_ids(table.loc[dup, polygon_id_field].unique())}"
    )


def assert_aggregation_output(keys: pd.DataFrame, draws: np.ndarray,
                              summary: pd.DataFrame, n_samples: int) -> None:
    """Enforce aggregated-level output contract.

    Interval bounds must be ordered. The mean is not required to fall
    inside them (see summarize_draws()).

    Raises
    ------
    ContractViolation
        If the level result is internally inconsistent
    """
    require(
        draws.shape == (len(keys), n_samples),
        f"Aggregation output contract violated: draws shape {draws.shape}, "
        f"expected ({len(keys)}, {n_samples})"
    )
    require(
        len(summary) == len(keys),
        f"Aggregation output contract violated: {len(summary)} summary rows for {len(keys)} polygons"
    )
    for col in ("mean", "lower", "upper"):
        require(
            col in summary.columns,
            f"Aggregation output contract violated: missing summary column '{col}'"
        )

    finite = summary[["lower", "upper"]].notna().all(axis=1)
    unordered = finite & (summary["lower"] > summary["upper"])
    require(
        not unordered.any(),
        "Aggregation output contract violated: lower > upper for "
        f"{int(unordered.sum())} polygons"
    )


def assert_area_fractions(table: pd.DataFrame) -> None:
    """Every ``area_fraction`` must be finite and lie in (0, 1].

    Raises
    ------
    ContractViolation
        Names the cell ids carrying out-of-range fractions
    """
    fractions = table["area_fraction"].to_numpy(dtype=np.float64)
    bad = (~np.isfinite(fractions)) | (fractions <= 0) | (fractions > 1.0 + 1e-9)
    require(
        not bad.any(),
        "Aggregation table contract violated: area_fraction must lie in (0, 1] "
        f"(offending cell ids {format_ids(table.loc[bad, 'cell_id'])})"
    )
