"""Pipeline contracts: fail-fast enforcement of stage invariants.

Contracts fail immediately and loudly when a stage does not produce its
promised invariants, or when stages are wired with inconsistent inputs.

Key principle:
- Pydantic validates config correctness
- Contracts validate pipeline correctness
- Algorithms handle science edge cases (explicit zero-weight policy)
"""

from mbg.contracts.failure import ContractViolation, DegenerateWeightError, FailurePolicy
from mbg.contracts.base import require
from mbg.contracts.grid import assert_id_raster
from mbg.contracts.aggregation import (
    assert_aggregation_table,
    assert_aggregation_output,
    assert_area_fractions,
)
from mbg.contracts.draws import assert_cell_draws, assert_table_matches_draws

__all__ = [
    "ContractViolation",
    "DegenerateWeightError",
    "FailurePolicy",
    "require",
    "assert_id_raster",
    "assert_aggregation_table",
    "assert_aggregation_output",
    "assert_area_fractions",
    "assert_cell_draws",
    "assert_table_matches_draws",
]
