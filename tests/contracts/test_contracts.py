"""Tests for pipeline contracts.

These tests verify that contracts are enforced at stage boundaries.
They test contract violations directly, without defensive logic downstream.
"""

import pytest
import xarray as xr
import pandas as pd
import numpy as np

pytestmark = pytest.mark.unit

from mbg.contracts import (
    ContractViolation,
    DegenerateWeightError,
    FailurePolicy,
    require,
    assert_id_raster,
    assert_aggregation_table,
    assert_aggregation_output,
    assert_area_fractions,
    assert_cell_draws,
    assert_table_matches_draws,
)
from mbg.contracts.base import format_ids
from tests.helpers.fake_grid import make_aggregation_table


def _id_raster(values):
    return xr.DataArray(np.asarray(values, dtype=float), dims=("y", "x"),
                        coords={"y": [1.5, 0.5], "x": [0.5, 1.5]})


class TestBaseContract:
    """Test require() and error formatting."""

    def test_require_passes_when_true(self):
        """require() is silent when the condition holds."""
        require(True, "never raised")

    def test_require_raises_contract_violation(self):
        """require() raises ContractViolation with the message."""
        with pytest.raises(ContractViolation, match="broken invariant"):
            require(False, "broken invariant")

    def test_require_custom_exception(self):
        """require() can raise a different exception class."""
        with pytest.raises(ValueError, match="bad input"):
            require(False, "bad input", exc=ValueError)

    def test_degenerate_weight_error_is_contract_violation(self):
        """DegenerateWeightError is caught by ContractViolation handlers."""
        assert issubclass(DegenerateWeightError, ContractViolation)
        assert issubclass(ContractViolation, RuntimeError)

    def test_failure_policy_values(self):
        """Policy enum round-trips from its config strings."""
        assert FailurePolicy("area") is FailurePolicy.AREA
        assert FailurePolicy("missing") is FailurePolicy.MISSING
        assert FailurePolicy("error") is FailurePolicy.ERROR

    def test_format_ids_truncates(self):
        """Long id lists are truncated with a count of the rest."""
        text = format_ids(range(15), limit=3)
        assert text == "[0, 1, 2, ... (12 more)]"


class TestIdRasterContract:
    """Test ID raster contract."""

    def test_passes_with_dense_ids(self):
        """Dense ids 1..N with NaN outside pass."""
        assert_id_raster(_id_raster([[1, 2], [np.nan, 3]]))

    def test_fails_with_gap_in_ids(self):
        """A gap in the id sequence names the missing id."""
        with pytest.raises(ContractViolation, match=r"not dense and contiguous.*missing \[2\]"):
            assert_id_raster(_id_raster([[1, 3], [np.nan, 4]]))

    def test_fails_with_duplicate_ids(self):
        """Duplicated ids break density."""
        with pytest.raises(ContractViolation, match="not dense"):
            assert_id_raster(_id_raster([[1, 1], [2, 3]]))

    def test_fails_with_no_valid_cells(self):
        """All-NaN raster has no study area."""
        with pytest.raises(ContractViolation, match="no valid cells"):
            assert_id_raster(_id_raster(np.full((2, 2), np.nan)))

    def test_fails_with_fractional_ids(self):
        """Ids must be whole numbers."""
        with pytest.raises(ContractViolation, match="integers"):
            assert_id_raster(_id_raster([[1, 2.5], [3, 4]]))

    def test_fails_with_wrong_dims(self):
        """Dims must be (y, x)."""
        da = xr.DataArray(np.ones((2, 2)), dims=("lat", "lon"))
        with pytest.raises(ContractViolation, match="expected \\('y', 'x'\\)"):
            assert_id_raster(da)

    def test_fails_with_3d(self):
        """A band dimension is not allowed in the ID raster."""
        da = xr.DataArray(np.ones((1, 2, 2)), dims=("band", "y", "x"))
        with pytest.raises(ContractViolation, match="3 dims"):
            assert_id_raster(da)


class TestAggregationTableContract:
    """Test aggregation table contract."""

    def test_passes_with_valid_table(self):
        """Well-formed table passes."""
        table = make_aggregation_table([("A", 1, 1.0), ("A", 2, 0.6), ("B", 2, 0.4)])
        assert_aggregation_table(table, "polygon_id")

    def test_fails_without_area_fraction(self):
        """Missing area_fraction column is reported by name."""
        table = pd.DataFrame({"polygon_id": ["A"], "cell_id": [1]})
        with pytest.raises(ContractViolation, match="missing required column 'area_fraction'"):
            assert_aggregation_table(table, "polygon_id")

    def test_fails_with_zero_fraction(self):
        """Zero-weight rows are never stored."""
        table = make_aggregation_table([("A", 1, 1.0), ("A", 2, 0.0)])
        with pytest.raises(ContractViolation, match=r"\(0, 1\].*offending cell ids \[2\]"):
            assert_aggregation_table(table, "polygon_id")

    def test_fails_with_fraction_above_one(self):
        """Fractions above 1 are invalid."""
        table = make_aggregation_table([("A", 1, 1.5)])
        with pytest.raises(ContractViolation, match="area_fraction"):
            assert_aggregation_table(table, "polygon_id")

    def test_fails_with_float_cell_ids(self):
        """cell_id must be an integer column."""
        table = pd.DataFrame({"polygon_id": ["A"], "cell_id": [1.0], "area_fraction": [1.0]})
        with pytest.raises(ContractViolation, match="cell_id dtype"):
            assert_aggregation_table(table, "polygon_id")

    def test_fails_with_duplicate_pairs(self):
        """Each (polygon, cell) pair appears once."""
        table = make_aggregation_table([("A", 1, 0.5), ("A", 1, 0.5)])
        with pytest.raises(ContractViolation, match=r"duplicated \(polygon, cell\) rows.*\[A\]"):
            assert_aggregation_table(table, "polygon_id")

    def test_empty_table_passes_structure_check(self):
        """An empty table with the right columns is structurally valid."""
        table = make_aggregation_table([])
        assert_aggregation_table(table, "polygon_id")

    def test_area_fractions_reject_negative_and_nan(self):
        """Out-of-range fractions are named by cell id."""
        table = make_aggregation_table([("A", 1, 1.0), ("A", 2, -0.5), ("B", 3, np.nan)])
        with pytest.raises(ContractViolation, match=r"offending cell ids \[2, 3\]"):
            assert_area_fractions(table)

    def test_area_fractions_tolerate_rounding_above_one(self):
        assert_area_fractions(make_aggregation_table([("A", 1, 1.0 + 1e-12)]))


class TestDrawsContract:
    """Test cell draws contracts."""

    def test_passes_with_matching_rows(self):
        """Draws with one row per cell pass."""
        assert_cell_draws(np.zeros((4, 3)), n_cells=4)

    def test_fails_with_row_mismatch(self):
        """Row count must equal the number of valid cells."""
        with pytest.raises(ContractViolation, match="3 rows in draws matrix, ID raster has 4"):
            assert_cell_draws(np.zeros((3, 2)), n_cells=4)

    def test_fails_with_1d(self):
        """Draws must be 2D."""
        with pytest.raises(ContractViolation, match="1 dims"):
            assert_cell_draws(np.zeros(4))

    def test_fails_with_no_samples(self):
        """At least one sample column is required."""
        with pytest.raises(ContractViolation, match="at least one posterior sample"):
            assert_cell_draws(np.zeros((4, 0)))

    def test_table_referencing_missing_cell(self):
        """Dimension mismatch names the offending cell ids."""
        table = make_aggregation_table([("A", 1, 1.0), ("B", 7, 1.0)])
        with pytest.raises(ContractViolation,
                           match=r"^dimension mismatch: aggregation table references cell_id "
                                 r"not present in draws matrix.*\[7\]"):
            assert_table_matches_draws(table, n_cells=4)

    def test_table_within_draws_passes(self):
        """Table cell ids inside 1..N pass."""
        table = make_aggregation_table([("A", 1, 1.0), ("B", 4, 1.0)])
        assert_table_matches_draws(table, n_cells=4)


class TestAggregationOutputContract:
    """Test aggregated level output contract."""

    def _summary(self, lower, upper):
        return pd.DataFrame({"polygon_id": ["A"], "mean": [0.5], "lower": [lower], "upper": [upper]})

    def test_passes_with_consistent_output(self):
        """Matching shapes and ordered bounds pass."""
        keys = pd.DataFrame({"polygon_id": ["A"]})
        assert_aggregation_output(keys, np.zeros((1, 3)), self._summary(0.1, 0.9), 3)

    def test_fails_with_wrong_sample_count(self):
        """Aggregated draws keep every sample."""
        keys = pd.DataFrame({"polygon_id": ["A"]})
        with pytest.raises(ContractViolation, match="draws shape"):
            assert_aggregation_output(keys, np.zeros((1, 2)), self._summary(0.1, 0.9), 3)

    def test_fails_with_unordered_bounds(self):
        """lower > upper is a broken interval."""
        keys = pd.DataFrame({"polygon_id": ["A"]})
        with pytest.raises(ContractViolation, match="lower > upper"):
            assert_aggregation_output(keys, np.zeros((1, 3)), self._summary(0.9, 0.1), 3)

    def test_missing_polygon_bounds_are_allowed(self):
        """NaN bounds (missing polygons) are not an ordering violation."""
        keys = pd.DataFrame({"polygon_id": ["A"]})
        assert_aggregation_output(keys, np.full((1, 3), np.nan),
                                  self._summary(np.nan, np.nan), 3)
