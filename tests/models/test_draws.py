"""Tests for coefficient draws, cell draws and cell summaries."""

import pytest
import numpy as np
import pandas as pd
import xarray as xr
from scipy.special import expit

from mbg.contracts import ContractViolation
from mbg.models.draws import draw_parameters, generate_cell_draws, summarize_cell_draws
from mbg.models.inference import InferenceError, PosteriorFit
from tests.helpers.fake_grid import make_raster

pytestmark = pytest.mark.unit


@pytest.fixture
def fit():
    covariance = np.array([[0.04, 0.01], [0.01, 0.09]])
    return PosteriorFit(mean=np.array([-1.0, 0.5]), precision=np.linalg.inv(covariance),
                        names=["intercept", "x"])


class TestDrawParameters:
    """Test draw_parameters()."""

    def test_shape(self, fit):
        assert draw_parameters(fit, 7, seed=1).shape == (2, 7)

    def test_seed_reproducible(self, fit):
        np.testing.assert_array_equal(draw_parameters(fit, 5, seed=3), draw_parameters(fit, 5, seed=3))
        assert not np.array_equal(draw_parameters(fit, 5, seed=3), draw_parameters(fit, 5, seed=4))

    def test_moments(self, fit):
        """Draws follow N(mean, precision^-1)."""
        draws = draw_parameters(fit, 40000, seed=0)

        np.testing.assert_allclose(draws.mean(axis=1), fit.mean, atol=0.01)
        np.testing.assert_allclose(np.cov(draws), fit.covariance(), atol=0.005)

    def test_non_positive_definite(self, fit):
        bad = PosteriorFit(mean=fit.mean, precision=np.array([[1.0, 2.0], [2.0, 1.0]]), names=fit.names)
        with pytest.raises(InferenceError, match="not positive definite"):
            draw_parameters(bad, 10)

    def test_zero_samples(self, fit):
        with pytest.raises(ValueError, match="n_samples"):
            draw_parameters(fit, 0)


class TestGenerateCellDraws:
    """Test generate_cell_draws()."""

    @pytest.fixture
    def design(self):
        return pd.DataFrame({"x": [0.0, 1.0, -1.0], "intercept": [1.0, 1.0, 1.0]},
                            index=pd.RangeIndex(1, 4, name="cell_id"))

    def test_logit_link(self, design):
        params = np.array([[0.0, 1.0], [2.0, -1.0]])  # intercept row, x row
        draws = generate_cell_draws(params, design, link="logit", names=["intercept", "x"])

        eta = np.array([[0.0, 1.0], [2.0, 0.0], [-2.0, 2.0]])
        np.testing.assert_allclose(draws, expit(eta))

    def test_log_link(self, design):
        params = np.array([[0.0], [1.0]])
        draws = generate_cell_draws(params, design, link="log", names=["intercept", "x"])
        np.testing.assert_allclose(draws[:, 0], np.exp([0.0, 1.0, -1.0]))

    def test_identity_link_without_names(self, design):
        params = np.array([[1.0], [10.0]])  # column order of design: x, intercept
        draws = generate_cell_draws(params, design, link="identity")
        np.testing.assert_allclose(draws[:, 0], [10.0, 11.0, 9.0])

    def test_missing_coefficient_column(self, design):
        with pytest.raises(ContractViolation, match=r"\['rain'\]"):
            generate_cell_draws(np.zeros((2, 1)), design, names=["intercept", "rain"])

    def test_coefficient_count_mismatch(self, design):
        with pytest.raises(ContractViolation, match="3 coefficients"):
            generate_cell_draws(np.zeros((3, 1)), design)

    def test_unknown_link(self, design):
        with pytest.raises(ValueError, match="Unknown link"):
            generate_cell_draws(np.zeros((2, 1)), design, link="probit")


class TestSummarizeCellDraws:
    """Test summarize_cell_draws()."""

    def test_rasters_on_id_grid(self):
        id_raster = make_raster([[1, np.nan], [2, 3]], name="cell_id")
        cell_draws = np.array([[0.1, 0.2, 0.3], [0.5, 0.5, 0.5], [0.0, 1.0, 2.0]])

        summary = summarize_cell_draws(cell_draws, id_raster)

        assert isinstance(summary, xr.Dataset)
        assert set(summary.data_vars) == {"mean", "lower", "upper"}
        np.testing.assert_allclose(summary["mean"].values, [[0.2, np.nan], [0.5, 1.0]])
        assert summary["lower"].values[1, 1] == pytest.approx(0.05)
        assert summary.attrs["n_samples"] == 3
        assert summary.rio.crs == id_raster.rio.crs

    def test_row_count_must_match(self):
        id_raster = make_raster([[1, 2]], name="cell_id")
        with pytest.raises(ContractViolation, match="ID raster has 2 valid cells"):
            summarize_cell_draws(np.zeros((3, 2)), id_raster)
