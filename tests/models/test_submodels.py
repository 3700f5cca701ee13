"""Tests for stacking submodels."""

import pytest
import numpy as np
import pandas as pd
from scipy.special import expit

from mbg.contracts import ContractViolation
from mbg.models.submodels import SubmodelResult, run_regression_submodels

pytestmark = pytest.mark.unit


@pytest.fixture
def cell_features():
    rng = np.random.default_rng(1)
    return pd.DataFrame(
        {"intercept": 1.0, "elevation": rng.normal(size=60), "rain": rng.normal(size=60)},
        index=pd.RangeIndex(1, 61, name="cell_id"),
    )


@pytest.fixture
def survey(cell_features):
    rng = np.random.default_rng(2)
    cell_id = rng.choice(cell_features.index.to_numpy(), size=45)
    p = expit(0.8 * cell_features.loc[cell_id, "elevation"].to_numpy() - 0.5)
    trials = rng.integers(20, 60, size=45)
    return pd.DataFrame({
        "cell_id": cell_id,
        "indicator": rng.binomial(trials, p),
        "samplesize": trials,
    })


@pytest.fixture
def stacking_config(make_config):
    return make_config(STACKING=True, SUBMODELS=["ridge", "rf"], CV_FOLDS=3, SEED=11)


class TestRunRegressionSubmodels:
    """Test run_regression_submodels()."""

    def test_result_shapes(self, survey, cell_features, stacking_config):
        result = run_regression_submodels(survey, cell_features, stacking_config)

        assert isinstance(result, SubmodelResult)
        assert list(result.point_predictions.columns) == ["ridge", "rf"]
        assert result.point_predictions.index.equals(survey.index)
        assert list(result.cell_predictions.columns) == ["ridge", "rf"]
        assert result.cell_predictions.index.equals(cell_features.index)
        assert result.cv_scores["model"].tolist() == ["ridge", "rf"]
        assert (result.cv_scores["rmse"] > 0).all()

    def test_logit_scale_is_finite(self, survey, cell_features, stacking_config):
        result = run_regression_submodels(survey, cell_features, stacking_config)
        assert np.isfinite(result.point_predictions.to_numpy()).all()
        assert np.isfinite(result.cell_predictions.to_numpy()).all()

    def test_rate_scale_is_clipped(self, survey, cell_features, make_config):
        config = make_config(
            STACKING=True, SUBMODELS=["ridge"], CV_FOLDS=3,
            stacking_options={"logit_transform": False, "clip_epsilon": 0.01},
        )
        result = run_regression_submodels(survey, cell_features, config)

        values = result.cell_predictions["ridge"].to_numpy()
        assert values.min() >= 0.01
        assert values.max() <= 0.99

    def test_seeded_runs_agree(self, survey, cell_features, stacking_config):
        first = run_regression_submodels(survey, cell_features, stacking_config)
        second = run_regression_submodels(survey, cell_features, stacking_config)
        pd.testing.assert_frame_equal(first.cell_predictions, second.cell_predictions)

    def test_ridge_tracks_signal(self, survey, cell_features, make_config):
        """Out-of-fold predictions correlate with the driving covariate."""
        config = make_config(STACKING=True, SUBMODELS=["ridge"], CV_FOLDS=3)
        result = run_regression_submodels(survey, cell_features, config)

        elevation = cell_features.loc[survey["cell_id"], "elevation"].to_numpy()
        assert np.corrcoef(result.point_predictions["ridge"], elevation)[0, 1] > 0.6

    def test_too_few_observations(self, survey, cell_features, make_config):
        config = make_config(STACKING=True, SUBMODELS=["ridge"], CV_FOLDS=5)
        with pytest.raises(ValueError, match="at least cv_folds=5"):
            run_regression_submodels(survey.head(4), cell_features, config)

    def test_unknown_cell(self, survey, cell_features, stacking_config):
        bad = survey.copy()
        bad.loc[0, "cell_id"] = 999
        with pytest.raises(ContractViolation, match="unknown cell ids"):
            run_regression_submodels(bad, cell_features, stacking_config)

    def test_needs_covariates(self, survey, cell_features, stacking_config):
        with pytest.raises(ContractViolation, match="no covariates"):
            run_regression_submodels(survey, cell_features[["intercept"]], stacking_config)
