"""Regression submodels for stacked generalization.

Each configured learner is tuned by grid search over K folds, then used
twice:

- out-of-fold predictions at the survey locations, which become the
  covariates of the geostatistical fit (so the fit never sees a prediction
  made by a model trained on the same observation);
- full-data predictions at every cell, which stand in for those
  covariates when cell draws are generated.

Targets are observed rates (outcome / trials) and observations are
weighted by their number of trials.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict

import numpy as np
import pandas as pd
from sklearn.base import clone
from sklearn.ensemble import GradientBoostingRegressor, RandomForestRegressor
from sklearn.linear_model import Ridge
from sklearn.model_selection import GridSearchCV, KFold, cross_val_predict

from mbg.contracts import require

if TYPE_CHECKING:
    from mbg.schemas import InternalConfig

__all__ = ['SubmodelResult', 'run_regression_submodels', 'SUBMODELS']

logger = logging.getLogger(__name__)


# name -> (estimator factory, hyper-parameter grid)
SUBMODELS = {
    "ridge": (
        lambda seed: Ridge(),
        {"alpha": [0.01, 0.1, 1.0, 10.0, 100.0]},
    ),
    "rf": (
        lambda seed: RandomForestRegressor(n_estimators=200, random_state=seed),
        {"max_depth": [None, 6], "min_samples_leaf": [1, 5]},
    ),
    "gbm": (
        lambda seed: GradientBoostingRegressor(random_state=seed),
        {"n_estimators": [100, 300], "max_depth": [2, 3], "learning_rate": [0.05, 0.1]},
    ),
}


@dataclass(frozen=True)
class SubmodelResult:
    """Outputs of the stacking stage.

    Attributes
    ----------
    point_predictions : pd.DataFrame
        Out-of-fold predictions, one column per submodel, aligned with the
        survey data rows.
    cell_predictions : pd.DataFrame
        Full-fit predictions, one column per submodel, indexed by cell id.
    cv_scores : pd.DataFrame
        Per submodel: weighted out-of-fold RMSE on the rate scale and the
        selected hyper-parameters.
    """
    point_predictions: pd.DataFrame
    cell_predictions: pd.DataFrame
    cv_scores: pd.DataFrame


def run_regression_submodels(data: pd.DataFrame, cell_features: pd.DataFrame,
                             config: "InternalConfig") -> SubmodelResult:
    """Fit every configured submodel and predict at points and cells.

    Parameters
    ----------
    data : pd.DataFrame
        Survey data with ``cell_id`` (from assign_points_to_cells()) plus
        the configured outcome and trials columns.
    cell_features : pd.DataFrame
        Covariates per cell, indexed by cell id. An intercept column, if
        present, is ignored.
    config : InternalConfig

    Raises
    ------
    ValueError
        Fewer observations than CV folds, or an unknown submodel.
    ContractViolation
        Survey rows reference cells absent from ``cell_features``.
    """
    stacking = config.stacking
    outcome = data[config.data.outcome_field].to_numpy(dtype=np.float64)
    trials = data[config.data.trials_field].to_numpy(dtype=np.float64)

    if len(data) < stacking.cv_folds:
        raise ValueError(
            f"stacking needs at least cv_folds={stacking.cv_folds} observations, got {len(data)}"
        )
    unknown = [m for m in stacking.models if m not in SUBMODELS]
    if unknown:
        raise ValueError(f"Unknown submodels: {unknown}")

    features = cell_features.drop(columns=["intercept"], errors="ignore")
    require(len(features.columns) > 0, "Submodel contract violated: no covariates to learn from")
    missing = ~data["cell_id"].isin(features.index)
    require(
        not missing.any(),
        f"Submodel contract violated: {int(missing.sum())} survey rows reference unknown cell ids"
    )

    X_points = features.loc[data["cell_id"]].to_numpy(dtype=np.float64)
    X_cells = features.to_numpy(dtype=np.float64)
    target = outcome / trials
    weight = trials

    folds = KFold(n_splits=stacking.cv_folds, shuffle=True, random_state=stacking.seed)
    point_predictions, cell_predictions, scores = {}, {}, []

    for name in stacking.models:
        factory, grid = SUBMODELS[name]
        search = GridSearchCV(factory(stacking.seed), grid, cv=folds,
                              scoring="neg_mean_squared_error", refit=True)
        search.fit(X_points, target, sample_weight=weight)

        oof = cross_val_predict(clone(search.best_estimator_), X_points, target, cv=folds,
                                params={"sample_weight": weight})
        rmse = float(np.sqrt(np.average((oof - target) ** 2, weights=weight)))
        logger.info("Submodel %s: CV RMSE %.4f, params %s", name, rmse, search.best_params_)

        point_predictions[name] = _transform(oof, config)
        cell_predictions[name] = _transform(search.best_estimator_.predict(X_cells), config)
        scores.append({"model": name, "rmse": rmse, "best_params": repr(search.best_params_)})

    return SubmodelResult(
        point_predictions=pd.DataFrame(point_predictions, index=data.index),
        cell_predictions=pd.DataFrame(cell_predictions, index=cell_features.index),
        cv_scores=pd.DataFrame(scores),
    )


def _transform(predictions: np.ndarray, config: "InternalConfig") -> np.ndarray:
    """Clip rates into the link's domain and optionally move to the link scale."""
    eps = config.stacking.clip_epsilon
    if config.inference.family == "binomial":
        clipped = np.clip(predictions, eps, 1.0 - eps)
        if config.stacking.logit_transform:
            return np.log(clipped / (1.0 - clipped))
        return clipped

    clipped = np.maximum(predictions, eps)
    if config.stacking.logit_transform:
        return np.log(clipped)
    return clipped
