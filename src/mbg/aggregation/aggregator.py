"""Population-weighted aggregation of cell draws to polygons.

Aggregation happens draw by draw: for every posterior sample ``s``

    aggregated[P, s] = sum over cells c of weight(P, c) * cell_draws[c, s]

with a weight matrix that does not depend on ``s``, so the uncertainty of
the cell-level field passes into the polygon aggregates undistorted. The
whole level is a single sparse matrix product. Summaries (mean and
interval bounds) are computed afterwards across the sample dimension.

Levels (e.g. commune and region) share the cell draws and the aggregation
table but group cells differently; they are independent of one another
and may be processed concurrently.

"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from mbg.aggregation.summary import summarize_draws
from mbg.aggregation.weights import build_weight_matrix
from mbg.contracts import assert_cell_draws, assert_aggregation_output

if TYPE_CHECKING:
    from mbg.schemas import InternalConfig

__all__ = ['LevelResult', 'aggregate_draws', 'aggregate_levels', 'PopulationWeightedAggregator']

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LevelResult:
    """Aggregated draws and summary for one aggregation level.

    Attributes
    ----------
    name : str
        Level name (e.g. "commune").
    id_fields : tuple of str
        Identifier columns that key the level's polygons.
    keys : pd.DataFrame
        One row per polygon, columns ``id_fields``; row order matches
        ``draws`` and ``summary``.
    draws : np.ndarray
        (n_polygons, n_samples) aggregated draws.
    summary : pd.DataFrame
        ``id_fields`` + n_cells, total_weight, weight_fallback, mean,
        lower, upper.
    """
    name: str
    id_fields: Tuple[str, ...]
    keys: pd.DataFrame
    draws: np.ndarray
    summary: pd.DataFrame

    @property
    def n_samples(self) -> int:
        return self.draws.shape[1]

    def to_long(self) -> pd.DataFrame:
        """Sample-level table keyed by the id fields and a 1-based sample index."""
        n_polygons, n_samples = self.draws.shape
        long = self.keys.loc[self.keys.index.repeat(n_samples)].reset_index(drop=True)
        long["sample"] = np.tile(np.arange(1, n_samples + 1), n_polygons)
        long["value"] = self.draws.reshape(-1)
        return long


def aggregate_draws(
    cell_draws: np.ndarray,
    aggregation_table: pd.DataFrame,
    id_fields: Sequence[str],
    population: Optional[np.ndarray] = None,
    method: str = "mean",
    zero_weight_policy: str = "area",
    ui_lower: float = 0.025,
    ui_upper: float = 0.975,
    name: Optional[str] = None,
) -> LevelResult:
    """Aggregate a (n_cells, n_samples) draws matrix to the polygons of one level.

    Parameters
    ----------
    cell_draws : np.ndarray
        Row ``i`` holds the draws for cell id ``i + 1``. Not modified.
    aggregation_table : pd.DataFrame
        Polygon/cell relation with ``cell_id``, ``area_fraction`` and the
        ``id_fields`` columns. Not modified.
    id_fields : sequence of str
        Columns whose unique combinations define this level's polygons.
    population : np.ndarray, optional
        Per-cell weights ordered by cell id; None means uniform weights.
    method : {"mean", "sum"}
        Weighted mean (weights normalized per polygon) or weighted total.
    zero_weight_policy : {"area", "missing", "error"}
        Resolution for polygons whose effective weight sums to zero.
    ui_lower, ui_upper : float
        Quantiles of the uncertainty interval.
    name : str, optional
        Level name; defaults to the joined id fields.

    Returns
    -------
    LevelResult

    Raises
    ------
    ContractViolation
        Table references cells absent from the draws, or a level id field
        is missing from the table.
    DegenerateWeightError
        Zero-weight polygon under the ``error`` policy.

    Examples
    --------
    >>> result = aggregate_draws(draws, table, ["region_code"], population=pop)
    >>> result.summary[["region_code", "mean", "lower", "upper"]]
    """
    assert_cell_draws(cell_draws)
    id_fields = tuple(id_fields)
    name = name or "_".join(id_fields)

    weights = build_weight_matrix(
        aggregation_table,
        id_fields,
        n_cells=cell_draws.shape[0],
        population=population,
        method=method,
        zero_weight_policy=zero_weight_policy,
    )

    draws = np.asarray(weights.matrix @ cell_draws, dtype=np.float64)
    if weights.missing.any():
        draws[weights.missing, :] = np.nan

    summary = weights.keys.copy()
    summary["n_cells"] = weights.n_cells
    summary["total_weight"] = weights.total_weight
    summary["weight_fallback"] = weights.fallback
    stats = summarize_draws(draws, ui_lower, ui_upper)
    for col in stats.columns:
        summary[col] = stats[col].to_numpy()

    assert_aggregation_output(weights.keys, draws, summary, cell_draws.shape[1])
    logger.debug("Level %s aggregated: %d polygons x %d samples",
                 name, draws.shape[0], draws.shape[1])

    return LevelResult(
        name=name,
        id_fields=id_fields,
        keys=weights.keys,
        draws=draws,
        summary=summary,
    )


def aggregate_levels(
    cell_draws: np.ndarray,
    aggregation_table: pd.DataFrame,
    levels: Dict[str, Sequence[str]],
    n_workers: int = 1,
    **kwargs,
) -> Dict[str, LevelResult]:
    """Aggregate the same draws to several levels.

    Levels are independent; with ``n_workers > 1`` they run in a thread
    pool. Results are returned in the order of ``levels``.

    Parameters
    ----------
    levels : dict
        ``{level_name: id_fields}``.
    **kwargs
        Passed to aggregate_draws() (population, method, policy, interval).
    """
    def _run(item):
        level_name, id_fields = item
        return aggregate_draws(cell_draws, aggregation_table, id_fields, name=level_name, **kwargs)

    items = list(levels.items())
    if n_workers > 1 and len(items) > 1:
        with ThreadPoolExecutor(max_workers=n_workers) as pool:
            results = list(pool.map(_run, items))
    else:
        results = [_run(item) for item in items]

    return {result.name: result for result in results}


class PopulationWeightedAggregator:
    """Config-driven aggregation of cell draws to every configured level.

    Example usage::

        aggregator = PopulationWeightedAggregator(config)
        results = aggregator.aggregate(cell_draws, table, population=pop)
        results["region"].summary
    """

    def __init__(self, config: "InternalConfig"):
        """Store aggregation settings.

        Parameters
        ----------
        config : InternalConfig
            Fully validated runtime configuration.
        """
        self.config = config
        self.population_weighting = config.aggregation.population_weighting
        self.method = config.aggregation.method
        self.zero_weight_policy = config.aggregation.zero_weight_policy
        self.ui_lower = config.aggregation.ui_lower
        self.ui_upper = config.aggregation.ui_upper
        self.n_workers = config.aggregation.n_workers
        self.levels = {level.name: tuple(level.id_fields) for level in config.aggregation.levels}

        logger.info("PopulationWeightedAggregator initialized: method=%s, population=%s, "
                    "policy=%s, levels=%s", self.method, self.population_weighting,
                    self.zero_weight_policy, list(self.levels))

    def aggregate(self, cell_draws: np.ndarray, aggregation_table: pd.DataFrame,
                  population: Optional[np.ndarray] = None) -> Dict[str, LevelResult]:
        """Aggregate to every configured level.

        Population is ignored when population weighting is switched off.
        When no levels are configured, the aggregation table's polygon id
        field is used as the single level.
        """
        if not self.population_weighting:
            population = None
        elif population is None:
            logger.info("No population weights supplied; using uniform cell weights")

        levels = self.levels
        if not levels:
            id_field = self.config.aggregation_table.polygon_id_field
            levels = {id_field: (id_field,)}

        return aggregate_levels(
            cell_draws,
            aggregation_table,
            levels,
            n_workers=self.n_workers,
            population=population,
            method=self.method,
            zero_weight_policy=self.zero_weight_policy,
            ui_lower=self.ui_lower,
            ui_upper=self.ui_upper,
        )
