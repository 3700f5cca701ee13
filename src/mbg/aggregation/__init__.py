"""Population-weighted aggregation of cell draws.

- weights: Per-polygon sparse weight matrices and zero-weight policy
- aggregator: Draw-by-draw aggregation to one or many levels
- summary: Mean and interval bounds across samples
"""

from mbg.aggregation.weights import WeightMatrix, build_weight_matrix, population_to_cell_weights
from mbg.aggregation.aggregator import (
    LevelResult,
    aggregate_draws,
    aggregate_levels,
    PopulationWeightedAggregator,
)
from mbg.aggregation.summary import summarize_draws

__all__ = [
    "WeightMatrix",
    "build_weight_matrix",
    "population_to_cell_weights",
    "LevelResult",
    "aggregate_draws",
    "aggregate_levels",
    "PopulationWeightedAggregator",
    "summarize_draws",
]
