"""`mbg` - Model-based geostatistics with population-weighted aggregation.

Subpackages:
- grid: ID raster, aggregation table, covariates, survey points
- models: Submodels, inference backends, posterior draws
- aggregation: Population-weighted aggregation of cell draws
- pipeline: Model runner and outputs
- schemas: Pydantic configuration
- contracts: Stage invariants
"""

__version__ = "0.1.0"
