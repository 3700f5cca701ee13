"""InternalConfig: Authoritative runtime configuration.

This is the ONLY config schema that runtime code sees. It is fully validated,
normalized, and contains NO optional fields that processing code depends on.

All .get() calls, fallback defaults, and validation logic are FORBIDDEN in
runtime code - everything is explicit here.
"""

from typing import Literal, Optional
from pydantic import Field, ConfigDict, model_validator
from mbg.schemas.base import MbgBaseModel, check_interval, check_level_names


# =============================================================================
# Nested Configuration Models (Runtime)
# =============================================================================

class InternalGridConfig(MbgBaseModel):
    """Runtime ID raster configuration."""
    rasterize_rule: Literal["center", "touched", "majority"]
    majority_threshold: float = Field(gt=0, le=1.0)


class InternalAggregationTableConfig(MbgBaseModel):
    """Runtime aggregation table configuration."""
    polygon_id_field: str
    keep_fields: list[str]
    on_empty: Literal["warn", "error"]
    min_area_fraction: float = Field(ge=0, lt=1.0)


class InternalAggregationLevelConfig(MbgBaseModel):
    """Runtime aggregation level."""
    name: str = Field(min_length=1)
    id_fields: list[str] = Field(min_length=1)


class InternalAggregationConfig(MbgBaseModel):
    """Runtime aggregation configuration."""
    population_weighting: bool
    method: Literal["mean", "sum"]
    zero_weight_policy: Literal["area", "missing", "error"]
    ui_lower: float
    ui_upper: float
    levels: list[InternalAggregationLevelConfig]
    n_workers: int = Field(ge=1)

    @model_validator(mode="after")
    def check_combinations(self):
        check_interval(self.ui_lower, self.ui_upper)
        check_level_names(self.levels)
        return self


class InternalCovariateConfig(MbgBaseModel):
    """Runtime covariate configuration."""
    normalize: Literal["zscore", "minmax", "none"]
    intercept: bool


class InternalDataConfig(MbgBaseModel):
    """Runtime survey data column names."""
    x_field: str
    y_field: str
    outcome_field: str
    trials_field: str
    collapse_to_cells: bool


class InternalStackingConfig(MbgBaseModel):
    """Runtime stacking configuration."""
    enabled: bool
    models: list[Literal["ridge", "rf", "gbm"]]
    cv_folds: int = Field(ge=2)
    seed: int
    logit_transform: bool
    clip_epsilon: float = Field(gt=0, lt=0.5)
    use_raw_covariates: bool

    @model_validator(mode="after")
    def check_models(self):
        if self.enabled and not self.models:
            raise ValueError("stacking is enabled but no submodels are configured")
        if len(set(self.models)) != len(self.models):
            raise ValueError(f"duplicate submodels configured: {self.models}")
        return self


class InternalInferenceConfig(MbgBaseModel):
    """Runtime inference backend settings."""
    family: Literal["binomial", "poisson"]
    prior_sd: float = Field(gt=0)
    max_iter: int = Field(ge=1)
    tol: float = Field(gt=0)


class InternalDrawsConfig(MbgBaseModel):
    """Runtime posterior sampling settings."""
    n_samples: int = Field(ge=1)
    seed: Optional[int]


class InternalOutputConfig(MbgBaseModel):
    """Runtime output configuration."""
    base_dir: Optional[str]  # None disables persistence
    compression: Literal["snappy", "gzip", "zstd", "none"]
    write_draws: bool


class InternalLoggingConfig(MbgBaseModel):
    """Runtime logging configuration."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


# =============================================================================
# Main InternalConfig
# =============================================================================

class InternalConfig(MbgBaseModel):
    """Authoritative runtime configuration.

    This is the ONLY configuration schema that processing code sees.
    It is fully validated, immutable, and contains explicit values for
    all parameters.

    Usage
    -----
    Runtime modules receive InternalConfig and access fields directly:

        def __init__(self, config: InternalConfig):
            self.lower = config.aggregation.ui_lower  # NOT .get()
            self.n_samples = config.draws.n_samples

    Rules
    -----
    - NO .get() calls
    - NO fallback defaults
    - NO type checking
    - NO validation

    All of that happens during config resolution, not in runtime code.
    """

    grid: InternalGridConfig
    aggregation_table: InternalAggregationTableConfig
    aggregation: InternalAggregationConfig
    covariates: InternalCovariateConfig
    data: InternalDataConfig
    stacking: InternalStackingConfig
    inference: InternalInferenceConfig
    draws: InternalDrawsConfig
    output: InternalOutputConfig
    logging: InternalLoggingConfig

    model_config = ConfigDict(
        extra='forbid',
        validate_assignment=True,
        use_enum_values=True,
        str_strip_whitespace=True,
        frozen=True,  # Immutable after construction
    )
