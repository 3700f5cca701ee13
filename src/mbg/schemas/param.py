"""ParamConfig: Expert defaults for the MBG pipeline.

This module defines the complete default configuration. ALL pipeline
parameters must have defaults here. No runtime code should define fallback
values - this is the single source of truth for defaults.

Runtime code NEVER reads from ParamConfig directly - it only receives InternalConfig.
"""

from typing import Literal, Optional
from pydantic import Field, field_validator, model_validator
from mbg.schemas.base import MbgBaseModel, check_interval, check_level_names


# =============================================================================
# Nested Configuration Models
# =============================================================================

class GridConfig(MbgBaseModel):
    """ID raster construction."""
    rasterize_rule: Literal["center", "touched", "majority"] = "touched"
    majority_threshold: float = Field(0.5, gt=0, le=1.0)


class AggregationTableConfig(MbgBaseModel):
    """Polygon-to-cell aggregation table construction."""
    polygon_id_field: str = "polygon_id"
    keep_fields: list[str] = Field(default_factory=list)
    on_empty: Literal["warn", "error"] = "warn"
    min_area_fraction: float = Field(1e-12, ge=0, lt=1.0)


class AggregationLevelConfig(MbgBaseModel):
    """One administrative tier: polygons are unique combinations of id_fields."""
    name: str = Field(..., min_length=1)
    id_fields: list[str] = Field(..., min_length=1)


class AggregationConfig(MbgBaseModel):
    """Population-weighted aggregation of cell draws to polygons."""
    population_weighting: bool = True
    method: Literal["mean", "sum"] = "mean"
    zero_weight_policy: Literal["area", "missing", "error"] = "area"
    ui_lower: float = 0.025
    ui_upper: float = 0.975
    levels: list[AggregationLevelConfig] = Field(default_factory=list)
    n_workers: int = Field(1, ge=1)

    @field_validator("method", "zero_weight_policy", mode="before")
    @classmethod
    def normalize_names(cls, v):
        """Normalize option names to lowercase."""
        if isinstance(v, str):
            return v.lower().strip()
        return v

    @model_validator(mode="after")
    def check_combinations(self):
        check_interval(self.ui_lower, self.ui_upper)
        check_level_names(self.levels)
        return self


class CovariateConfig(MbgBaseModel):
    """Covariate preparation."""
    normalize: Literal["zscore", "minmax", "none"] = "zscore"
    intercept: bool = True


class DataConfig(MbgBaseModel):
    """Survey point data column names."""
    x_field: str = "x"
    y_field: str = "y"
    outcome_field: str = "indicator"
    trials_field: str = "samplesize"
    collapse_to_cells: bool = False


class StackingConfig(MbgBaseModel):
    """Regression submodels used as covariates (stacking)."""
    enabled: bool = False
    models: list[Literal["ridge", "rf", "gbm"]] = Field(
        default_factory=lambda: ["ridge", "rf", "gbm"]
    )
    cv_folds: int = Field(5, ge=2)
    seed: int = 0
    logit_transform: bool = True
    clip_epsilon: float = Field(1e-4, gt=0, lt=0.5)
    use_raw_covariates: bool = False

    @model_validator(mode="after")
    def check_models(self):
        if self.enabled and not self.models:
            raise ValueError("stacking is enabled but no submodels are configured")
        if len(set(self.models)) != len(self.models):
            raise ValueError(f"duplicate submodels configured: {self.models}")
        return self


class InferenceConfig(MbgBaseModel):
    """Reference inference backend settings."""
    family: Literal["binomial", "poisson"] = "binomial"
    prior_sd: float = Field(10.0, gt=0)
    max_iter: int = Field(200, ge=1)
    tol: float = Field(1e-8, gt=0)


class DrawsConfig(MbgBaseModel):
    """Posterior sampling."""
    n_samples: int = Field(250, ge=1)
    seed: Optional[int] = None


class OutputConfig(MbgBaseModel):
    """Output file configuration."""
    base_dir: Optional[str] = None
    compression: Literal["snappy", "gzip", "zstd", "none"] = "snappy"
    write_draws: bool = True


class LoggingConfig(MbgBaseModel):
    """Logging configuration."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


# =============================================================================
# Main ParamConfig
# =============================================================================

class ParamConfig(MbgBaseModel):
    """Complete expert configuration with all defaults.

    This is the single source of truth for all pipeline parameters.
    Every tunable parameter MUST have a default here.

    Usage
    -----
    This config is NOT used directly by runtime code. It serves as the
    base layer in config resolution:

        internal_cfg = resolve_config(param_cfg, user_cfg)

    Runtime code only sees InternalConfig.
    """

    grid: GridConfig = Field(default_factory=GridConfig)
    aggregation_table: AggregationTableConfig = Field(default_factory=AggregationTableConfig)
    aggregation: AggregationConfig = Field(default_factory=AggregationConfig)
    covariates: CovariateConfig = Field(default_factory=CovariateConfig)
    data: DataConfig = Field(default_factory=DataConfig)
    stacking: StackingConfig = Field(default_factory=StackingConfig)
    inference: InferenceConfig = Field(default_factory=InferenceConfig)
    draws: DrawsConfig = Field(default_factory=DrawsConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
