"""UserConfig: Forgiving, minimal user-facing configuration.

This schema accepts user inputs in a variety of formats, with aliases
for common naming patterns (e.g., UI_LOWER → ui_lower, N_SAMPLES → n_samples).

UserConfig is intentionally minimal - users only specify what they want
to override from the expert defaults. Validation is lenient to accept
both uppercase and lowercase keys, integers where floats are expected, and
aggregation levels either as a list of {"name", "id_fields"} dicts or as a
{name: id_fields} mapping.
"""

from typing import Literal, Optional, Any
from pydantic import Field, field_validator
from mbg.schemas.base import MbgBaseModel


def _levels_to_list(v):
    """Accept {name: fields} mappings and bare string fields for levels."""
    if isinstance(v, dict):
        v = [{"name": name, "id_fields": fields} for name, fields in v.items()]
    if isinstance(v, list):
        normalized = []
        for level in v:
            if isinstance(level, dict) and isinstance(level.get("id_fields"), str):
                level = {**level, "id_fields": [level["id_fields"]]}
            normalized.append(level)
        return normalized
    return v


class UserAggregationConfig(MbgBaseModel):
    """User-facing aggregation config."""
    population_weighting: Optional[bool] = None
    method: Optional[str] = None
    zero_weight_policy: Optional[str] = None
    ui_lower: Optional[float] = None
    ui_upper: Optional[float] = None
    levels: Optional[list[dict[str, Any]]] = None
    n_workers: Optional[int] = None

    @field_validator("method", "zero_weight_policy", mode="before")
    @classmethod
    def normalize_names(cls, v):
        """Normalize option names to lowercase."""
        if isinstance(v, str):
            return v.lower().strip()
        return v

    @field_validator("levels", mode="before")
    @classmethod
    def coerce_levels(cls, v):
        return _levels_to_list(v)


class UserStackingConfig(MbgBaseModel):
    """User-facing stacking config."""
    enabled: Optional[bool] = None
    models: Optional[list[str]] = None
    cv_folds: Optional[int] = None
    seed: Optional[int] = None
    logit_transform: Optional[bool] = None
    clip_epsilon: Optional[float] = None
    use_raw_covariates: Optional[bool] = None

    @field_validator("models", mode="before")
    @classmethod
    def normalize_models(cls, v):
        """Normalize model names to lowercase."""
        if isinstance(v, list):
            return [m.lower().strip() if isinstance(m, str) else m for m in v]
        return v


class UserConfig(MbgBaseModel):
    """User-facing configuration schema.

    Minimal, forgiving, and uses common aliases. Users only specify
    what they want to override from ParamConfig defaults.

    This config is converted to internal overrides during resolution.

    Usage
    -----
        user_cfg = UserConfig(
            POLYGON_ID_FIELD="commune_code",
            KEEP_FIELDS=["region_code"],
            LEVELS={"commune": ["commune_code"], "region": ["region_code"]},
            N_SAMPLES=500,
        )

        internal = resolve_config(param_cfg, user_cfg)
    """

    # Grid / aggregation table (flat aliases)
    rasterize_rule: Optional[str] = Field(None, alias="RASTERIZE_RULE")
    polygon_id_field: Optional[str] = Field(None, alias="POLYGON_ID_FIELD")
    keep_fields: Optional[list[str]] = Field(None, alias="KEEP_FIELDS")
    on_empty_polygon: Optional[Literal["warn", "error"]] = Field(None, alias="ON_EMPTY_POLYGON")

    # Aggregation (flat aliases)
    population_weighting: Optional[bool] = Field(None, alias="POPULATION_WEIGHTING")
    aggregation_method: Optional[str] = Field(None, alias="AGGREGATION_METHOD")
    zero_weight_policy: Optional[str] = Field(None, alias="ZERO_WEIGHT_POLICY")
    ui_lower: Optional[float] = Field(None, alias="UI_LOWER")
    ui_upper: Optional[float] = Field(None, alias="UI_UPPER")
    levels: Optional[list[dict[str, Any]]] = Field(None, alias="LEVELS")
    n_workers: Optional[int] = Field(None, alias="N_WORKERS")

    # Modelling (flat aliases)
    family: Optional[str] = Field(None, alias="FAMILY")
    normalize_covariates: Optional[str] = Field(None, alias="NORMALIZE_COVARIATES")
    stacking: Optional[bool] = Field(None, alias="STACKING")
    submodels: Optional[list[str]] = Field(None, alias="SUBMODELS")
    cv_folds: Optional[int] = Field(None, alias="CV_FOLDS")
    n_samples: Optional[int] = Field(None, alias="N_SAMPLES")
    seed: Optional[int] = Field(None, alias="SEED")

    # Operational
    base_dir: Optional[str] = Field(None, alias="BASE_DIR")
    log_level: Optional[Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]] = Field(None, alias="LOG_LEVEL")

    # Nested overrides (advanced users)
    grid: Optional[dict[str, Any]] = None
    aggregation_table: Optional[dict[str, Any]] = None
    aggregation: Optional[UserAggregationConfig] = None
    covariates: Optional[dict[str, Any]] = None
    data: Optional[dict[str, Any]] = None
    stacking_options: Optional[UserStackingConfig] = None
    inference: Optional[dict[str, Any]] = None
    draws: Optional[dict[str, Any]] = None
    output: Optional[dict[str, Any]] = None

    model_config = MbgBaseModel.model_config.copy()
    # Allow forgiving input dictionaries (ignore unknown legacy keys)
    model_config.update({"populate_by_name": True, "extra": "ignore"})

    @field_validator("ui_lower", "ui_upper", mode="before")
    @classmethod
    def coerce_numeric_fields(cls, v):
        """Accept int or float for numeric fields."""
        if v is not None:
            return float(v)
        return v

    @field_validator("rasterize_rule", "aggregation_method", "zero_weight_policy",
                     "family", "normalize_covariates", mode="before")
    @classmethod
    def normalize_option_names(cls, v):
        """Normalize option names to lowercase."""
        if isinstance(v, str):
            return v.lower().strip()
        return v

    @field_validator("submodels", mode="before")
    @classmethod
    def normalize_submodels(cls, v):
        if isinstance(v, list):
            return [m.lower().strip() if isinstance(m, str) else m for m in v]
        return v

    @field_validator("levels", mode="before")
    @classmethod
    def coerce_levels(cls, v):
        return _levels_to_list(v)

    def to_internal_overrides(self) -> dict:
        """Convert flat UserConfig to nested InternalConfig structure.

        Returns
        -------
        dict
            Nested dictionary matching InternalConfig structure
        """
        overrides = {}

        # Grid section
        grid = {}
        if self.rasterize_rule is not None:
            grid["rasterize_rule"] = self.rasterize_rule
        if self.grid is not None:
            grid.update(self.grid)
        if grid:
            overrides["grid"] = grid

        # Aggregation table section
        table = {}
        if self.polygon_id_field is not None:
            table["polygon_id_field"] = self.polygon_id_field
        if self.keep_fields is not None:
            table["keep_fields"] = self.keep_fields
        if self.on_empty_polygon is not None:
            table["on_empty"] = self.on_empty_polygon
        if self.aggregation_table is not None:
            table.update(self.aggregation_table)
        if table:
            overrides["aggregation_table"] = table

        # Aggregation section
        aggregation = {}
        if self.population_weighting is not None:
            aggregation["population_weighting"] = self.population_weighting
        if self.aggregation_method is not None:
            aggregation["method"] = self.aggregation_method
        if self.zero_weight_policy is not None:
            aggregation["zero_weight_policy"] = self.zero_weight_policy
        if self.ui_lower is not None:
            aggregation["ui_lower"] = self.ui_lower
        if self.ui_upper is not None:
            aggregation["ui_upper"] = self.ui_upper
        if self.levels is not None:
            aggregation["levels"] = self.levels
        if self.n_workers is not None:
            aggregation["n_workers"] = self.n_workers

        # Merge with explicit aggregation config
        if self.aggregation is not None:
            aggregation.update(self.aggregation.model_dump(exclude_none=True))
        if aggregation:
            overrides["aggregation"] = aggregation

        # Covariates section
        covariates = {}
        if self.normalize_covariates is not None:
            covariates["normalize"] = self.normalize_covariates
        if self.covariates is not None:
            covariates.update(self.covariates)
        if covariates:
            overrides["covariates"] = covariates

        if self.data is not None:
            overrides["data"] = dict(self.data)

        # Stacking section
        stacking = {}
        if self.stacking is not None:
            stacking["enabled"] = self.stacking
        if self.submodels is not None:
            stacking["models"] = self.submodels
        if self.cv_folds is not None:
            stacking["cv_folds"] = self.cv_folds
        if self.seed is not None:
            stacking["seed"] = self.seed
        if self.stacking_options is not None:
            stacking.update(self.stacking_options.model_dump(exclude_none=True))
        if stacking:
            overrides["stacking"] = stacking

        # Inference section
        inference = {}
        if self.family is not None:
            inference["family"] = self.family
        if self.inference is not None:
            inference.update(self.inference)
        if inference:
            overrides["inference"] = inference

        # Draws section
        draws = {}
        if self.n_samples is not None:
            draws["n_samples"] = self.n_samples
        if self.seed is not None:
            draws["seed"] = self.seed
        if self.draws is not None:
            draws.update(self.draws)
        if draws:
            overrides["draws"] = draws

        # Output section
        output = {}
        if self.base_dir is not None:
            output["base_dir"] = str(self.base_dir)
        if self.output is not None:
            output.update(self.output)
        if output:
            overrides["output"] = output

        if self.log_level is not None:
            overrides["logging"] = {"level": self.log_level}

        return overrides
