"""Base Pydantic model with strict defaults for MBG configs.

All MBG config schemas inherit from this base to ensure consistent
validation behavior across parameter, user, and internal configs.
"""

from pydantic import BaseModel, ConfigDict


class MbgBaseModel(BaseModel):
    """Base model for all MBG configuration schemas.

    Enforces strict validation:
    - No extra fields allowed
    - Validates assignments after initialization
    - Uses Python mode (not JSON mode)
    """

    model_config = ConfigDict(
        extra='forbid',           # Reject unknown fields
        validate_assignment=True, # Validate on field mutation
        use_enum_values=True,     # Convert enums to values
        str_strip_whitespace=True,# Strip whitespace from strings
    )


def check_interval(lower: float, upper: float) -> None:
    """Uncertainty interval bounds must be ordered quantiles in (0, 1)."""
    if not (0.0 < lower < 1.0 and 0.0 < upper < 1.0):
        raise ValueError(
            f"interval quantiles must lie in (0, 1), got lower={lower}, upper={upper}"
        )
    if lower >= upper:
        raise ValueError(
            f"interval lower quantile must be below upper, got lower={lower}, upper={upper}"
        )


def check_level_names(levels) -> None:
    """Aggregation level names must be unique."""
    names = [level.name for level in levels]
    duplicated = sorted({n for n in names if names.count(n) > 1})
    if duplicated:
        raise ValueError(f"duplicate aggregation level names: {duplicated}")
