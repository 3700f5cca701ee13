"""Centralized failure types for contract violations.

Contracts fail fast, loud, and once. All violations raise ContractViolation
(or a subclass), allowing callers to handle pipeline bugs uniformly.
"""

from enum import Enum


class FailurePolicy(str, Enum):
    """What to do when a polygon ends up with zero total effective weight.

    AREA (default): reweight the polygon by area fraction alone
    MISSING: emit NaN draws for the polygon and flag it in the summary
    ERROR: raise DegenerateWeightError
    """
    AREA = "area"
    MISSING = "missing"
    ERROR = "error"


class ContractViolation(RuntimeError):
    """Raised when a pipeline contract is violated.

    This indicates that a stage did not produce the invariants it promised,
    or that two stages were wired with inconsistent inputs (for example an
    aggregation table built against a different ID raster than the one
    used to generate cell draws).

    Key distinction:
    - ValueError: User/config error (handled by Pydantic or input checks)
    - ContractViolation: Pipeline wiring or invariant error
    - InferenceError: Model fitting failures from the inference backend
    """
    pass


class DegenerateWeightError(ContractViolation):
    """Raised when a polygon has zero total effective weight under the
    ``"error"`` zero-weight policy."""
    pass
