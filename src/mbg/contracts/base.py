"""Base contract enforcement utilities.

The require() function is the single enforcement mechanism for all contracts.
"""

from mbg.contracts.failure import ContractViolation


def require(condition: bool, message: str, exc: type = ContractViolation) -> None:
    """Enforce a pipeline contract.

    This is called at stage boundaries to verify the preceding stage
    produced the guaranteed invariants. It is fail-fast: no recovery,
    no fallback, no silence.

    Parameters
    ----------
    condition : bool
        The invariant that must be true. If False, ``exc`` is raised.

    message : str
        Error message explaining the contract violation. Name the offending
        identifiers so the caller can find them.

    exc : type, optional
        Exception class to raise (default ContractViolation).

    Raises
    ------
    ContractViolation
        If condition is False.

    Examples
    --------
    >>> require("x" in da.dims, "ID raster contract: missing 'x' dimension")
    >>> require(draws.ndim == 2, "Draws contract: expected 2D draws matrix")
    """
    if not condition:
        raise exc(message)


def format_ids(ids, limit: int = 10) -> str:
    """Render a list of identifiers for an error message, truncated."""
    ids = list(ids)
    shown = ", ".join(str(i) for i in ids[:limit])
    if len(ids) > limit:
        shown += f", ... ({len(ids) - limit} more)"
    return f"[{shown}]"
