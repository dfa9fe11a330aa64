"""Base contract enforcement utilities.

The require() function is the single enforcement mechanism for all contracts.
It enforces semantic invariants between ray-tracing stages.
"""

from kerrlight.contracts.failure import ContractViolation


def require(condition: bool, message: str) -> None:
    """Enforce a stage contract.

    This is called at stage boundaries to verify the preceding stage
    produced the guaranteed invariants. It is fail-fast: no recovery,
    no fallback, no silence.

    Parameters
    ----------
    condition : bool
        The invariant that must be true. If False, ContractViolation is raised.

    message : str
        Error message explaining the contract violation (for debugging).

    Raises
    ------
    ContractViolation
        If condition is False. This indicates a bug in ray-tracing logic.

    Examples
    --------
    >>> require(bundle.pos.shape[-1] == 4, "Geodesic contract: positions need 4 components")
    >>> require(layout.num_quantities > 0, "Image contract: at least one quantity expected")
    """
    if not condition:
        raise ContractViolation(message)
