"""Exceptions raised by stage contracts and checkpoint loading.

Contracts fail fast, loud, and once. All violations raise the same
exception type, allowing caller to handle ray-tracing bugs uniformly.
"""


class ContractViolation(RuntimeError):
    """Raised when a stage contract is violated.

    This indicates a bug in ray-tracing logic, not bad user input or a
    numerical failure of a single geodesic. It means a stage did not
    produce the invariants it promised.

    Key distinction:
    - ConfigurationError: User/config error (raised during resolution)
    - ContractViolation: Stage bug (programmer error)
    - Per-geodesic status flags: numerical failures (never raised)
    """
    pass


class CheckpointMismatchError(RuntimeError):
    """Raised when a loaded checkpoint does not match the running configuration.

    Checkpoints store a fingerprint of the options that determine their
    contents. Loading under different options would silently produce a
    different image, so the run stops instead.
    """
    pass
