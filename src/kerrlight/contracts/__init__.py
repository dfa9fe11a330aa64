"""Stage contracts: fail-fast enforcement of stage invariants.

Contracts fail immediately and loudly when a ray-tracing stage does not
produce its promised invariants.

Key principle:
- Pydantic validates config correctness
- Contracts validate stage correctness
- Per-geodesic and per-sample flags record numerical failures
"""

from kerrlight.contracts.failure import CheckpointMismatchError, ContractViolation
from kerrlight.contracts.base import require

__all__ = [
    "CheckpointMismatchError",
    "ContractViolation",
    "require",
]
