"""
Kernel - Core event sourcing infrastructure

The kernel provides the machinery every marketplace aggregate builds upon:
append-only events, optimistic locking, idempotent commands, injectable time
and per-aggregate serialization.

Fun fact: The Amsterdam Exchange Bank of 1609 settled trades by book entry
alone - no coins changed hands, only ledger lines were appended.
"""

from marketplace_core.kernel.errors import (
    CommandIdempotencyViolation,
    Conflict,
    EventStoreError,
    InvariantViolation,
    MarketError,
    StreamVersionConflict,
)
from marketplace_core.kernel.events import Event, create_event
from marketplace_core.kernel.policy import MarketPolicy
from marketplace_core.kernel.time import RealTimeProvider, TestTimeProvider, TimeProvider

__all__ = [
    # IDs
    "generate_id",
    "derive_id",
    # Time
    "TimeProvider",
    "RealTimeProvider",
    "TestTimeProvider",
    # Events
    "Event",
    "create_event",
    # Policy
    "MarketPolicy",
    # Errors
    "MarketError",
    "EventStoreError",
    "CommandIdempotencyViolation",
    "StreamVersionConflict",
    "Conflict",
    "InvariantViolation",
]
