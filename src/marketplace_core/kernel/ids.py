"""
ID generation

Aggregates get time-ordered UUIDv7-like ids. Fan-out targets (the Order spawned
by an auction win, the Orders spawned by a completed group buy) get
deterministic ids derived from their idempotency key, so a retried fan-out
addresses the same stream instead of creating a twin.
"""

import secrets
import time
import uuid

# Namespace for derived ids (uuid5)
MARKET_NAMESPACE = uuid.UUID("6f1c2a7e-94b3-5d0e-8a41-3c9d2b7f0e15")

_VERSION_7 = 0x7 << 76
_RFC4122_VARIANT = 0x2 << 62


def generate_id() -> str:
    """
    Time-ordered id: 48-bit millisecond timestamp, then 74 random bits

    Ids generated later sort later (to the millisecond), which keeps event
    and aggregate listings in creation order.
    """
    millis = int(time.time() * 1000) & ((1 << 48) - 1)
    rand_a = secrets.randbits(12)
    rand_b = secrets.randbits(62)
    value = (millis << 80) | _VERSION_7 | (rand_a << 64) | _RFC4122_VARIANT | rand_b
    return str(uuid.UUID(int=value))


def derive_id(*parts: str) -> str:
    """
    Deterministic id for an idempotency key

    derive_id("auction-win", auction_id) always returns the same id, so the
    Order spawned by an auction can be created at most once.
    """
    return str(uuid.uuid5(MARKET_NAMESPACE, "/".join(parts)))
