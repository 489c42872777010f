"""
Order - purchase requests, supplier bids and the fulfillment state machine
"""

from marketplace_core.order.handlers import OrderLifecycle
from marketplace_core.order.models import (
    TRANSITIONS,
    OrderKind,
    OrderSource,
    OrderStatus,
    Role,
    allowed_transitions,
)
from marketplace_core.order.projections import OrderRegistry

__all__ = [
    "OrderLifecycle",
    "OrderRegistry",
    "OrderKind",
    "OrderSource",
    "OrderStatus",
    "Role",
    "TRANSITIONS",
    "allowed_transitions",
]
