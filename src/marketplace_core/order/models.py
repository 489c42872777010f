"""
Order Domain Models - statuses, roles and the transition table

An Order is a vendor's purchase request. Suppliers attach bids, the vendor
accepts one, and the order then walks the fulfillment chain:

    pending -> bidding -> accepted -> confirmed -> preparing -> ready
            -> in_transit -> delivered -> completed

with cancelled and expired as absorbing states.

Fun fact: The oldest surviving purchase order is a clay tablet from Ur
(c. 1750 BC) in which Nanni complains to the copper merchant Ea-nasir
about the quality of a delivery - dispute handling came before e-commerce.
"""

from enum import Enum


class OrderStatus(str, Enum):
    """Order lifecycle states"""

    PENDING = "pending"  # Created, waiting for the first bid
    BIDDING = "bidding"  # At least one supplier bid
    ACCEPTED = "accepted"  # Vendor picked a bid (or order spawned)
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class OrderKind(str, Enum):
    """Individual purchase or vendor-coordinated pool"""

    INDIVIDUAL = "individual"
    GROUP = "group"


class OrderSource(str, Enum):
    """Where an order came from"""

    DIRECT = "direct"  # Created by a vendor
    AUCTION = "auction"  # Spawned by an auction win
    GROUP_BUY = "group_buy"  # Spawned by a completed group buy


class Role(str, Enum):
    """Role the caller acts in (resolved outside the core)"""

    VENDOR = "vendor"
    SUPPLIER = "supplier"
    SYSTEM = "system"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"


TERMINAL_STATUSES = frozenset(
    {OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.EXPIRED}
)

# Statuses in which suppliers may still bid and vendors may still join
OPEN_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.BIDDING})

# Statuses in which the order has a supplier and payment is meaningful
FULFILLMENT_STATUSES = frozenset(
    {
        OrderStatus.ACCEPTED,
        OrderStatus.CONFIRMED,
        OrderStatus.PREPARING,
        OrderStatus.READY,
        OrderStatus.IN_TRANSIT,
        OrderStatus.DELIVERED,
        OrderStatus.COMPLETED,
    }
)

FEEDBACK_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.COMPLETED})

# (role, from_status) -> statuses that role may move the order to.
# pending->bidding and bidding->accepted are absent on purpose: only
# submit_bid and accept_bid perform them.
TRANSITIONS: dict[tuple[Role, OrderStatus], frozenset[OrderStatus]] = {
    (Role.VENDOR, OrderStatus.ACCEPTED): frozenset(
        {OrderStatus.CONFIRMED, OrderStatus.CANCELLED}
    ),
    (Role.VENDOR, OrderStatus.CONFIRMED): frozenset({OrderStatus.CANCELLED}),
    (Role.VENDOR, OrderStatus.PREPARING): frozenset({OrderStatus.CANCELLED}),
    (Role.VENDOR, OrderStatus.READY): frozenset({OrderStatus.IN_TRANSIT}),
    (Role.VENDOR, OrderStatus.IN_TRANSIT): frozenset({OrderStatus.DELIVERED}),
    (Role.VENDOR, OrderStatus.DELIVERED): frozenset({OrderStatus.COMPLETED}),
    (Role.SUPPLIER, OrderStatus.ACCEPTED): frozenset({OrderStatus.PREPARING}),
    (Role.SUPPLIER, OrderStatus.CONFIRMED): frozenset({OrderStatus.PREPARING}),
    (Role.SUPPLIER, OrderStatus.PREPARING): frozenset({OrderStatus.READY}),
    (Role.SUPPLIER, OrderStatus.READY): frozenset({OrderStatus.IN_TRANSIT}),
    (Role.SUPPLIER, OrderStatus.IN_TRANSIT): frozenset({OrderStatus.DELIVERED}),
    (Role.SYSTEM, OrderStatus.PENDING): frozenset({OrderStatus.EXPIRED}),
    (Role.SYSTEM, OrderStatus.BIDDING): frozenset({OrderStatus.EXPIRED}),
}


def allowed_transitions(role: Role, current: OrderStatus) -> frozenset[OrderStatus]:
    """Statuses `role` may move an order in `current` status to"""
    return TRANSITIONS.get((role, current), frozenset())
