"""
Order Module Invariants - pure validation functions

Each function raises a typed error and returns None otherwise. Handlers
call them before producing events, so a rejected operation never leaves a
trace in the order's stream.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from marketplace_core.kernel.errors import (
    BiddingClosed,
    DeadlinePassed,
    DuplicateParticipant,
    GroupFull,
    InvalidTransition,
    InvariantViolation,
    NotAuthorized,
    NotFound,
    ValidationError,
)
from marketplace_core.kernel.time import parse_datetime
from marketplace_core.order.models import (
    OPEN_STATUSES,
    OrderKind,
    OrderStatus,
    Role,
    allowed_transitions,
)


def validate_order_exists(order_id: str, order: dict[str, Any] | None) -> dict[str, Any]:
    if order is None:
        raise NotFound("Order", order_id)
    return order


def validate_role(role: Role, expected: Role, actor_id: str, operation: str) -> None:
    if role != expected:
        raise NotAuthorized(actor_id, operation, f"requires role {expected.value}")


def validate_owner(order: dict[str, Any], actor_id: str, operation: str) -> None:
    if order["vendor_id"] != actor_id:
        raise NotAuthorized(actor_id, operation, "only the owning vendor may do this")


def validate_assigned_supplier(order: dict[str, Any], actor_id: str, operation: str) -> None:
    if order["supplier_id"] is None or order["supplier_id"] != actor_id:
        raise NotAuthorized(actor_id, operation, "only the assigned supplier may do this")


def validate_party(order: dict[str, Any], role: Role, actor_id: str, operation: str) -> None:
    """Vendor must own the order, supplier must be assigned to it"""
    if role == Role.VENDOR:
        validate_owner(order, actor_id, operation)
    elif role == Role.SUPPLIER:
        validate_assigned_supplier(order, actor_id, operation)
    elif role != Role.SYSTEM:
        raise ValidationError(f"Unknown role {role!r}")


def validate_transition(order: dict[str, Any], role: Role, new_status: OrderStatus) -> None:
    """
    Check (role, current) -> new_status against the transition table

    Raises:
        InvalidTransition: Naming current and attempted status
    """
    current = OrderStatus(order["status"])
    if new_status not in allowed_transitions(role, current):
        raise InvalidTransition(
            order["order_id"], current.value, new_status.value, role.value
        )


def validate_bidding_open(order: dict[str, Any]) -> None:
    if OrderStatus(order["status"]) not in OPEN_STATUSES:
        raise BiddingClosed(order["order_id"], order["status"])


def validate_group_deadline(order: dict[str, Any], now: datetime) -> None:
    """Group orders reject bids and joins strictly after their deadline"""
    group = order.get("group")
    if order["kind"] != OrderKind.GROUP.value or group is None:
        return
    deadline = parse_datetime(group["deadline"])
    if now > deadline:
        raise DeadlinePassed(order["order_id"], group["deadline"])


def validate_can_join(order: dict[str, Any], vendor_id: str, now: datetime) -> None:
    """
    Order-embedded pools take one commitment per vendor

    Duplicate joins are rejected (unlike GroupBuy.join, which merges).
    Quantity may exceed the pool's target; only participant count and
    deadline limit joins.
    """
    if order["kind"] != OrderKind.GROUP.value:
        raise ValidationError(f"Order {order['order_id']} is not a group order")
    status = OrderStatus(order["status"])
    if status not in OPEN_STATUSES:
        raise InvalidTransition(order["order_id"], status.value, "join_group", Role.VENDOR.value)
    validate_group_deadline(order, now)

    participants = order["group"]["participants"]
    if vendor_id in participants:
        raise DuplicateParticipant(order["order_id"], vendor_id)
    if len(participants) >= order["group"]["max_participants"]:
        raise GroupFull(order["order_id"], order["group"]["max_participants"])


def validate_bid_exists(order: dict[str, Any], supplier_id: str) -> dict[str, Any]:
    bid = order["bids"].get(supplier_id)
    if bid is None:
        raise NotFound("Bid", f"{order['order_id']}/{supplier_id}")
    return bid


def total_committed_quantity(order: dict[str, Any]) -> Decimal:
    """Sum of participant quantities, recomputed on every call"""
    group = order.get("group")
    if not group:
        return Decimal("0")
    return sum((Decimal(q) for q in group["participants"].values()), Decimal("0"))


def check_order_consistency(order: dict[str, Any]) -> None:
    """
    Structural check of a projected order

    The last status history entry must agree with the status, and a group
    may never hold more participants than its cap.

    Raises:
        InvariantViolation: If the projection disagrees with itself
    """
    history = order["status_history"]
    if not history or history[-1]["status"] != order["status"]:
        raise InvariantViolation(
            f"Order {order['order_id']} status {order['status']} disagrees with its history"
        )
    group = order.get("group")
    if group and len(group["participants"]) > group["max_participants"]:
        raise InvariantViolation(
            f"Order {order['order_id']} holds more participants than allowed"
        )
    accepted = [b for b in order["bids"].values() if b["accepted"]]
    if len(accepted) > 1:
        raise InvariantViolation(f"Order {order['order_id']} has several accepted bids")
