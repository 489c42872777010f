"""
Tests for order invariants (pure validation functions)
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from marketplace_core.kernel.errors import (
    BiddingClosed,
    DeadlinePassed,
    DuplicateParticipant,
    GroupFull,
    InvalidTransition,
    InvariantViolation,
    NotAuthorized,
    ValidationError,
)
from marketplace_core.order.invariants import (
    check_order_consistency,
    total_committed_quantity,
    validate_bidding_open,
    validate_can_join,
    validate_party,
    validate_transition,
)
from marketplace_core.order.models import OrderStatus, Role


def group_order(now: datetime, **overrides) -> dict:
    order = {
        "order_id": "order-1",
        "vendor_id": "vendor-ravi",
        "supplier_id": None,
        "kind": "group",
        "status": "pending",
        "status_history": [{"status": "pending"}],
        "bids": {},
        "group": {
            "min_participants": 1,
            "max_participants": 2,
            "deadline": (now + timedelta(days=1)).isoformat(),
            "participants": {},
        },
    }
    order.update(overrides)
    return order


def test_validate_transition_names_both_statuses(now: datetime) -> None:
    order = group_order(now, status="delivered")
    with pytest.raises(InvalidTransition) as exc_info:
        validate_transition(order, Role.SUPPLIER, OrderStatus.COMPLETED)
    assert exc_info.value.current == "delivered"
    assert exc_info.value.attempted == "completed"


def test_bidding_closed_after_acceptance(now: datetime) -> None:
    validate_bidding_open(group_order(now, status="bidding"))
    with pytest.raises(BiddingClosed):
        validate_bidding_open(group_order(now, status="accepted"))


def test_validate_party(now: datetime) -> None:
    order = group_order(now, supplier_id="farm-7")
    validate_party(order, Role.VENDOR, "vendor-ravi", "add_note")
    validate_party(order, Role.SUPPLIER, "farm-7", "add_note")
    with pytest.raises(NotAuthorized):
        validate_party(order, Role.VENDOR, "vendor-meena", "add_note")
    with pytest.raises(NotAuthorized):
        validate_party(order, Role.SUPPLIER, "mill-2", "add_note")


def test_join_checks(now: datetime) -> None:
    order = group_order(now)
    validate_can_join(order, "vendor-meena", now)

    order["group"]["participants"] = {"vendor-meena": "10", "vendor-arjun": "5"}
    with pytest.raises(DuplicateParticipant):
        validate_can_join(order, "vendor-meena", now)
    with pytest.raises(GroupFull):
        validate_can_join(order, "vendor-lata", now)
    with pytest.raises(DeadlinePassed):
        validate_can_join(group_order(now), "vendor-lata", now + timedelta(days=2))
    with pytest.raises(ValidationError):
        validate_can_join(group_order(now, kind="individual", group=None), "vendor-lata", now)


def test_join_at_exact_deadline_is_allowed(now: datetime) -> None:
    order = group_order(now)
    validate_can_join(order, "vendor-meena", now + timedelta(days=1))


def test_total_committed_quantity(now: datetime) -> None:
    order = group_order(now)
    order["group"]["participants"] = {"vendor-meena": "60", "vendor-arjun": "50.5"}
    assert total_committed_quantity(order) == Decimal("110.5")
    assert total_committed_quantity(group_order(now, group=None)) == Decimal("0")


def test_consistency_check(now: datetime) -> None:
    check_order_consistency(group_order(now))

    with pytest.raises(InvariantViolation):
        check_order_consistency(group_order(now, status="bidding"))

    crowded = group_order(now)
    crowded["group"]["participants"] = {"a": "1", "b": "1", "c": "1"}
    with pytest.raises(InvariantViolation):
        check_order_consistency(crowded)

    double = group_order(
        now, bids={"farm-7": {"accepted": True}, "mill-2": {"accepted": True}}
    )
    with pytest.raises(InvariantViolation):
        check_order_consistency(double)
