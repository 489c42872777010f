"""
Tests for the order transition table
"""

import pytest

from marketplace_core.order.models import (
    TERMINAL_STATUSES,
    TRANSITIONS,
    OrderStatus,
    Role,
    allowed_transitions,
)

FULFILLMENT_CHAIN = [
    (Role.VENDOR, OrderStatus.ACCEPTED, OrderStatus.CONFIRMED),
    (Role.SUPPLIER, OrderStatus.CONFIRMED, OrderStatus.PREPARING),
    (Role.SUPPLIER, OrderStatus.PREPARING, OrderStatus.READY),
    (Role.SUPPLIER, OrderStatus.READY, OrderStatus.IN_TRANSIT),
    (Role.SUPPLIER, OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED),
    (Role.VENDOR, OrderStatus.DELIVERED, OrderStatus.COMPLETED),
]


def test_transition_table_is_exactly_the_role_table() -> None:
    """Every allowed edge is listed here and nothing else is"""
    expected = {
        ("vendor", "accepted"): {"confirmed", "cancelled"},
        ("vendor", "confirmed"): {"cancelled"},
        ("vendor", "preparing"): {"cancelled"},
        ("vendor", "ready"): {"in_transit"},
        ("vendor", "in_transit"): {"delivered"},
        ("vendor", "delivered"): {"completed"},
        ("supplier", "accepted"): {"preparing"},
        ("supplier", "confirmed"): {"preparing"},
        ("supplier", "preparing"): {"ready"},
        ("supplier", "ready"): {"in_transit"},
        ("supplier", "in_transit"): {"delivered"},
        ("system", "pending"): {"expired"},
        ("system", "bidding"): {"expired"},
    }
    actual = {
        (role.value, current.value): {target.value for target in targets}
        for (role, current), targets in TRANSITIONS.items()
    }
    assert actual == expected


@pytest.mark.parametrize("role,current,target", FULFILLMENT_CHAIN)
def test_fulfillment_chain_edges(role: Role, current: OrderStatus, target: OrderStatus) -> None:
    assert target in allowed_transitions(role, current)


@pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
def test_terminal_statuses_have_no_exits(status: OrderStatus) -> None:
    for role in Role:
        assert allowed_transitions(role, status) == frozenset()


def test_only_vendor_completes_or_cancels() -> None:
    for status in OrderStatus:
        supplier_targets = allowed_transitions(Role.SUPPLIER, status)
        assert OrderStatus.COMPLETED not in supplier_targets
        assert OrderStatus.CANCELLED not in supplier_targets


def test_vendor_cancels_only_before_goods_ship() -> None:
    cancellable = {
        status
        for status in OrderStatus
        if OrderStatus.CANCELLED in allowed_transitions(Role.VENDOR, status)
    }
    assert cancellable == {OrderStatus.ACCEPTED, OrderStatus.CONFIRMED, OrderStatus.PREPARING}


def test_bidding_edges_are_not_in_the_table() -> None:
    """pending->bidding and bidding->accepted happen only through bids"""
    for role in Role:
        assert OrderStatus.BIDDING not in allowed_transitions(role, OrderStatus.PENDING)
        assert OrderStatus.ACCEPTED not in allowed_transitions(role, OrderStatus.BIDDING)


def test_only_system_expires() -> None:
    assert allowed_transitions(Role.SYSTEM, OrderStatus.PENDING) == {OrderStatus.EXPIRED}
    assert allowed_transitions(Role.SYSTEM, OrderStatus.BIDDING) == {OrderStatus.EXPIRED}
    assert OrderStatus.EXPIRED not in allowed_transitions(Role.VENDOR, OrderStatus.PENDING)
