"""
GroupBuy Domain Models

A supplier opens a pooled-purchase campaign; vendors commit quantities until
the target is met (the campaign closes) or the deadline passes (it is
cancelled). A closed campaign is completed by fanning out one order per
participant.

    active -> closed -> fulfilled
    active -> cancelled

Fun fact: Rochdale's weavers opened their cooperative shop in 1844 by
pooling 28 pounds to buy flour, butter and sugar in bulk - group buying is
older than the postage stamp in most of the world.
"""

from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any


class GroupBuyStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"  # Target met, waiting for completion
    FULFILLED = "fulfilled"  # Orders fanned out
    CANCELLED = "cancelled"


class ParticipantStatus(str, Enum):
    COMMITTED = "committed"
    PAID = "paid"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


PAID_STATUSES = frozenset({ParticipantStatus.PAID, ParticipantStatus.CONFIRMED})


def active_participants(group_buy: dict[str, Any]) -> list[dict[str, Any]]:
    """Participants that have not left"""
    return [
        p
        for p in group_buy["participants"]
        if p["status"] != ParticipantStatus.CANCELLED.value
    ]


def compute_progress(
    participants: list[dict[str, Any]], target_quantity: Decimal
) -> dict[str, Any]:
    """
    Progress derived from the participant list, never from counters

    current_quantity is the sum over non-cancelled participants.
    """
    current = [p for p in participants if p["status"] != ParticipantStatus.CANCELLED.value]
    current_quantity = sum((Decimal(p["quantity"]) for p in current), Decimal("0"))
    percentage = Decimal("0")
    if target_quantity > 0:
        percentage = (current_quantity / target_quantity * 100).quantize(
            Decimal("0.01"), rounding=ROUND_HALF_UP
        )
    return {
        "current_quantity": current_quantity,
        "current_participants": len(current),
        "completion_percentage": percentage,
    }


def find_participant(group_buy: dict[str, Any], vendor_id: str) -> dict[str, Any] | None:
    for participant in group_buy["participants"]:
        if participant["vendor_id"] == vendor_id:
            return participant
    return None
