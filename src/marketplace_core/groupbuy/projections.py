"""
GroupBuy Module Projections

current_quantity, current_participants and completion_percentage are
recomputed from the participant list after every applied event - there are
no running counters to drift.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from marketplace_core.groupbuy.models import (
    GroupBuyStatus,
    ParticipantStatus,
    compute_progress,
    find_participant,
)
from marketplace_core.kernel.events import Event
from marketplace_core.kernel.time import parse_datetime


class GroupBuyRegistry:
    """
    Current state of all group buys

    Built from events: GroupBuyCreated, GroupBuyJoined, GroupBuyLeft,
                       ParticipantPaid, ParticipantConfirmed, GroupBuyClosed,
                       GroupBuyCancelled, GroupBuyFulfilled, GroupBuyOrderSpawned
    """

    def __init__(self) -> None:
        self.group_buys: dict[str, dict[str, Any]] = {}

    def apply_event(self, event: Event) -> None:
        if event.event_type == "GroupBuyCreated":
            self._apply_created(event)
            return

        group_buy = self.group_buys.get(event.payload.get("group_buy_id", ""))
        if group_buy is None:
            return

        payload = event.payload
        if event.event_type == "GroupBuyJoined":
            self._apply_joined(group_buy, payload)
        elif event.event_type == "GroupBuyLeft":
            participant = find_participant(group_buy, payload["vendor_id"])
            participant["status"] = ParticipantStatus.CANCELLED.value
            participant["left_at"] = payload["left_at"]
        elif event.event_type == "ParticipantPaid":
            participant = find_participant(group_buy, payload["vendor_id"])
            participant["status"] = ParticipantStatus.PAID.value
            participant["paid_at"] = payload["paid_at"]
        elif event.event_type == "ParticipantConfirmed":
            participant = find_participant(group_buy, payload["vendor_id"])
            participant["status"] = ParticipantStatus.CONFIRMED.value
            participant["confirmed_at"] = payload["confirmed_at"]
        elif event.event_type == "GroupBuyClosed":
            group_buy["status"] = GroupBuyStatus.CLOSED.value
            group_buy["closed_at"] = payload["closed_at"]
        elif event.event_type == "GroupBuyCancelled":
            group_buy["status"] = GroupBuyStatus.CANCELLED.value
            group_buy["cancelled_at"] = payload["cancelled_at"]
            group_buy["cancel_reason"] = payload["reason"]
        elif event.event_type == "GroupBuyFulfilled":
            group_buy["status"] = GroupBuyStatus.FULFILLED.value
            group_buy["fulfilled_at"] = payload["fulfilled_at"]
        elif event.event_type == "GroupBuyOrderSpawned":
            group_buy["fanout"][payload["vendor_id"]] = payload["order_id"]
        else:
            return

        self._refresh_progress(group_buy)
        group_buy["version"] = event.version

    def _apply_created(self, event: Event) -> None:
        payload = event.payload
        group_buy = {
            "group_buy_id": payload["group_buy_id"],
            "supplier_id": payload["supplier_id"],
            "title": payload["title"],
            "description": payload.get("description", ""),
            "target_quantity": payload["target_quantity"],
            "price_per_unit": payload["price_per_unit"],
            "unit": payload["unit"],
            "min_participants": payload["min_participants"],
            "deadline": payload["deadline"],
            "delivery_date": payload.get("delivery_date"),
            "participants": [],
            "status": GroupBuyStatus.ACTIVE.value,
            "fanout": {},
            "created_at": payload["created_at"],
            "closed_at": None,
            "fulfilled_at": None,
            "cancelled_at": None,
            "cancel_reason": None,
            "version": event.version,
        }
        self._refresh_progress(group_buy)
        self.group_buys[payload["group_buy_id"]] = group_buy

    def _apply_joined(self, group_buy: dict, payload: dict) -> None:
        participant = find_participant(group_buy, payload["vendor_id"])
        if participant is None:
            group_buy["participants"].append(
                {
                    "vendor_id": payload["vendor_id"],
                    "quantity": payload["quantity"],
                    "joined_at": payload["joined_at"],
                    "status": ParticipantStatus.COMMITTED.value,
                    "paid_at": None,
                    "confirmed_at": None,
                    "left_at": None,
                }
            )
        elif participant["status"] == ParticipantStatus.CANCELLED.value:
            participant.update(
                {
                    "quantity": payload["quantity"],
                    "joined_at": payload["joined_at"],
                    "status": ParticipantStatus.COMMITTED.value,
                    "left_at": None,
                }
            )
        else:
            merged = Decimal(participant["quantity"]) + Decimal(payload["quantity"])
            participant["quantity"] = str(merged)

    def _refresh_progress(self, group_buy: dict) -> None:
        progress = compute_progress(
            group_buy["participants"], Decimal(group_buy["target_quantity"])
        )
        group_buy["current_quantity"] = str(progress["current_quantity"])
        group_buy["current_participants"] = progress["current_participants"]
        group_buy["completion_percentage"] = str(progress["completion_percentage"])

    # ========== Query Methods ==========

    def get(self, group_buy_id: str) -> dict[str, Any] | None:
        return self.group_buys.get(group_buy_id)

    def list_active(self) -> list[dict[str, Any]]:
        """Active campaigns, soonest deadline first"""
        active = [
            g
            for g in self.group_buys.values()
            if g["status"] == GroupBuyStatus.ACTIVE.value
        ]
        return sorted(active, key=lambda g: parse_datetime(g["deadline"]))

    def list_due(self, now: datetime) -> list[dict[str, Any]]:
        """Active campaigns past their deadline"""
        return [g for g in self.list_active() if parse_datetime(g["deadline"]) < now]

    def list_pending_fanout(self) -> list[dict[str, Any]]:
        """Fulfilled campaigns with participants still missing their order"""
        result = []
        for group_buy in self.group_buys.values():
            if group_buy["status"] != GroupBuyStatus.FULFILLED.value:
                continue
            missing = [
                p
                for p in group_buy["participants"]
                if p["status"] != ParticipantStatus.CANCELLED.value
                and p["vendor_id"] not in group_buy["fanout"]
            ]
            if missing:
                result.append(group_buy)
        return result
