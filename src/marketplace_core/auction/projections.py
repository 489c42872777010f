"""
Auction Module Projections

AuctionRegistry keeps each auction's bids as an append-only list. Exactly
one bid (the latest accepted one) carries is_winning; current_price always
equals its amount, or starting_price before the first bid.
"""

from datetime import datetime
from typing import Any

from marketplace_core.auction.models import AuctionStatus
from marketplace_core.kernel.events import Event
from marketplace_core.kernel.time import parse_datetime


class AuctionRegistry:
    """
    Current state of all auctions

    Built from events: AuctionCreated, AuctionBidPlaced, AuctionClosed,
                       AuctionOrderSpawned, AuctionCancelled
    """

    def __init__(self) -> None:
        self.auctions: dict[str, dict[str, Any]] = {}

    def apply_event(self, event: Event) -> None:
        if event.event_type == "AuctionCreated":
            self._apply_auction_created(event)
            return

        auction = self.auctions.get(event.payload.get("auction_id", ""))
        if auction is None:
            return

        if event.event_type == "AuctionBidPlaced":
            self._apply_bid_placed(auction, event)
        elif event.event_type == "AuctionClosed":
            self._apply_auction_closed(auction, event)
        elif event.event_type == "AuctionOrderSpawned":
            auction["spawned_order_id"] = event.payload["order_id"]
        elif event.event_type == "AuctionCancelled":
            auction["status"] = AuctionStatus.CANCELLED.value
            auction["cancelled_at"] = event.payload["cancelled_at"]
        else:
            return

        auction["version"] = event.version

    def _apply_auction_created(self, event: Event) -> None:
        payload = event.payload
        self.auctions[payload["auction_id"]] = {
            "auction_id": payload["auction_id"],
            "supplier_id": payload["supplier_id"],
            "title": payload["title"],
            "description": payload.get("description", ""),
            "starting_price": payload["starting_price"],
            "current_price": payload["starting_price"],
            "reserve_price": payload.get("reserve_price"),
            "quantity": payload["quantity"],
            "unit": payload["unit"],
            "end_time": payload["end_time"],
            "status": AuctionStatus.ACTIVE.value,
            "bids": [],
            "winner": None,
            "spawned_order_id": None,
            "created_at": payload["created_at"],
            "closed_at": None,
            "cancelled_at": None,
            "version": event.version,
        }

    def _apply_bid_placed(self, auction: dict, event: Event) -> None:
        payload = event.payload
        for bid in auction["bids"]:
            bid["is_winning"] = False
        auction["bids"].append(
            {
                "vendor_id": payload["vendor_id"],
                "amount": payload["amount"],
                "submitted_at": payload["submitted_at"],
                "is_winning": True,
            }
        )
        auction["current_price"] = payload["amount"]

    def _apply_auction_closed(self, auction: dict, event: Event) -> None:
        payload = event.payload
        auction["status"] = payload["status"]
        auction["winner"] = payload.get("winner")
        auction["closed_at"] = payload["closed_at"]

    # ========== Query Methods ==========

    def get(self, auction_id: str) -> dict[str, Any] | None:
        return self.auctions.get(auction_id)

    def list_active(self) -> list[dict[str, Any]]:
        """Active auctions, soonest ending first"""
        active = [
            a for a in self.auctions.values() if a["status"] == AuctionStatus.ACTIVE.value
        ]
        return sorted(active, key=lambda a: parse_datetime(a["end_time"]))

    def list_due(self, now: datetime) -> list[dict[str, Any]]:
        """Active auctions whose end_time has passed"""
        return [a for a in self.list_active() if parse_datetime(a["end_time"]) < now]

    def list_pending_spawn(self) -> list[dict[str, Any]]:
        """Completed auctions whose winner order has not been linked yet"""
        return [
            a
            for a in self.auctions.values()
            if a["status"] == AuctionStatus.COMPLETED.value and a["spawned_order_id"] is None
        ]
