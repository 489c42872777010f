"""
Auction Module Handlers - the bid race and winner determination

AuctionEngine decides; the gateway serializes. "Clear the previous leader,
append the new leader" is only correct under exclusive access to the
auction, which the gateway's per-aggregate lock provides.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from marketplace_core.auction.commands import (
    CancelAuction,
    CloseAuction,
    CreateAuction,
    PlaceAuctionBid,
)
from marketplace_core.auction.events import (
    AuctionBidPlaced,
    AuctionCancelled,
    AuctionClosed,
    AuctionCreated,
    AuctionOrderSpawned,
    AuctionWinner,
)
from marketplace_core.auction.models import AuctionStatus
from marketplace_core.kernel.errors import (
    AuctionEnded,
    BidTooLow,
    InvalidTransition,
    NotAuthorized,
    NotFound,
    ValidationError,
)
from marketplace_core.kernel.events import AUCTION_STREAM, Event, create_event
from marketplace_core.kernel.ids import derive_id, generate_id
from marketplace_core.kernel.policy import MarketPolicy
from marketplace_core.kernel.time import parse_datetime
from marketplace_core.order.commands import SpawnOrder
from marketplace_core.order.models import OrderSource, Role


def validate_auction_exists(auction_id: str, auction: dict[str, Any] | None) -> dict[str, Any]:
    if auction is None:
        raise NotFound("Auction", auction_id)
    return auction


def winning_bid(auction: dict[str, Any]) -> dict[str, Any] | None:
    """The single bid flagged winning, if any"""
    for bid in auction["bids"]:
        if bid["is_winning"]:
            return bid
    return None


def auction_order_id(auction_id: str) -> str:
    """Deterministic id of the order an auction win spawns"""
    return derive_id("auction-win", auction_id)


class AuctionEngine:
    """Command handlers for auctions"""

    def __init__(self, policy: MarketPolicy) -> None:
        self.policy = policy

    def _event(
        self,
        auction_id: str,
        event_type: str,
        payload: dict[str, Any],
        *,
        version: int,
        now: datetime,
        command_id: str,
        actor_id: str | None,
    ) -> Event:
        return create_event(
            event_id=generate_id(),
            stream_id=auction_id,
            stream_type=AUCTION_STREAM,
            event_type=event_type,
            occurred_at=now,
            command_id=command_id,
            actor_id=actor_id,
            payload=payload,
            version=version,
        )

    def _validate_owner(
        self, auction: dict[str, Any], actor_id: str | None, role: Role, operation: str
    ) -> None:
        if role == Role.SYSTEM:
            return
        if role != Role.SUPPLIER or auction["supplier_id"] != actor_id:
            raise NotAuthorized(actor_id, operation, "only the auction's supplier may do this")

    def create_auction(
        self,
        command: CreateAuction,
        command_id: str,
        actor_id: str,
        role: Role,
        now: datetime,
        auction_id: str | None = None,
    ) -> list[Event]:
        """
        Handle CreateAuction

        Raises:
            NotAuthorized: If the caller is not acting as a supplier
            ValidationError: If end_time is not in the future
        """
        if role != Role.SUPPLIER:
            raise NotAuthorized(actor_id, "create_auction", "requires role supplier")
        end_time = parse_datetime(command.end_time)
        if end_time <= now:
            raise ValidationError("Auction end_time must be in the future")

        auction_id = auction_id or generate_id()
        payload = AuctionCreated(
            auction_id=auction_id,
            supplier_id=actor_id,
            title=command.title,
            description=command.description,
            starting_price=command.starting_price,
            reserve_price=command.reserve_price,
            quantity=command.quantity,
            unit=command.unit,
            end_time=end_time,
            created_at=now,
        ).model_dump(mode="json")
        return [
            self._event(
                auction_id,
                "AuctionCreated",
                payload,
                version=1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]

    def place_bid(
        self,
        command: PlaceAuctionBid,
        command_id: str,
        actor_id: str,
        role: Role,
        auction: dict[str, Any],
        now: datetime,
    ) -> list[Event]:
        """
        Handle PlaceAuctionBid

        While no bid exists the opening bid may undercut starting_price
        (auction_opening_bid_below_start); every later bid must be strictly
        above current_price.

        Raises:
            NotAuthorized: If caller is not a vendor, or is the auction's supplier
            AuctionEnded: If status is not active or now > end_time
            BidTooLow: If amount does not beat current_price
        """
        if role != Role.VENDOR:
            raise NotAuthorized(actor_id, "place_bid", "requires role vendor")
        if actor_id == auction["supplier_id"]:
            raise NotAuthorized(actor_id, "place_bid", "cannot bid on own auction")
        if auction["status"] != AuctionStatus.ACTIVE.value:
            raise AuctionEnded(auction["auction_id"], auction["status"])
        if now > parse_datetime(auction["end_time"]):
            raise AuctionEnded(auction["auction_id"], "past end_time")

        current_price = Decimal(auction["current_price"])
        opening_bid = not auction["bids"]
        if not (opening_bid and self.policy.auction_opening_bid_below_start):
            if command.amount <= current_price:
                raise BidTooLow(auction["auction_id"], str(command.amount), str(current_price))

        payload = AuctionBidPlaced(
            auction_id=auction["auction_id"],
            vendor_id=actor_id,
            amount=command.amount,
            previous_price=current_price,
            submitted_at=now,
        ).model_dump(mode="json")
        return [
            self._event(
                auction["auction_id"],
                "AuctionBidPlaced",
                payload,
                version=auction["version"] + 1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]

    def close(
        self,
        command: CloseAuction,
        command_id: str,
        actor_id: str | None,
        role: Role,
        auction: dict[str, Any],
        now: datetime,
    ) -> list[Event]:
        """
        Handle CloseAuction

        The leading bid wins when it meets the reserve (absent reserve = 0).
        Closing an auction that already ended returns no events: the winner
        stays the same.

        Raises:
            NotAuthorized: If caller is neither the supplier nor the system
            InvalidTransition: If the auction was cancelled
        """
        self._validate_owner(auction, actor_id, role, "close_auction")
        status = AuctionStatus(auction["status"])
        if status in (AuctionStatus.CLOSED, AuctionStatus.COMPLETED):
            return []
        if status == AuctionStatus.CANCELLED:
            raise InvalidTransition(
                auction["auction_id"], status.value, AuctionStatus.CLOSED.value, role.value
            )

        reserve = Decimal(auction["reserve_price"] or "0")
        leader = winning_bid(auction)
        winner = None
        if leader is None:
            reason = "No bids"
        elif Decimal(leader["amount"]) < reserve:
            reason = "Reserve not met"
        else:
            reason = "Winner found"
            winner = AuctionWinner(
                vendor_id=leader["vendor_id"],
                winning_amount=Decimal(leader["amount"]),
                confirmed_at=now,
            )

        payload = AuctionClosed(
            auction_id=auction["auction_id"],
            status=AuctionStatus.COMPLETED if winner else AuctionStatus.CLOSED,
            winner=winner,
            reason=reason,
            closed_by=actor_id,
            closed_at=now,
        ).model_dump(mode="json")
        return [
            self._event(
                auction["auction_id"],
                "AuctionClosed",
                payload,
                version=auction["version"] + 1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]

    def spawn_command(self, auction: dict[str, Any]) -> SpawnOrder | None:
        """
        The winner's order, or None if there is nothing (left) to spawn

        Idempotency key = auction id: the order id is derived from it.
        """
        winner = auction["winner"]
        if winner is None or auction["spawned_order_id"] is not None:
            return None
        return SpawnOrder(
            order_id=auction_order_id(auction["auction_id"]),
            vendor_id=winner["vendor_id"],
            supplier_id=auction["supplier_id"],
            title=auction["title"],
            unit=auction["unit"],
            quantity=Decimal(auction["quantity"]),
            final_price=Decimal(winner["winning_amount"]),
            source=OrderSource.AUCTION,
            source_id=auction["auction_id"],
        )

    def record_spawned_order(
        self,
        auction: dict[str, Any],
        order_id: str,
        command_id: str,
        actor_id: str | None,
        now: datetime,
    ) -> list[Event]:
        payload = AuctionOrderSpawned(
            auction_id=auction["auction_id"], order_id=order_id, spawned_at=now
        ).model_dump(mode="json")
        return [
            self._event(
                auction["auction_id"],
                "AuctionOrderSpawned",
                payload,
                version=auction["version"] + 1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]

    def cancel(
        self,
        command: CancelAuction,
        command_id: str,
        actor_id: str,
        role: Role,
        auction: dict[str, Any],
        now: datetime,
    ) -> list[Event]:
        """
        Supplier withdraws an active auction, or one that closed without winner

        Raises:
            InvalidTransition: From completed or cancelled
        """
        self._validate_owner(auction, actor_id, role, "cancel_auction")
        status = AuctionStatus(auction["status"])
        if status not in (AuctionStatus.ACTIVE, AuctionStatus.CLOSED):
            raise InvalidTransition(
                auction["auction_id"], status.value, AuctionStatus.CANCELLED.value, role.value
            )

        payload = AuctionCancelled(
            auction_id=auction["auction_id"],
            previous_status=status,
            reason=command.reason,
            cancelled_by=actor_id,
            cancelled_at=now,
        ).model_dump(mode="json")
        return [
            self._event(
                auction["auction_id"],
                "AuctionCancelled",
                payload,
                version=auction["version"] + 1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]
