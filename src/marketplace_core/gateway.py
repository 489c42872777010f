"""
MatchingGateway - Main façade of the marketplace core

This is the interface the HTTP/API layer calls. It hides event sourcing,
projections and locking behind one method per marketplace operation.

Every mutating method:
1. Replays a known command_id (returns the current view, runs nothing)
2. Takes the lock of the aggregate it changes, then of affected reputation
   records (sorted)
3. Catches the projections up from the event store
4. Asks the handler for events and appends them atomically
5. Applies the events and returns a fresh copy of the aggregate

Example:
    >>> from marketplace_core import Actor, MatchingGateway
    >>> market = MatchingGateway("market.db")
    >>> ravi = Actor.of("vendor-ravi", "vendor")
    >>> order = market.create_order(ravi, title="Tomatoes", quantity=40)
    >>> market.submit_bid(Actor.of("farm-7", "supplier"), order["order_id"],
    ...                   price=120, turnaround_minutes=90)
"""

import copy
import sqlite3
import threading
import time
from collections.abc import Callable, Iterable
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

import pydantic
from pydantic import BaseModel, Field

from marketplace_core.auction.commands import (
    CancelAuction,
    CloseAuction,
    CreateAuction,
    PlaceAuctionBid,
)
from marketplace_core.auction.handlers import AuctionEngine, validate_auction_exists
from marketplace_core.auction.projections import AuctionRegistry
from marketplace_core.groupbuy.commands import (
    CancelGroupBuy,
    CompleteGroupBuy,
    ConfirmParticipant,
    CreateGroupBuy,
    ExpireGroupBuy,
    JoinGroupBuy,
    LeaveGroupBuy,
    RecordParticipantPayment,
)
from marketplace_core.groupbuy.handlers import (
    FanOutResult,
    GroupBuyEngine,
    validate_group_buy_exists,
)
from marketplace_core.groupbuy.projections import GroupBuyRegistry
from marketplace_core.kernel.errors import MarketError, ValidationError
from marketplace_core.kernel.event_store import SQLiteEventStore
from marketplace_core.kernel.events import (
    AUCTION_STREAM,
    GROUP_BUY_STREAM,
    ORDER_STREAM,
    REPUTATION_STREAM,
    Event,
)
from marketplace_core.kernel.ids import derive_id, generate_id
from marketplace_core.kernel.locks import AggregateLocks
from marketplace_core.kernel.logging import LogOperation, get_logger
from marketplace_core.kernel.metrics import (
    auction_bids_total,
    command_duration_seconds,
    commands_processed_total,
    fanout_failures_total,
    fanout_orders_created_total,
    order_bids_total,
    reputation_adjustments_total,
)
from marketplace_core.kernel.policy import MarketPolicy
from marketplace_core.kernel.time import RealTimeProvider, TimeProvider, parse_datetime
from marketplace_core.order.commands import (
    AcceptBid,
    AddNote,
    AdvanceStatus,
    CreateOrder,
    ExpireOrder,
    GroupSpec,
    JoinGroup,
    LeaveFeedback,
    RecordOrderPayment,
    SpawnOrder,
    SubmitBid,
    UpdateDeliveryTracking,
)
from marketplace_core.order.handlers import OrderLifecycle
from marketplace_core.order.invariants import check_order_consistency, validate_order_exists
from marketplace_core.order.models import OrderKind, Role
from marketplace_core.order.projections import OrderRegistry
from marketplace_core.reputation.ledger import ReputationLedger, reputation_stream_id
from marketplace_core.reputation.models import compute_trust_score
from marketplace_core.reputation.projections import ReputationRegistry

logger = get_logger(__name__)

SYSTEM_PARTY = "system"


class Actor(BaseModel):
    """Caller identity and role, already resolved by the external layer"""

    party_id: str = Field(..., min_length=1)
    role: Role

    model_config = {"frozen": True}

    @classmethod
    def of(cls, party_id: str, role: str | Role) -> "Actor":
        """
        Build an actor from raw values

        Raises:
            ValidationError: If the role is not vendor, supplier or system
        """
        try:
            return cls(party_id=party_id, role=role)
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid actor ({party_id!r}, {role!r})") from e

    @classmethod
    def system(cls) -> "Actor":
        return cls(party_id=SYSTEM_PARTY, role=Role.SYSTEM)


def build_command(model: type[BaseModel], **fields: Any) -> Any:
    """Instantiate a command, mapping field errors onto ValidationError"""
    try:
        return model(**fields)
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'command'}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(f"Invalid {model.__name__}: {problems}") from e


class MatchingGateway:
    """
    Marketplace core façade

    Provides the order, auction, group buy and reputation operations plus
    read access to their projections.
    """

    def __init__(
        self,
        sqlite_path: str | Path,
        policy: MarketPolicy | None = None,
        time_provider: TimeProvider | None = None,
    ) -> None:
        """
        Initialize the marketplace core

        Args:
            sqlite_path: Path to SQLite database
            policy: Market policy (defaults if None)
            time_provider: Fills in `now` when callers omit it (real time if None)
        """
        self.sqlite_path = Path(sqlite_path)
        self.policy = policy or MarketPolicy()
        self.time_provider = time_provider or RealTimeProvider()

        # Infrastructure
        self.event_store = SQLiteEventStore(self.sqlite_path)
        self.locks = AggregateLocks()
        # Guards the projection dicts; readers snapshot under it
        self._projection_lock = threading.RLock()

        # Handlers
        self.reputation_ledger = ReputationLedger(self.policy)
        self.order_lifecycle = OrderLifecycle(self.policy, self.reputation_ledger)
        self.auction_engine = AuctionEngine(self.policy)
        self.group_buy_engine = GroupBuyEngine(self.policy)

        # Projections
        self.order_registry = OrderRegistry()
        self.auction_registry = AuctionRegistry()
        self.group_buy_registry = GroupBuyRegistry()
        self.reputation_registry = ReputationRegistry(self.policy)

        self._rebuild_projections()

    # ========== Projection plumbing ==========

    def _rebuild_projections(self) -> None:
        """Rebuild all projections from the event store"""
        events = self.event_store.load_all_events()
        for event in events:
            self._apply(event)
        logger.info("Projections rebuilt", events=len(events))

    def _projected_version(self, stream_type: str, stream_id: str) -> int:
        if stream_type == ORDER_STREAM:
            aggregate = self.order_registry.get(stream_id)
        elif stream_type == AUCTION_STREAM:
            aggregate = self.auction_registry.get(stream_id)
        elif stream_type == GROUP_BUY_STREAM:
            aggregate = self.group_buy_registry.get(stream_id)
        elif stream_type == REPUTATION_STREAM:
            aggregate = self.reputation_registry.get(stream_id.split(":", 1)[1])
        else:
            return 0
        return aggregate["version"] if aggregate else 0

    def _apply(self, event: Event) -> bool:
        """Apply one event unless the projection already reflects it"""
        with self._projection_lock:
            if event.version <= self._projected_version(event.stream_type, event.stream_id):
                return False
            if event.stream_type == ORDER_STREAM:
                self.order_registry.apply_event(event)
            elif event.stream_type == AUCTION_STREAM:
                self.auction_registry.apply_event(event)
            elif event.stream_type == GROUP_BUY_STREAM:
                self.group_buy_registry.apply_event(event)
            elif event.stream_type == REPUTATION_STREAM:
                self.reputation_registry.apply_event(event)
            return True

    def _snapshot(self, query: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a projection query and deep-copy its result, both under the projection lock"""
        with self._projection_lock:
            return copy.deepcopy(query(*args, **kwargs))

    def _catch_up(self, stream_type: str, stream_id: str) -> None:
        """Apply events other writers appended to a stream since we last looked"""
        after = self._projected_version(stream_type, stream_id)
        for event in self.event_store.load_stream(stream_id, after_version=after):
            self._apply(event)

    def _commit(self, events: list[Event]) -> list[Event]:
        """Append events (grouped per stream, all-or-nothing) and apply them"""
        grouped: dict[str, list[Event]] = {}
        for event in events:
            grouped.setdefault(event.stream_id, []).append(event)
        batch = [(stream_id, evs[0].version - 1, evs) for stream_id, evs in grouped.items()]

        stored = self.event_store.append_batch(batch)
        for event in stored:
            if not self._apply(event):
                continue
            if event.event_type == "BidSubmitted":
                order_bids_total.inc()
            elif event.event_type == "AuctionBidPlaced":
                auction_bids_total.inc()
            elif event.event_type == "CivilScoreAdjusted":
                reputation_adjustments_total.labels(reason=event.payload["reason"]).inc()

        for order_id in {e.stream_id for e in stored if e.stream_type == ORDER_STREAM}:
            check_order_consistency(self.order_registry.get(order_id))
        return stored

    def _now(self, now: datetime | str | None) -> datetime:
        return parse_datetime(now) or self.time_provider.now()

    def _execute(
        self,
        operation: str,
        actor: Actor,
        stream_type: str,
        stream_id: str,
        decide: Callable[[], list[Event]],
        *,
        command_id: str | None = None,
        parties: Callable[[], Iterable[str]] | None = None,
    ) -> tuple[list[Event], bool]:
        """
        Run one mutating operation

        Args:
            operation: Name for logs and metrics
            actor: Caller
            stream_type: Type of the aggregate changed
            stream_id: Aggregate changed
            decide: Handler call producing the events (runs under the locks)
            command_id: Idempotency key (generated if None)
            parties: Reputation records the operation may touch; evaluated
                after the aggregate is locked and caught up

        Returns:
            (events, replayed) - replayed is True when command_id was seen before
        """
        if not isinstance(actor, Actor):
            raise ValidationError(f"Expected an Actor, got {type(actor).__name__}")
        command_id = command_id or generate_id()
        start = time.perf_counter()

        with LogOperation(
            logger,
            operation,
            stream_id=stream_id,
            command_id=command_id,
            actor_id=actor.party_id,
            role=actor.role.value,
        ):
            try:
                previous = self.event_store.events_for_command(command_id)
                if previous:
                    for stream in {(e.stream_type, e.stream_id) for e in previous}:
                        with self.locks.hold(stream[1]):
                            self._catch_up(*stream)
                    commands_processed_total.labels(
                        command_type=operation, status="replayed"
                    ).inc()
                    return previous, True

                with self.locks.hold(stream_id):
                    self._catch_up(stream_type, stream_id)
                    party_ids = sorted(set(parties())) if parties else []
                    reputation_streams = [reputation_stream_id(p) for p in party_ids]
                    with self.locks.hold_all(reputation_streams):
                        for reputation_stream in reputation_streams:
                            self._catch_up(REPUTATION_STREAM, reputation_stream)
                        events = decide()
                        stored = self._commit(events) if events else []

            except MarketError:
                commands_processed_total.labels(command_type=operation, status="rejected").inc()
                raise
            except Exception:
                commands_processed_total.labels(command_type=operation, status="failure").inc()
                raise
            finally:
                command_duration_seconds.labels(command_type=operation).observe(
                    time.perf_counter() - start
                )

        commands_processed_total.labels(command_type=operation, status="success").inc()
        return stored, False

    def _order(self, order_id: str) -> dict[str, Any]:
        return validate_order_exists(order_id, self.order_registry.get(order_id))

    def _auction(self, auction_id: str) -> dict[str, Any]:
        return validate_auction_exists(auction_id, self.auction_registry.get(auction_id))

    def _group_buy(self, group_buy_id: str) -> dict[str, Any]:
        return validate_group_buy_exists(group_buy_id, self.group_buy_registry.get(group_buy_id))

    def _order_parties(self, order_id: str) -> Callable[[], list[str]]:
        """Vendor, supplier and group participants of an order"""

        def parties() -> list[str]:
            order = self.order_registry.get(order_id)
            if order is None:
                return []
            result = [order["vendor_id"]]
            if order["supplier_id"]:
                result.append(order["supplier_id"])
            if order["group"]:
                result.extend(order["group"]["participants"])
            return result

        return parties

    # ========== Order operations ==========

    def create_order(
        self,
        actor: Actor,
        title: str,
        quantity: Decimal | int | str,
        *,
        description: str = "",
        category: str = "general",
        unit: str = "unit",
        estimated_price: Decimal | int | str | None = None,
        kind: OrderKind | str = OrderKind.INDIVIDUAL,
        min_participants: int = 1,
        max_participants: int | None = None,
        deadline: datetime | str | None = None,
        now: datetime | str | None = None,
        command_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Create an individual or group order owned by the calling vendor

        Group orders need max_participants and deadline.

        Returns:
            Order dict with order_id
        """
        now = self._now(now)
        command_id = command_id or generate_id()
        group = None
        if str(getattr(kind, "value", kind)) == OrderKind.GROUP.value:
            group = build_command(
                GroupSpec,
                min_participants=min_participants,
                max_participants=max_participants,
                deadline=deadline,
            )
        command = build_command(
            CreateOrder,
            title=title,
            description=description,
            category=category,
            unit=unit,
            quantity=quantity,
            estimated_price=estimated_price,
            kind=kind,
            group=group,
        )
        order_id = generate_id()
        events, _ = self._execute(
            "create_order",
            actor,
            ORDER_STREAM,
            order_id,
            lambda: self.order_lifecycle.create_order(
                command, command_id, actor.party_id, actor.role, now, order_id
            ),
            command_id=command_id,
        )
        created = next(e for e in events if e.event_type == "OrderCreated")
        return self.get_order(created.stream_id)

    def submit_bid(
        self,
        actor: Actor,
        order_id: str,
        price: Decimal | int | str,
        turnaround_minutes: int,
        message: str = "",
        *,
        now: datetime | str | None = None,
        command_id: str | None = None,
    ) -> dict[str, Any]:
        """Supplier bids on (or re-prices its bid on) an open order"""
        now = self._now(now)
        command_id = command_id or generate_id()
        command = build_command(
            SubmitBid,
            order_id=order_id,
            price=price,
            message=message,
            turnaround_minutes=turnaround_minutes,
        )
        self._execute(
            "submit_bid",
            actor,
            ORDER_STREAM,
            order_id,
            lambda: self.order_lifecycle.submit_bid(
                command, command_id, actor.party_id, actor.role, self._order(order_id), now
            ),
            command_id=command_id,
        )
        return self.get_order(order_id)

    def accept_bid(
        self,
        actor: Actor,
        order_id: str,
        supplier_id: str,
        *,
        now: datetime | str | None = None,
        command_id: str | None = None,
    ) -> dict[str, Any]:
        """Owning vendor accepts a supplier's bid (bidding -> accepted)"""
        now = self._now(now)
        command_id = command_id or generate_id()
        command = build_command(AcceptBid, order_id=order_id, supplier_id=supplier_id)
        self._execute(
            "accept_bid",
            actor,
            ORDER_STREAM,
            order_id,
            lambda: self.order_lifecycle.accept_bid(
                command,
                command_id,
                actor.party_id,
                actor.role,
                self._order(order_id),
                self.reputation_registry.records,
                now,
            ),
            command_id=command_id,
            parties=self._order_parties(order_id),
        )
        return self.get_order(order_id)

    def join_group(
        self,
        actor: Actor,
        order_id: str,
        quantity: Decimal | int | str,
        *,
        now: datetime | str | None = None,
        command_id: str | None = None,
    ) -> dict[str, Any]:
        """Vendor joins a group order (one commitment per vendor)"""
        now = self._now(now)
        command_id = command_id or generate_id()
        command = build_command(JoinGroup, order_id=order_id, quantity=quantity)
        self._execute(
            "join_group",
            actor,
            ORDER_STREAM,
            order_id,
            lambda: self.order_lifecycle.join_group(
                command, command_id, actor.party_id, actor.role, self._order(order_id), now
            ),
            command_id=command_id,
        )
        return self.get_order(order_id)

    def advance_status(
        self,
        actor: Actor,
        order_id: str,
        new_status: str,
        note: str = "",
        *,
        now: datetime | str | None = None,
        command_id: str | None = None,
    ) -> dict[str, Any]:
        """Move an order along the fulfillment chain (role-scoped)"""
        now = self._now(now)
        command_id = command_id or generate_id()
        command = build_command(
            AdvanceStatus, order_id=order_id, new_status=new_status, note=note
        )
        self._execute(
            "advance_status",
            actor,
            ORDER_STREAM,
            order_id,
            lambda: self.order_lifecycle.advance_status(
                command,
                command_id,
                actor.party_id,
                actor.role,
                self._order(order_id),
                self.reputation_registry.records,
                now,
            ),
            command_id=command_id,
            parties=self._order_parties(order_id),
        )
        return self.get_order(order_id)

    def expire_order(
        self,
        actor: Actor,
        order_id: str,
        *,
        now: datetime | str | None = None,
        command_id: str | None = None,
    ) -> dict[str, Any]:
        """System expires a pending/bidding group order past its deadline"""
        now = self._now(now)
        command_id = command_id or generate_id()
        command = build_command(ExpireOrder, order_id=order_id)
        self._execute(
            "expire_order",
            actor,
            ORDER_STREAM,
            order_id,
            lambda: self.order_lifecycle.expire(
                command, command_id, actor.party_id, actor.role, self._order(order_id), now
            ),
            command_id=command_id,
        )
        return self.get_order(order_id)

    def add_note(
        self,
        actor: Actor,
        order_id: str,
        note: str,
        *,
        now: datetime | str | None = None,
        command_id: str | None = None,
    ) -> dict[str, Any]:
        now = self._now(now)
        command_id = command_id or generate_id()
        command = build_command(AddNote, order_id=order_id, note=note)
        self._execute(
            "add_note",
            actor,
            ORDER_STREAM,
            order_id,
            lambda: self.order_lifecycle.add_note(
                command, command_id, actor.party_id, actor.role, self._order(order_id), now
            ),
            command_id=command_id,
        )
        return self.get_order(order_id)

    def update_delivery_tracking(
        self,
        actor: Actor,
        order_id: str,
        tracking: dict[str, Any],
        *,
        now: datetime | str | None = None,
        command_id: str | None = None,
    ) -> dict[str, Any]:
        now = self._now(now)
        command_id = command_id or generate_id()
        command = build_command(UpdateDeliveryTracking, order_id=order_id, tracking=tracking)
        self._execute(
            "update_delivery_tracking",
            actor,
            ORDER_STREAM,
            order_id,
            lambda: self.order_lifecycle.update_delivery_tracking(
                command, command_id, actor.party_id, actor.role, self._order(order_id), now
            ),
            command_id=command_id,
        )
        return self.get_order(order_id)

    def record_payment(
        self,
        actor: Actor,
        order_id: str,
        *,
        now: datetime | str | None = None,
        command_id: str | None = None,
    ) -> dict[str, Any]:
        """Vendor pays for an order; on time iff now <= due_at"""
        now = self._now(now)
        command_id = command_id or generate_id()
        command = build_command(RecordOrderPayment, order_id=order_id)
        self._execute(
            "record_payment",
            actor,
            ORDER_STREAM,
            order_id,
            lambda: self.order_lifecycle.record_payment(
                command,
                command_id,
                actor.party_id,
                actor.role,
                self._order(order_id),
                self.reputation_registry.records,
                now,
            ),
            command_id=command_id,
            parties=self._order_parties(order_id),
        )
        return self.get_order(order_id)

    def leave_feedback(
        self,
        actor: Actor,
        order_id: str,
        rating: int,
        comment: str = "",
        *,
        now: datetime | str | None = None,
        command_id: str | None = None,
    ) -> dict[str, Any]:
        """Vendor rates the supplier or supplier rates the vendor (once each)"""
        now = self._now(now)
        command_id = command_id or generate_id()
        command = build_command(
            LeaveFeedback, order_id=order_id, rating=rating, comment=comment
        )
        self._execute(
            "leave_feedback",
            actor,
            ORDER_STREAM,
            order_id,
            lambda: self.order_lifecycle.leave_feedback(
                command,
                command_id,
                actor.party_id,
                actor.role,
                self._order(order_id),
                self.reputation_registry.records,
                now,
            ),
            command_id=command_id,
            parties=self._order_parties(order_id),
        )
        return self.get_order(order_id)

    def _spawn_order(self, command: SpawnOrder, actor: Actor, now: datetime) -> bool:
        """
        Create a fanned-out order unless it already exists

        Returns:
            True if this call created the order
        """

        def decide() -> list[Event]:
            if self.order_registry.get(command.order_id) is not None:
                return []
            return self.order_lifecycle.spawn_order(
                command,
                spawn_command_id,
                actor.party_id,
                self.reputation_registry.records,
                now,
            )

        spawn_command_id = derive_id("spawn-order", command.order_id)
        events, replayed = self._execute(
            "spawn_order",
            actor,
            ORDER_STREAM,
            command.order_id,
            decide,
            command_id=spawn_command_id,
            parties=lambda: [command.vendor_id],
        )
        created = bool(events) and not replayed
        if created:
            fanout_orders_created_total.labels(source=command.source.value).inc()
        return created

    # ========== Auction operations ==========

    def create_auction(
        self,
        actor: Actor,
        title: str,
        starting_price: Decimal | int | str,
        quantity: Decimal | int | str,
        end_time: datetime | str,
        *,
        reserve_price: Decimal | int | str | None = None,
        unit: str = "unit",
        description: str = "",
        now: datetime | str | None = None,
        command_id: str | None = None,
    ) -> dict[str, Any]:
        """Supplier opens an auction"""
        now = self._now(now)
        command_id = command_id or generate_id()
        command = build_command(
            CreateAuction,
            title=title,
            description=description,
            starting_price=starting_price,
            reserve_price=reserve_price,
            quantity=quantity,
            unit=unit,
            end_time=end_time,
        )
        auction_id = generate_id()
        events, _ = self._execute(
            "create_auction",
            actor,
            AUCTION_STREAM,
            auction_id,
            lambda: self.auction_engine.create_auction(
                command, command_id, actor.party_id, actor.role, now, auction_id
            ),
            command_id=command_id,
        )
        created = next(e for e in events if e.event_type == "AuctionCreated")
        return self.get_auction(created.stream_id)

    def place_bid(
        self,
        actor: Actor,
        auction_id: str,
        amount: Decimal | int | str,
        *,
        now: datetime | str | None = None,
        command_id: str | None = None,
    ) -> dict[str, Any]:
        """Vendor bids on an active auction (serialized per auction)"""
        now = self._now(now)
        command_id = command_id or generate_id()
        command = build_command(PlaceAuctionBid, auction_id=auction_id, amount=amount)
        self._execute(
            "place_bid",
            actor,
            AUCTION_STREAM,
            auction_id,
            lambda: self.auction_engine.place_bid(
                command, command_id, actor.party_id, actor.role, self._auction(auction_id), now
            ),
            command_id=command_id,
        )
        return self.get_auction(auction_id)

    def close_auction(
        self,
        actor: Actor,
        auction_id: str,
        *,
        now: datetime | str | None = None,
        command_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Close an auction and spawn the winner's order

        Safe to call again: an ended auction keeps its winner, and only a
        missing spawned order is (re)created.
        """
        now = self._now(now)
        command_id = command_id or generate_id()
        command = build_command(CloseAuction, auction_id=auction_id)
        self._execute(
            "close_auction",
            actor,
            AUCTION_STREAM,
            auction_id,
            lambda: self.auction_engine.close(
                command, command_id, actor.party_id, actor.role, self._auction(auction_id), now
            ),
            command_id=command_id,
        )
        self._spawn_auction_order(auction_id, actor, now)
        return self.get_auction(auction_id)

    def _spawn_auction_order(self, auction_id: str, actor: Actor, now: datetime) -> None:
        spawn = self.auction_engine.spawn_command(self._snapshot(self._auction, auction_id))
        if spawn is None:
            return
        try:
            self._spawn_order(spawn, actor, now)
        except (MarketError, sqlite3.Error) as e:
            fanout_failures_total.labels(source=spawn.source.value).inc()
            logger.error(
                "Auction order spawn failed",
                auction_id=auction_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return

        def link() -> list[Event]:
            auction = self._auction(auction_id)
            if auction["spawned_order_id"] is not None:
                return []
            return self.auction_engine.record_spawned_order(
                auction, spawn.order_id, link_command_id, actor.party_id, now
            )

        link_command_id = derive_id("auction-link", auction_id)
        self._execute(
            "link_auction_order",
            actor,
            AUCTION_STREAM,
            auction_id,
            link,
            command_id=link_command_id,
        )

    def cancel_auction(
        self,
        actor: Actor,
        auction_id: str,
        reason: str = "",
        *,
        now: datetime | str | None = None,
        command_id: str | None = None,
    ) -> dict[str, Any]:
        now = self._now(now)
        command_id = command_id or generate_id()
        command = build_command(CancelAuction, auction_id=auction_id, reason=reason)
        self._execute(
            "cancel_auction",
            actor,
            AUCTION_STREAM,
            auction_id,
            lambda: self.auction_engine.cancel(
                command, command_id, actor.party_id, actor.role, self._auction(auction_id), now
            ),
            command_id=command_id,
        )
        return self.get_auction(auction_id)

    # ========== Group buy operations ==========

    def create_group_buy(
        self,
        actor: Actor,
        title: str,
        target_quantity: Decimal | int | str,
        price_per_unit: Decimal | int | str,
        deadline: datetime | str,
        *,
        unit: str = "unit",
        min_participants: int = 1,
        description: str = "",
        delivery_date: datetime | str | None = None,
        now: datetime | str | None = None,
        command_id: str | None = None,
    ) -> dict[str, Any]:
        """Supplier opens a pooled purchase campaign"""
        now = self._now(now)
        command_id = command_id or generate_id()
        command = build_command(
            CreateGroupBuy,
            title=title,
            description=description,
            target_quantity=target_quantity,
            price_per_unit=price_per_unit,
            unit=unit,
            min_participants=min_participants,
            deadline=deadline,
            delivery_date=delivery_date,
        )
        group_buy_id = generate_id()
        events, _ = self._execute(
            "create_group_buy",
            actor,
            GROUP_BUY_STREAM,
            group_buy_id,
            lambda: self.group_buy_engine.create_group_buy(
                command, command_id, actor.party_id, actor.role, now, group_buy_id
            ),
            command_id=command_id,
        )
        created = next(e for e in events if e.event_type == "GroupBuyCreated")
        return self.get_group_buy(created.stream_id)

    def _group_buy_operation(
        self,
        operation: str,
        actor: Actor,
        group_buy_id: str,
        handler: Callable[..., list[Event]],
        command: BaseModel,
        now: datetime,
        command_id: str | None,
    ) -> dict[str, Any]:
        command_id = command_id or generate_id()
        self._execute(
            operation,
            actor,
            GROUP_BUY_STREAM,
            group_buy_id,
            lambda: handler(
                command,
                command_id,
                actor.party_id,
                actor.role,
                self._group_buy(group_buy_id),
                now,
            ),
            command_id=command_id,
        )
        return self.get_group_buy(group_buy_id)

    def join_group_buy(
        self,
        actor: Actor,
        group_buy_id: str,
        quantity: Decimal | int | str,
        *,
        now: datetime | str | None = None,
        command_id: str | None = None,
    ) -> dict[str, Any]:
        """Vendor commits quantity (merged into an existing commitment)"""
        command = build_command(JoinGroupBuy, group_buy_id=group_buy_id, quantity=quantity)
        return self._group_buy_operation(
            "join_group_buy",
            actor,
            group_buy_id,
            self.group_buy_engine.join,
            command,
            self._now(now),
            command_id,
        )

    def leave_group_buy(
        self,
        actor: Actor,
        group_buy_id: str,
        *,
        now: datetime | str | None = None,
        command_id: str | None = None,
    ) -> dict[str, Any]:
        command = build_command(LeaveGroupBuy, group_buy_id=group_buy_id)
        return self._group_buy_operation(
            "leave_group_buy",
            actor,
            group_buy_id,
            self.group_buy_engine.leave,
            command,
            self._now(now),
            command_id,
        )

    def pay_group_buy(
        self,
        actor: Actor,
        group_buy_id: str,
        *,
        now: datetime | str | None = None,
        command_id: str | None = None,
    ) -> dict[str, Any]:
        command = build_command(RecordParticipantPayment, group_buy_id=group_buy_id)
        return self._group_buy_operation(
            "pay_group_buy",
            actor,
            group_buy_id,
            self.group_buy_engine.record_payment,
            command,
            self._now(now),
            command_id,
        )

    def confirm_participant(
        self,
        actor: Actor,
        group_buy_id: str,
        vendor_id: str,
        *,
        now: datetime | str | None = None,
        command_id: str | None = None,
    ) -> dict[str, Any]:
        command = build_command(
            ConfirmParticipant, group_buy_id=group_buy_id, vendor_id=vendor_id
        )
        return self._group_buy_operation(
            "confirm_participant",
            actor,
            group_buy_id,
            self.group_buy_engine.confirm_participant,
            command,
            self._now(now),
            command_id,
        )

    def cancel_group_buy(
        self,
        actor: Actor,
        group_buy_id: str,
        reason: str = "",
        *,
        now: datetime | str | None = None,
        command_id: str | None = None,
    ) -> dict[str, Any]:
        command = build_command(CancelGroupBuy, group_buy_id=group_buy_id, reason=reason)
        return self._group_buy_operation(
            "cancel_group_buy",
            actor,
            group_buy_id,
            self.group_buy_engine.cancel,
            command,
            self._now(now),
            command_id,
        )

    def expire_group_buy(
        self,
        actor: Actor,
        group_buy_id: str,
        *,
        now: datetime | str | None = None,
        command_id: str | None = None,
    ) -> dict[str, Any]:
        command = build_command(ExpireGroupBuy, group_buy_id=group_buy_id)
        return self._group_buy_operation(
            "expire_group_buy",
            actor,
            group_buy_id,
            self.group_buy_engine.expire,
            command,
            self._now(now),
            command_id,
        )

    def complete_group_buy(
        self,
        actor: Actor,
        group_buy_id: str,
        *,
        now: datetime | str | None = None,
        command_id: str | None = None,
    ) -> FanOutResult:
        """
        Fulfil a closed campaign and fan out one order per participant

        The campaign is marked fulfilled first. Each order is created in its
        own transaction; failures are logged and reported in the result, and
        calling again creates only the missing orders.
        """
        now = self._now(now)
        command_id = command_id or generate_id()
        command = build_command(CompleteGroupBuy, group_buy_id=group_buy_id)
        self._execute(
            "complete_group_buy",
            actor,
            GROUP_BUY_STREAM,
            group_buy_id,
            lambda: self.group_buy_engine.complete(
                command,
                command_id,
                actor.party_id,
                actor.role,
                self._group_buy(group_buy_id),
                now,
            ),
            command_id=command_id,
        )
        return self._fan_out_group_buy(group_buy_id, actor, now)

    def _fan_out_group_buy(
        self, group_buy_id: str, actor: Actor, now: datetime
    ) -> FanOutResult:
        result = FanOutResult(group_buy_id)
        group_buy = self._snapshot(self._group_buy, group_buy_id)
        result.existing.extend(group_buy["fanout"].values())

        for spawn in self.group_buy_engine.spawn_commands(group_buy):
            vendor_id = spawn.vendor_id
            try:
                created = self._spawn_order(spawn, actor, now)
                self._link_group_buy_order(group_buy_id, vendor_id, spawn.order_id, actor, now)
            except (MarketError, sqlite3.Error) as e:
                fanout_failures_total.labels(source=spawn.source.value).inc()
                logger.error(
                    "Group buy order spawn failed",
                    group_buy_id=group_buy_id,
                    order_id=spawn.order_id,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                result.failed[vendor_id] = str(e)
                continue
            if created:
                result.created.append(spawn.order_id)
            else:
                result.existing.append(spawn.order_id)

        logger.info(
            "Group buy fan-out finished",
            group_buy_id=group_buy_id,
            created=len(result.created),
            existing=len(result.existing),
            failed=len(result.failed),
        )
        return result

    def _link_group_buy_order(
        self, group_buy_id: str, vendor_id: str, order_id: str, actor: Actor, now: datetime
    ) -> None:
        def link() -> list[Event]:
            group_buy = self._group_buy(group_buy_id)
            if vendor_id in group_buy["fanout"]:
                return []
            return self.group_buy_engine.record_spawned_order(
                group_buy, vendor_id, order_id, link_command_id, actor.party_id, now
            )

        link_command_id = derive_id("group-buy-link", group_buy_id, vendor_id)
        self._execute(
            "link_group_buy_order",
            actor,
            GROUP_BUY_STREAM,
            group_buy_id,
            link,
            command_id=link_command_id,
        )

    def retry_fan_out(self, now: datetime | str | None = None) -> list[FanOutResult]:
        """Re-attempt missing auction and group buy orders (used by the sweep)"""
        now = self._now(now)
        system = Actor.system()
        for auction in self._snapshot(self.auction_registry.list_pending_spawn):
            self._spawn_auction_order(auction["auction_id"], system, now)
        return [
            self._fan_out_group_buy(group_buy["group_buy_id"], system, now)
            for group_buy in self._snapshot(self.group_buy_registry.list_pending_fanout)
        ]

    # ========== Queries ==========

    def get_order(self, order_id: str) -> dict[str, Any]:
        """
        Current order (a copy - mutating it changes nothing)

        Raises:
            NotFound: If the order does not exist
        """
        with self.locks.hold(order_id):
            self._catch_up(ORDER_STREAM, order_id)
            return self._snapshot(self._order, order_id)

    def get_auction(self, auction_id: str) -> dict[str, Any]:
        with self.locks.hold(auction_id):
            self._catch_up(AUCTION_STREAM, auction_id)
            return self._snapshot(self._auction, auction_id)

    def get_group_buy(self, group_buy_id: str) -> dict[str, Any]:
        with self.locks.hold(group_buy_id):
            self._catch_up(GROUP_BUY_STREAM, group_buy_id)
            return self._snapshot(self._group_buy, group_buy_id)

    def get_reputation(self, party_id: str) -> dict[str, Any]:
        """Reputation of a party (neutral defaults if never seen)"""
        stream_id = reputation_stream_id(party_id)
        with self.locks.hold(stream_id):
            self._catch_up(REPUTATION_STREAM, stream_id)
            return self._snapshot(self.reputation_registry.view, party_id)

    def recompute_trust_score(self, party_id: str) -> float:
        """Trust score of a vendor, recomputed from its current inputs"""
        return compute_trust_score(self.get_reputation(party_id), self.policy)

    def list_orders(
        self,
        vendor: str | None = None,
        supplier: str | None = None,
        status: str | None = None,
    ) -> list[dict[str, Any]]:
        """Orders matching the filters, newest first"""
        return self._snapshot(
            self.order_registry.list_orders,
            vendor_id=vendor,
            supplier_id=supplier,
            status=status,
        )

    def list_active_auctions(self) -> list[dict[str, Any]]:
        return self._snapshot(self.auction_registry.list_active)

    def list_active_group_buys(self) -> list[dict[str, Any]]:
        return self._snapshot(self.group_buy_registry.list_active)

    def list_due_auctions(self, now: datetime) -> list[dict[str, Any]]:
        """Active auctions whose end time has passed"""
        return self._snapshot(self.auction_registry.list_due, now)

    def list_due_group_buys(self, now: datetime) -> list[dict[str, Any]]:
        return self._snapshot(self.group_buy_registry.list_due, now)

    def list_expirable_orders(self) -> list[dict[str, Any]]:
        """Pending or bidding group orders, the candidates for deadline expiry"""
        return self._snapshot(self.order_registry.list_expirable)

    def get_policy(self) -> MarketPolicy:
        """Get current market policy"""
        return self.policy
