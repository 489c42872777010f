"""
Order Module Handlers - Command->Event transformation

OrderLifecycle is the decision-making layer for orders. Each handler:
1. Receives the current order (projection dict) and the caller's `now`
2. Validates role, ownership, the transition table and deadlines
3. Returns events for the order stream plus any reputation streams touched

Handlers never mutate state and never read the clock, so the same inputs
always produce the same decision.
"""

from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

from marketplace_core.kernel.errors import InvalidTransition, NotAuthorized, ValidationError
from marketplace_core.kernel.events import ORDER_STREAM, Event, create_event
from marketplace_core.kernel.ids import generate_id
from marketplace_core.kernel.policy import MarketPolicy
from marketplace_core.kernel.time import parse_datetime
from marketplace_core.order.commands import (
    AcceptBid,
    AddNote,
    AdvanceStatus,
    CreateOrder,
    ExpireOrder,
    JoinGroup,
    LeaveFeedback,
    RecordOrderPayment,
    SpawnOrder,
    SubmitBid,
    UpdateDeliveryTracking,
)
from marketplace_core.order.events import (
    BidAccepted,
    BiddingOpened,
    BidSubmitted,
    DeliveryTrackingUpdated,
    GroupJoined,
    GroupSettings,
    OrderCreated,
    OrderFeedbackLeft,
    OrderNoteAdded,
    OrderPaymentRecorded,
    OrderStatusChanged,
)
from marketplace_core.order.invariants import (
    validate_assigned_supplier,
    validate_bid_exists,
    validate_bidding_open,
    validate_can_join,
    validate_group_deadline,
    validate_owner,
    validate_party,
    validate_role,
    validate_transition,
)
from marketplace_core.order.models import (
    FEEDBACK_STATUSES,
    FULFILLMENT_STATUSES,
    OrderKind,
    OrderSource,
    OrderStatus,
    PaymentStatus,
    Role,
)
from marketplace_core.reputation.ledger import ReputationLedger

# Reason codes written to civil score history
REASON_ORDER_COMPLETED = "order_completed"
REASON_GROUP_PARTICIPATION = "group_participation_completed"
REASON_ORDER_CANCELLED = "order_cancelled"

ReputationRecords = Mapping[str, dict[str, Any]]


class OrderLifecycle:
    """
    Command handlers for orders

    Reputation side effects are returned alongside the order events so the
    caller can append everything in one atomic batch.
    """

    def __init__(self, policy: MarketPolicy, ledger: ReputationLedger | None = None) -> None:
        self.policy = policy
        self.ledger = ledger or ReputationLedger(policy)

    def _event(
        self,
        order_id: str,
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
            stream_id=order_id,
            stream_type=ORDER_STREAM,
            event_type=event_type,
            occurred_at=now,
            command_id=command_id,
            actor_id=actor_id,
            payload=payload,
            version=version,
        )

    def _payment_due(self, now: datetime) -> datetime:
        return now + timedelta(days=self.policy.payment_terms_days)

    # ========== Creation ==========

    def create_order(
        self,
        command: CreateOrder,
        command_id: str,
        actor_id: str,
        role: Role,
        now: datetime,
        order_id: str | None = None,
    ) -> list[Event]:
        """
        Handle CreateOrder

        Raises:
            NotAuthorized: If the caller is not acting as a vendor
            ValidationError: If a group deadline is not in the future
        """
        validate_role(role, Role.VENDOR, actor_id, "create_order")
        order_id = order_id or generate_id()

        group = None
        if command.kind == OrderKind.GROUP and command.group is not None:
            deadline = parse_datetime(command.group.deadline)
            if deadline <= now:
                raise ValidationError("Group deadline must be in the future")
            group = GroupSettings(
                min_participants=command.group.min_participants,
                max_participants=command.group.max_participants,
                deadline=deadline,
            )

        payload = OrderCreated(
            order_id=order_id,
            vendor_id=actor_id,
            kind=command.kind,
            source=OrderSource.DIRECT,
            title=command.title,
            description=command.description,
            category=command.category,
            unit=command.unit,
            quantity=command.quantity,
            estimated_price=command.estimated_price,
            status=OrderStatus.PENDING,
            group=group,
            created_at=now,
            created_by=actor_id,
        ).model_dump(mode="json")

        return [
            self._event(
                order_id,
                "OrderCreated",
                payload,
                version=1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]

    def spawn_order(
        self,
        command: SpawnOrder,
        command_id: str,
        actor_id: str | None,
        reputation: ReputationRecords,
        now: datetime,
    ) -> list[Event]:
        """
        Create an accepted order for an auction winner or group buy participant

        The order id is derived from the fan-out's idempotency key, so a
        retried fan-out lands on the same stream.
        """
        payload = OrderCreated(
            order_id=command.order_id,
            vendor_id=command.vendor_id,
            supplier_id=command.supplier_id,
            kind=OrderKind.INDIVIDUAL,
            source=command.source,
            source_id=command.source_id,
            title=command.title,
            category=command.source.value,
            unit=command.unit,
            quantity=command.quantity,
            final_price=command.final_price,
            status=OrderStatus.ACCEPTED,
            payment_due_at=self._payment_due(now),
            created_at=now,
            created_by=actor_id,
        ).model_dump(mode="json")

        events = [
            self._event(
                command.order_id,
                "OrderCreated",
                payload,
                version=1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]
        events.extend(
            self.ledger.record_commitment(
                reputation.get(command.vendor_id),
                command.vendor_id,
                command.order_id,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        )
        return events

    # ========== Bidding ==========

    def submit_bid(
        self,
        command: SubmitBid,
        command_id: str,
        actor_id: str,
        role: Role,
        order: dict[str, Any],
        now: datetime,
    ) -> list[Event]:
        """
        Handle SubmitBid - upsert the supplier's bid

        The first bid on a pending order opens the bidding phase
        (pending -> bidding), recorded as its own event.

        Raises:
            NotAuthorized: If caller is not a supplier, or bids on own order
            BiddingClosed: If status is not pending/bidding
            DeadlinePassed: If a group order's deadline has passed
        """
        validate_role(role, Role.SUPPLIER, actor_id, "submit_bid")
        if actor_id == order["vendor_id"]:
            raise NotAuthorized(actor_id, "submit_bid", "cannot bid on own order")
        validate_bidding_open(order)
        validate_group_deadline(order, now)

        version = order["version"]
        events = []
        if order["status"] == OrderStatus.PENDING.value:
            version += 1
            events.append(
                self._event(
                    order["order_id"],
                    "BiddingOpened",
                    BiddingOpened(
                        order_id=order["order_id"], opened_by=actor_id, opened_at=now
                    ).model_dump(mode="json"),
                    version=version,
                    now=now,
                    command_id=command_id,
                    actor_id=actor_id,
                )
            )

        payload = BidSubmitted(
            order_id=order["order_id"],
            supplier_id=actor_id,
            price=command.price,
            message=command.message,
            turnaround_minutes=command.turnaround_minutes,
            replaced_previous=actor_id in order["bids"],
            submitted_at=now,
        ).model_dump(mode="json")
        events.append(
            self._event(
                order["order_id"],
                "BidSubmitted",
                payload,
                version=version + 1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        )
        return events

    def accept_bid(
        self,
        command: AcceptBid,
        command_id: str,
        actor_id: str,
        role: Role,
        order: dict[str, Any],
        reputation: ReputationRecords,
        now: datetime,
    ) -> list[Event]:
        """
        Handle AcceptBid - bidding -> accepted

        Other bids stay on the order, unaccepted, for audit. The vendor's
        commitment is counted towards their completion ratio.

        Raises:
            NotAuthorized: If caller is not the owning vendor
            NotFound: If supplier_id has no bid on the order
            InvalidTransition: If the order is not in bidding
        """
        validate_role(role, Role.VENDOR, actor_id, "accept_bid")
        validate_owner(order, actor_id, "accept_bid")
        bid = validate_bid_exists(order, command.supplier_id)
        if order["status"] != OrderStatus.BIDDING.value:
            raise InvalidTransition(
                order["order_id"], order["status"], OrderStatus.ACCEPTED.value, role.value
            )

        payload = BidAccepted(
            order_id=order["order_id"],
            supplier_id=command.supplier_id,
            final_price=bid["price"],
            payment_due_at=self._payment_due(now),
            accepted_by=actor_id,
            accepted_at=now,
        ).model_dump(mode="json")

        events = [
            self._event(
                order["order_id"],
                "BidAccepted",
                payload,
                version=order["version"] + 1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]
        events.extend(
            self.ledger.record_commitment(
                reputation.get(order["vendor_id"]),
                order["vendor_id"],
                order["order_id"],
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        )
        return events

    def join_group(
        self,
        command: JoinGroup,
        command_id: str,
        actor_id: str,
        role: Role,
        order: dict[str, Any],
        now: datetime,
    ) -> list[Event]:
        """
        Handle JoinGroup

        Raises:
            ValidationError: If the order is not a group order
            InvalidTransition: If the order left pending/bidding
            DeadlinePassed: If now is past the group deadline
            DuplicateParticipant: If the vendor already joined
            GroupFull: If max_participants is reached
        """
        validate_role(role, Role.VENDOR, actor_id, "join_group")
        validate_can_join(order, actor_id, now)

        payload = GroupJoined(
            order_id=order["order_id"],
            vendor_id=actor_id,
            quantity=command.quantity,
            joined_at=now,
        ).model_dump(mode="json")
        return [
            self._event(
                order["order_id"],
                "GroupJoined",
                payload,
                version=order["version"] + 1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]

    # ========== Fulfillment ==========

    def advance_status(
        self,
        command: AdvanceStatus,
        command_id: str,
        actor_id: str | None,
        role: Role,
        order: dict[str, Any],
        reputation: ReputationRecords,
        now: datetime,
    ) -> list[Event]:
        """
        Handle AdvanceStatus against the (role, from) -> {to} table

        Reaching completed rewards the vendor (+completion_delta, counted as
        a completed order) and every group participant except the owner
        (+participant_completion_delta). A vendor-driven cancellation costs
        the vendor cancellation_delta.

        Raises:
            NotAuthorized: If the caller is not a party of the order
            InvalidTransition: If the edge is not in the table
        """
        validate_party(order, role, actor_id, "advance_status")
        validate_transition(order, role, command.new_status)

        order_id = order["order_id"]
        payload = OrderStatusChanged(
            order_id=order_id,
            from_status=OrderStatus(order["status"]),
            to_status=command.new_status,
            role=role.value,
            note=command.note,
            changed_by=actor_id,
            changed_at=now,
        ).model_dump(mode="json")

        events = [
            self._event(
                order_id,
                "OrderStatusChanged",
                payload,
                version=order["version"] + 1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]

        vendor_id = order["vendor_id"]
        if command.new_status == OrderStatus.COMPLETED:
            events.extend(
                self.ledger.record_completion(
                    reputation.get(vendor_id),
                    vendor_id,
                    self.policy.completion_delta,
                    REASON_ORDER_COMPLETED,
                    now=now,
                    command_id=command_id,
                    actor_id=actor_id,
                    order_id=order_id,
                    counts_as_completed_order=True,
                )
            )
            for participant_id in self.rewarded_participants(order):
                events.extend(
                    self.ledger.record_completion(
                        reputation.get(participant_id),
                        participant_id,
                        self.policy.participant_completion_delta,
                        REASON_GROUP_PARTICIPATION,
                        now=now,
                        command_id=command_id,
                        actor_id=actor_id,
                        order_id=order_id,
                    )
                )
        elif command.new_status == OrderStatus.CANCELLED and role == Role.VENDOR:
            events.extend(
                self.ledger.record_cancellation(
                    reputation.get(vendor_id),
                    vendor_id,
                    self.policy.cancellation_delta,
                    REASON_ORDER_CANCELLED,
                    now=now,
                    command_id=command_id,
                    actor_id=actor_id,
                    order_id=order_id,
                )
            )
        return events

    @staticmethod
    def rewarded_participants(order: dict[str, Any]) -> list[str]:
        """Group participants that earn the participation bonus (owner excluded)"""
        group = order.get("group")
        if order["kind"] != OrderKind.GROUP.value or not group:
            return []
        return sorted(v for v in group["participants"] if v != order["vendor_id"])

    def expire(
        self,
        command: ExpireOrder,
        command_id: str,
        actor_id: str | None,
        role: Role,
        order: dict[str, Any],
        now: datetime,
    ) -> list[Event]:
        """
        Expire a pending/bidding group order whose deadline has passed

        Only the deadline sweep (system role) expires orders.
        """
        if role != Role.SYSTEM:
            raise NotAuthorized(actor_id, "expire_order", "requires role system")
        group = order.get("group")
        if not group:
            raise ValidationError(f"Order {order['order_id']} has no deadline to expire on")
        if now <= parse_datetime(group["deadline"]):
            raise ValidationError(f"Order {order['order_id']} deadline has not passed")
        validate_transition(order, role, OrderStatus.EXPIRED)

        payload = OrderStatusChanged(
            order_id=order["order_id"],
            from_status=OrderStatus(order["status"]),
            to_status=OrderStatus.EXPIRED,
            role=role.value,
            note="Group deadline passed",
            changed_by=actor_id,
            changed_at=now,
        ).model_dump(mode="json")
        return [
            self._event(
                order["order_id"],
                "OrderStatusChanged",
                payload,
                version=order["version"] + 1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]

    # ========== Side channels (never change status) ==========

    def add_note(
        self,
        command: AddNote,
        command_id: str,
        actor_id: str,
        role: Role,
        order: dict[str, Any],
        now: datetime,
    ) -> list[Event]:
        validate_party(order, role, actor_id, "add_note")
        payload = OrderNoteAdded(
            order_id=order["order_id"], note=command.note, added_by=actor_id, added_at=now
        ).model_dump(mode="json")
        return [
            self._event(
                order["order_id"],
                "OrderNoteAdded",
                payload,
                version=order["version"] + 1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]

    def update_delivery_tracking(
        self,
        command: UpdateDeliveryTracking,
        command_id: str,
        actor_id: str,
        role: Role,
        order: dict[str, Any],
        now: datetime,
    ) -> list[Event]:
        """Merge tracking fields (carrier, reference, eta, ...) into the order"""
        validate_party(order, role, actor_id, "update_delivery_tracking")
        payload = DeliveryTrackingUpdated(
            order_id=order["order_id"],
            tracking=command.tracking,
            updated_by=actor_id,
            updated_at=now,
        ).model_dump(mode="json")
        return [
            self._event(
                order["order_id"],
                "DeliveryTrackingUpdated",
                payload,
                version=order["version"] + 1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]

    def record_payment(
        self,
        command: RecordOrderPayment,
        command_id: str,
        actor_id: str,
        role: Role,
        order: dict[str, Any],
        reputation: ReputationRecords,
        now: datetime,
    ) -> list[Event]:
        """
        Vendor pays for an accepted order

        The payment is on time iff now <= due_at. Either way it counts
        towards the vendor's on-time payment ratio.

        Raises:
            NotAuthorized: If caller is not the owning vendor
            InvalidTransition: If the order has no accepted supplier yet or ended
            ValidationError: If the order is already paid
        """
        validate_role(role, Role.VENDOR, actor_id, "record_payment")
        validate_owner(order, actor_id, "record_payment")
        if OrderStatus(order["status"]) not in FULFILLMENT_STATUSES:
            raise InvalidTransition(order["order_id"], order["status"], "paid", role.value)
        payment = order["payment"]
        if payment["status"] == PaymentStatus.PAID.value:
            raise ValidationError(f"Order {order['order_id']} is already paid")

        due_at = parse_datetime(payment["due_at"])
        on_time = due_at is None or now <= due_at
        payload = OrderPaymentRecorded(
            order_id=order["order_id"],
            due_at=due_at,
            on_time=on_time,
            paid_by=actor_id,
            paid_at=now,
        ).model_dump(mode="json")

        events = [
            self._event(
                order["order_id"],
                "OrderPaymentRecorded",
                payload,
                version=order["version"] + 1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]
        events.extend(
            self.ledger.record_payment(
                reputation.get(order["vendor_id"]),
                order["vendor_id"],
                order["order_id"],
                on_time,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        )
        return events

    def leave_feedback(
        self,
        command: LeaveFeedback,
        command_id: str,
        actor_id: str,
        role: Role,
        order: dict[str, Any],
        reputation: ReputationRecords,
        now: datetime,
    ) -> list[Event]:
        """
        Rate the other side of a delivered or completed order

        The vendor's rating feeds the supplier rating; the supplier's rating
        feeds the vendor's trust score. Each side rates once.
        """
        status = OrderStatus(order["status"])
        if status not in FEEDBACK_STATUSES:
            raise InvalidTransition(order["order_id"], status.value, "feedback", role.value)

        feedback = order["feedback"]
        if role == Role.VENDOR:
            validate_owner(order, actor_id, "leave_feedback")
            if feedback["supplier_rating"] is not None:
                raise ValidationError("Vendor already rated this order's supplier")
            rated_party_id = order["supplier_id"]
            rated_role = Role.SUPPLIER
            reputation_events = self.ledger.record_rating(
                reputation.get(rated_party_id),
                rated_party_id,
                command.rating,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
                order_id=order["order_id"],
            )
        elif role == Role.SUPPLIER:
            validate_assigned_supplier(order, actor_id, "leave_feedback")
            if feedback["vendor_rating"] is not None:
                raise ValidationError("Supplier already rated this order's vendor")
            rated_party_id = order["vendor_id"]
            rated_role = Role.VENDOR
            reputation_events = self.ledger.record_counterpart_rating(
                reputation.get(rated_party_id),
                rated_party_id,
                command.rating,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
                order_id=order["order_id"],
            )
        else:
            raise NotAuthorized(actor_id, "leave_feedback", "only order parties rate")

        payload = OrderFeedbackLeft(
            order_id=order["order_id"],
            rated_party_id=rated_party_id,
            rated_role=rated_role.value,
            rating=command.rating,
            comment=command.comment,
            rated_by=actor_id,
            rated_at=now,
        ).model_dump(mode="json")
        return [
            self._event(
                order["order_id"],
                "OrderFeedbackLeft",
                payload,
                version=order["version"] + 1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            ),
            *reputation_events,
        ]
