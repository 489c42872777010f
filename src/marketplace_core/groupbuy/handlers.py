"""
GroupBuy Module Handlers - enrollment, progress and fan-out

Every join and leave re-derives progress from the participant list it would
produce, then auto-transitions the campaign: to closed once the target is
reached, to cancelled if the deadline has passed with the target unmet.

Completion is a two-step affair. GroupBuyFulfilled is appended first; the
per-participant orders are created afterwards, each in its own
transaction, keyed by (group buy id, vendor id). A failed creation never
un-fulfils the campaign - completing again creates only what is missing.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

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
from marketplace_core.groupbuy.events import (
    GroupBuyCancelled,
    GroupBuyClosed,
    GroupBuyCreated,
    GroupBuyFulfilled,
    GroupBuyJoined,
    GroupBuyLeft,
    GroupBuyOrderSpawned,
    ParticipantConfirmed,
    ParticipantPaid,
)
from marketplace_core.groupbuy.models import (
    PAID_STATUSES,
    GroupBuyStatus,
    ParticipantStatus,
    active_participants,
    compute_progress,
    find_participant,
)
from marketplace_core.kernel.errors import (
    DeadlinePassed,
    GroupBuyNotActive,
    InvalidTransition,
    NotAuthorized,
    NotFound,
    PaymentAlreadyConfirmed,
    ValidationError,
)
from marketplace_core.kernel.events import GROUP_BUY_STREAM, Event, create_event
from marketplace_core.kernel.ids import derive_id, generate_id
from marketplace_core.kernel.policy import MarketPolicy
from marketplace_core.kernel.time import parse_datetime
from marketplace_core.order.commands import SpawnOrder
from marketplace_core.order.models import OrderSource, Role

REASON_DEADLINE_PASSED = "deadline_passed"
REASON_SUPPLIER_CANCELLED = "supplier_cancelled"


def validate_group_buy_exists(
    group_buy_id: str, group_buy: dict[str, Any] | None
) -> dict[str, Any]:
    if group_buy is None:
        raise NotFound("GroupBuy", group_buy_id)
    return group_buy


def group_buy_order_id(group_buy_id: str, vendor_id: str) -> str:
    """Deterministic id of the order fanned out to one participant"""
    return derive_id("group-buy", group_buy_id, vendor_id)


class FanOutResult:
    """
    Outcome of one fan-out pass

    created: order ids created by this pass
    existing: order ids that already existed (earlier pass)
    failed: vendor id -> error message, retried by completing again
    """

    def __init__(self, group_buy_id: str) -> None:
        self.group_buy_id = group_buy_id
        self.created: list[str] = []
        self.existing: list[str] = []
        self.failed: dict[str, str] = {}

    @property
    def complete(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "group_buy_id": self.group_buy_id,
            "created": list(self.created),
            "existing": list(self.existing),
            "failed": dict(self.failed),
        }

    def summary(self) -> str:
        return (
            f"Group buy {self.group_buy_id}: {len(self.created)} created, "
            f"{len(self.existing)} existing, {len(self.failed)} failed"
        )


class GroupBuyEngine:
    """Command handlers for group buys"""

    def __init__(self, policy: MarketPolicy) -> None:
        self.policy = policy

    def _event(
        self,
        group_buy_id: str,
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
            stream_id=group_buy_id,
            stream_type=GROUP_BUY_STREAM,
            event_type=event_type,
            occurred_at=now,
            command_id=command_id,
            actor_id=actor_id,
            payload=payload,
            version=version,
        )

    def _validate_owner(
        self, group_buy: dict[str, Any], actor_id: str | None, role: Role, operation: str
    ) -> None:
        if role == Role.SYSTEM:
            return
        if role != Role.SUPPLIER or group_buy["supplier_id"] != actor_id:
            raise NotAuthorized(actor_id, operation, "only the campaign's supplier may do this")

    def _validate_active(self, group_buy: dict[str, Any], attempted: str) -> None:
        if group_buy["status"] != GroupBuyStatus.ACTIVE.value:
            raise GroupBuyNotActive(group_buy["group_buy_id"], group_buy["status"], attempted)

    def _auto_transition(
        self,
        group_buy: dict[str, Any],
        participants: list[dict[str, Any]],
        *,
        version: int,
        now: datetime,
        command_id: str,
        actor_id: str | None,
    ) -> list[Event]:
        """Close on target met, cancel on deadline passed with target unmet"""
        progress = compute_progress(participants, Decimal(group_buy["target_quantity"]))
        group_buy_id = group_buy["group_buy_id"]
        if progress["current_quantity"] >= Decimal(group_buy["target_quantity"]):
            payload = GroupBuyClosed(
                group_buy_id=group_buy_id,
                current_quantity=progress["current_quantity"],
                closed_at=now,
            ).model_dump(mode="json")
            return [
                self._event(
                    group_buy_id,
                    "GroupBuyClosed",
                    payload,
                    version=version,
                    now=now,
                    command_id=command_id,
                    actor_id=actor_id,
                )
            ]
        if now > parse_datetime(group_buy["deadline"]):
            payload = GroupBuyCancelled(
                group_buy_id=group_buy_id,
                reason=REASON_DEADLINE_PASSED,
                cancelled_by=actor_id,
                cancelled_at=now,
            ).model_dump(mode="json")
            return [
                self._event(
                    group_buy_id,
                    "GroupBuyCancelled",
                    payload,
                    version=version,
                    now=now,
                    command_id=command_id,
                    actor_id=actor_id,
                )
            ]
        return []

    def create_group_buy(
        self,
        command: CreateGroupBuy,
        command_id: str,
        actor_id: str,
        role: Role,
        now: datetime,
        group_buy_id: str | None = None,
    ) -> list[Event]:
        """
        Handle CreateGroupBuy

        Raises:
            NotAuthorized: If the caller is not acting as a supplier
            ValidationError: If the deadline is not in the future
        """
        if role != Role.SUPPLIER:
            raise NotAuthorized(actor_id, "create_group_buy", "requires role supplier")
        deadline = parse_datetime(command.deadline)
        if deadline <= now:
            raise ValidationError("Group buy deadline must be in the future")

        group_buy_id = group_buy_id or generate_id()
        payload = GroupBuyCreated(
            group_buy_id=group_buy_id,
            supplier_id=actor_id,
            title=command.title,
            description=command.description,
            target_quantity=command.target_quantity,
            price_per_unit=command.price_per_unit,
            unit=command.unit,
            min_participants=command.min_participants,
            deadline=deadline,
            delivery_date=parse_datetime(command.delivery_date),
            created_at=now,
        ).model_dump(mode="json")
        return [
            self._event(
                group_buy_id,
                "GroupBuyCreated",
                payload,
                version=1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]

    def join(
        self,
        command: JoinGroupBuy,
        command_id: str,
        actor_id: str,
        role: Role,
        group_buy: dict[str, Any],
        now: datetime,
    ) -> list[Event]:
        """
        Handle JoinGroupBuy

        No participant cap and no quantity clamp: the join that crosses the
        target is accepted whole and closes the campaign.

        Raises:
            NotAuthorized: If caller is not a vendor
            GroupBuyNotActive: If status is not active
            DeadlinePassed: If now > deadline
        """
        if role != Role.VENDOR:
            raise NotAuthorized(actor_id, "join_group_buy", "requires role vendor")
        self._validate_active(group_buy, "join")
        if now > parse_datetime(group_buy["deadline"]):
            raise DeadlinePassed(group_buy["group_buy_id"], group_buy["deadline"])

        existing = find_participant(group_buy, actor_id)
        rejoined = existing is not None and existing["status"] == ParticipantStatus.CANCELLED.value
        merged = existing is not None and not rejoined

        participants = [dict(p) for p in group_buy["participants"]]
        if existing is None:
            participants.append(
                {
                    "vendor_id": actor_id,
                    "quantity": str(command.quantity),
                    "status": ParticipantStatus.COMMITTED.value,
                }
            )
        else:
            for p in participants:
                if p["vendor_id"] == actor_id:
                    base = Decimal("0") if rejoined else Decimal(p["quantity"])
                    p["quantity"] = str(base + command.quantity)
                    if rejoined:
                        p["status"] = ParticipantStatus.COMMITTED.value

        version = group_buy["version"] + 1
        payload = GroupBuyJoined(
            group_buy_id=group_buy["group_buy_id"],
            vendor_id=actor_id,
            quantity=command.quantity,
            merged=merged,
            rejoined=rejoined,
            joined_at=now,
        ).model_dump(mode="json")
        events = [
            self._event(
                group_buy["group_buy_id"],
                "GroupBuyJoined",
                payload,
                version=version,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]
        events.extend(
            self._auto_transition(
                group_buy,
                participants,
                version=version + 1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        )
        return events

    def leave(
        self,
        command: LeaveGroupBuy,
        command_id: str,
        actor_id: str,
        role: Role,
        group_buy: dict[str, Any],
        now: datetime,
    ) -> list[Event]:
        """
        Handle LeaveGroupBuy - mark the participant cancelled

        The entry stays in the list for audit.

        Raises:
            GroupBuyNotActive: If status is not active
            NotFound: If the vendor is not an active participant
            PaymentAlreadyConfirmed: If the participant already paid
        """
        if role != Role.VENDOR:
            raise NotAuthorized(actor_id, "leave_group_buy", "requires role vendor")
        self._validate_active(group_buy, "leave")
        participant = find_participant(group_buy, actor_id)
        if participant is None or participant["status"] == ParticipantStatus.CANCELLED.value:
            raise NotFound("Participant", f"{group_buy['group_buy_id']}/{actor_id}")
        if ParticipantStatus(participant["status"]) in PAID_STATUSES:
            raise PaymentAlreadyConfirmed(
                group_buy["group_buy_id"], actor_id, participant["status"]
            )

        participants = [dict(p) for p in group_buy["participants"]]
        for p in participants:
            if p["vendor_id"] == actor_id:
                p["status"] = ParticipantStatus.CANCELLED.value

        version = group_buy["version"] + 1
        payload = GroupBuyLeft(
            group_buy_id=group_buy["group_buy_id"], vendor_id=actor_id, left_at=now
        ).model_dump(mode="json")
        events = [
            self._event(
                group_buy["group_buy_id"],
                "GroupBuyLeft",
                payload,
                version=version,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]
        events.extend(
            self._auto_transition(
                group_buy,
                participants,
                version=version + 1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        )
        return events

    def record_payment(
        self,
        command: RecordParticipantPayment,
        command_id: str,
        actor_id: str,
        role: Role,
        group_buy: dict[str, Any],
        now: datetime,
    ) -> list[Event]:
        """Participant pays (committed -> paid) while active or closed"""
        if role != Role.VENDOR:
            raise NotAuthorized(actor_id, "pay_group_buy", "requires role vendor")
        status = GroupBuyStatus(group_buy["status"])
        if status not in (GroupBuyStatus.ACTIVE, GroupBuyStatus.CLOSED):
            raise GroupBuyNotActive(group_buy["group_buy_id"], status.value, "pay")
        participant = find_participant(group_buy, actor_id)
        if participant is None:
            raise NotFound("Participant", f"{group_buy['group_buy_id']}/{actor_id}")
        participant_status = ParticipantStatus(participant["status"])
        if participant_status in PAID_STATUSES:
            raise PaymentAlreadyConfirmed(
                group_buy["group_buy_id"], actor_id, participant_status.value
            )
        if participant_status == ParticipantStatus.CANCELLED:
            raise InvalidTransition(
                f"{group_buy['group_buy_id']}/{actor_id}",
                participant_status.value,
                ParticipantStatus.PAID.value,
                role.value,
            )

        payload = ParticipantPaid(
            group_buy_id=group_buy["group_buy_id"], vendor_id=actor_id, paid_at=now
        ).model_dump(mode="json")
        return [
            self._event(
                group_buy["group_buy_id"],
                "ParticipantPaid",
                payload,
                version=group_buy["version"] + 1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]

    def confirm_participant(
        self,
        command: ConfirmParticipant,
        command_id: str,
        actor_id: str,
        role: Role,
        group_buy: dict[str, Any],
        now: datetime,
    ) -> list[Event]:
        """Supplier confirms a paid participant (paid -> confirmed)"""
        self._validate_owner(group_buy, actor_id, role, "confirm_participant")
        participant = find_participant(group_buy, command.vendor_id)
        if participant is None:
            raise NotFound("Participant", f"{group_buy['group_buy_id']}/{command.vendor_id}")
        if participant["status"] != ParticipantStatus.PAID.value:
            raise InvalidTransition(
                f"{group_buy['group_buy_id']}/{command.vendor_id}",
                participant["status"],
                ParticipantStatus.CONFIRMED.value,
                role.value,
            )

        payload = ParticipantConfirmed(
            group_buy_id=group_buy["group_buy_id"],
            vendor_id=command.vendor_id,
            confirmed_by=actor_id,
            confirmed_at=now,
        ).model_dump(mode="json")
        return [
            self._event(
                group_buy["group_buy_id"],
                "ParticipantConfirmed",
                payload,
                version=group_buy["version"] + 1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]

    def cancel(
        self,
        command: CancelGroupBuy,
        command_id: str,
        actor_id: str,
        role: Role,
        group_buy: dict[str, Any],
        now: datetime,
    ) -> list[Event]:
        """Supplier withdraws an active campaign"""
        self._validate_owner(group_buy, actor_id, role, "cancel_group_buy")
        if group_buy["status"] != GroupBuyStatus.ACTIVE.value:
            raise InvalidTransition(
                group_buy["group_buy_id"],
                group_buy["status"],
                GroupBuyStatus.CANCELLED.value,
                role.value,
            )
        payload = GroupBuyCancelled(
            group_buy_id=group_buy["group_buy_id"],
            reason=command.reason or REASON_SUPPLIER_CANCELLED,
            cancelled_by=actor_id,
            cancelled_at=now,
        ).model_dump(mode="json")
        return [
            self._event(
                group_buy["group_buy_id"],
                "GroupBuyCancelled",
                payload,
                version=group_buy["version"] + 1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]

    def expire(
        self,
        command: ExpireGroupBuy,
        command_id: str,
        actor_id: str | None,
        role: Role,
        group_buy: dict[str, Any],
        now: datetime,
    ) -> list[Event]:
        """
        Cancel an active campaign whose deadline passed with the target unmet

        Returns no events when the deadline has not passed yet.
        """
        if role != Role.SYSTEM:
            raise NotAuthorized(actor_id, "expire_group_buy", "requires role system")
        self._validate_active(group_buy, GroupBuyStatus.CANCELLED.value)
        return self._auto_transition(
            group_buy,
            group_buy["participants"],
            version=group_buy["version"] + 1,
            now=now,
            command_id=command_id,
            actor_id=actor_id,
        )

    def complete(
        self,
        command: CompleteGroupBuy,
        command_id: str,
        actor_id: str | None,
        role: Role,
        group_buy: dict[str, Any],
        now: datetime,
    ) -> list[Event]:
        """
        Mark a closed campaign fulfilled

        A fulfilled campaign returns no events, so completing again only
        retries the fan-out.

        Raises:
            InvalidTransition: Unless closed with the target met (or fulfilled)
        """
        self._validate_owner(group_buy, actor_id, role, "complete_group_buy")
        if group_buy["status"] == GroupBuyStatus.FULFILLED.value:
            return []
        target_met = Decimal(group_buy["current_quantity"]) >= Decimal(
            group_buy["target_quantity"]
        )
        if group_buy["status"] != GroupBuyStatus.CLOSED.value or not target_met:
            raise InvalidTransition(
                group_buy["group_buy_id"],
                group_buy["status"],
                GroupBuyStatus.FULFILLED.value,
                role.value,
            )

        payload = GroupBuyFulfilled(
            group_buy_id=group_buy["group_buy_id"],
            participant_ids=[p["vendor_id"] for p in active_participants(group_buy)],
            fulfilled_by=actor_id,
            fulfilled_at=now,
        ).model_dump(mode="json")
        return [
            self._event(
                group_buy["group_buy_id"],
                "GroupBuyFulfilled",
                payload,
                version=group_buy["version"] + 1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]

    def spawn_commands(self, group_buy: dict[str, Any]) -> list[SpawnOrder]:
        """
        One accepted order per non-cancelled participant without one yet

        Each order is the participant's quantity at price_per_unit.
        """
        if group_buy["status"] != GroupBuyStatus.FULFILLED.value:
            return []
        price_per_unit = Decimal(group_buy["price_per_unit"])
        commands = []
        for participant in active_participants(group_buy):
            vendor_id = participant["vendor_id"]
            if vendor_id in group_buy["fanout"]:
                continue
            quantity = Decimal(participant["quantity"])
            commands.append(
                SpawnOrder(
                    order_id=group_buy_order_id(group_buy["group_buy_id"], vendor_id),
                    vendor_id=vendor_id,
                    supplier_id=group_buy["supplier_id"],
                    title=group_buy["title"],
                    unit=group_buy["unit"],
                    quantity=quantity,
                    final_price=quantity * price_per_unit,
                    source=OrderSource.GROUP_BUY,
                    source_id=group_buy["group_buy_id"],
                )
            )
        return commands

    def record_spawned_order(
        self,
        group_buy: dict[str, Any],
        vendor_id: str,
        order_id: str,
        command_id: str,
        actor_id: str | None,
        now: datetime,
    ) -> list[Event]:
        payload = GroupBuyOrderSpawned(
            group_buy_id=group_buy["group_buy_id"],
            vendor_id=vendor_id,
            order_id=order_id,
            spawned_at=now,
        ).model_dump(mode="json")
        return [
            self._event(
                group_buy["group_buy_id"],
                "GroupBuyOrderSpawned",
                payload,
                version=group_buy["version"] + 1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]
