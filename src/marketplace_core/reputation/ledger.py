"""
Reputation Ledger - score adjustments as events

Pure: takes the party's current record (or None for a party never seen
before) plus the caller's inputs, and returns the events that describe the
change. No I/O, no clock reads.

Fun fact: The word "credit" comes from the Latin "credere", to believe -
a civil score is just the market's running answer to "can we believe you?"
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from marketplace_core.kernel.errors import ValidationError
from marketplace_core.kernel.events import REPUTATION_STREAM, Event, create_event
from marketplace_core.kernel.ids import generate_id
from marketplace_core.kernel.policy import MarketPolicy
from marketplace_core.reputation import events
from marketplace_core.reputation.models import incremental_mean


def reputation_stream_id(party_id: str) -> str:
    """Stream holding one party's reputation events"""
    return f"{REPUTATION_STREAM}:{party_id}"


class ReputationLedger:
    """
    Command handlers for reputation records

    Every method returns the events for ONE party. Callers that affect
    several parties call once per party and append the results together.
    """

    def __init__(self, policy: MarketPolicy) -> None:
        self.policy = policy

    def _event(
        self,
        party_id: str,
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
            stream_id=reputation_stream_id(party_id),
            stream_type=REPUTATION_STREAM,
            event_type=event_type,
            occurred_at=now,
            command_id=command_id,
            actor_id=actor_id,
            payload=payload,
            version=version,
        )

    def _current_score(self, record: dict[str, Any] | None) -> int:
        if record is None:
            return self.policy.civil_score_initial
        return record["civil_score"]

    def _version(self, record: dict[str, Any] | None) -> int:
        return record["version"] if record else 0

    def _adjust(
        self,
        record: dict[str, Any] | None,
        party_id: str,
        delta: int,
        reason: str,
        *,
        now: datetime,
        command_id: str,
        actor_id: str | None,
        source_id: str | None,
        version: int,
    ) -> Event:
        previous = self._current_score(record)
        new_score = self.policy.clamp_civil_score(previous + delta)
        payload = events.CivilScoreAdjusted(
            party_id=party_id,
            previous_score=previous,
            requested_delta=delta,
            delta=new_score - previous,
            new_score=new_score,
            reason=reason,
            source_id=source_id,
            adjusted_at=now,
        ).model_dump(mode="json")
        return self._event(
            party_id,
            "CivilScoreAdjusted",
            payload,
            version=version,
            now=now,
            command_id=command_id,
            actor_id=actor_id,
        )

    def record_completion(
        self,
        record: dict[str, Any] | None,
        party_id: str,
        delta: int,
        reason: str,
        *,
        now: datetime,
        command_id: str,
        actor_id: str | None = None,
        order_id: str | None = None,
        counts_as_completed_order: bool = False,
    ) -> list[Event]:
        """
        Reward a completed transaction

        Clamps the civil score to the policy bounds and appends a history
        entry. With counts_as_completed_order, also advances the vendor's
        order-completion ratio.
        """
        version = self._version(record)
        result = [
            self._adjust(
                record,
                party_id,
                delta,
                reason,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
                source_id=order_id,
                version=version + 1,
            )
        ]
        if counts_as_completed_order and order_id:
            payload = events.OrderCompletionRecorded(
                party_id=party_id, order_id=order_id, recorded_at=now
            ).model_dump(mode="json")
            result.append(
                self._event(
                    party_id,
                    "OrderCompletionRecorded",
                    payload,
                    version=version + 2,
                    now=now,
                    command_id=command_id,
                    actor_id=actor_id,
                )
            )
        return result

    def record_cancellation(
        self,
        record: dict[str, Any] | None,
        party_id: str,
        delta: int,
        reason: str,
        *,
        now: datetime,
        command_id: str,
        actor_id: str | None = None,
        order_id: str | None = None,
    ) -> list[Event]:
        """Penalize a cancellation (delta is expected to be negative)"""
        return [
            self._adjust(
                record,
                party_id,
                delta,
                reason,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
                source_id=order_id,
                version=self._version(record) + 1,
            )
        ]

    def record_commitment(
        self,
        record: dict[str, Any] | None,
        party_id: str,
        order_id: str,
        *,
        now: datetime,
        command_id: str,
        actor_id: str | None = None,
    ) -> list[Event]:
        """Count an order the vendor committed to"""
        payload = events.OrderCommitmentRecorded(
            party_id=party_id, order_id=order_id, recorded_at=now
        ).model_dump(mode="json")
        return [
            self._event(
                party_id,
                "OrderCommitmentRecorded",
                payload,
                version=self._version(record) + 1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]

    def record_payment(
        self,
        record: dict[str, Any] | None,
        party_id: str,
        order_id: str,
        on_time: bool,
        *,
        now: datetime,
        command_id: str,
        actor_id: str | None = None,
    ) -> list[Event]:
        """Count a payment towards the vendor's on-time ratio"""
        payload = events.PaymentRecorded(
            party_id=party_id, order_id=order_id, on_time=on_time, recorded_at=now
        ).model_dump(mode="json")
        return [
            self._event(
                party_id,
                "PaymentRecorded",
                payload,
                version=self._version(record) + 1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]

    def _validate_rating(self, rating: int) -> None:
        if isinstance(rating, bool) or not isinstance(rating, int):
            raise ValidationError(f"Rating must be an integer, got {rating!r}")
        if not self.policy.is_valid_rating(rating):
            raise ValidationError(
                f"Rating {rating} outside {self.policy.rating_min}-{self.policy.rating_max}"
            )

    def record_rating(
        self,
        record: dict[str, Any] | None,
        supplier_id: str,
        rating: int,
        *,
        now: datetime,
        command_id: str,
        actor_id: str | None = None,
        order_id: str | None = None,
    ) -> list[Event]:
        """
        Fold a 1-5 rating into the supplier's running average

        Incremental: the previous (average, count) pair is all that is needed.

        Raises:
            ValidationError: If rating is outside the policy range
        """
        self._validate_rating(rating)
        current = record["supplier_rating"] if record else {"average": Decimal("0"), "count": 0}
        new_average, new_count = incremental_mean(
            Decimal(current["average"]), current["count"], rating
        )
        payload = events.SupplierRated(
            party_id=supplier_id,
            rating=rating,
            new_average=new_average,
            new_count=new_count,
            source_id=order_id,
            rated_at=now,
        ).model_dump(mode="json")
        return [
            self._event(
                supplier_id,
                "SupplierRated",
                payload,
                version=self._version(record) + 1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]

    def record_counterpart_rating(
        self,
        record: dict[str, Any] | None,
        vendor_id: str,
        rating: int,
        *,
        now: datetime,
        command_id: str,
        actor_id: str | None = None,
        order_id: str | None = None,
    ) -> list[Event]:
        """Fold a supplier's rating of a vendor into the vendor's trust inputs"""
        self._validate_rating(rating)
        current = record["counterpart_rating"] if record else {"average": Decimal("0"), "count": 0}
        new_average, new_count = incremental_mean(
            Decimal(current["average"]), current["count"], rating
        )
        payload = events.CounterpartRated(
            party_id=vendor_id,
            rating=rating,
            new_average=new_average,
            new_count=new_count,
            source_id=order_id,
            rated_at=now,
        ).model_dump(mode="json")
        return [
            self._event(
                vendor_id,
                "CounterpartRated",
                payload,
                version=self._version(record) + 1,
                now=now,
                command_id=command_id,
                actor_id=actor_id,
            )
        ]
