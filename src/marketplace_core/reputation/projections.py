"""
Reputation Projections - one record per party

ReputationRegistry folds reputation events into records. Records are created
lazily on the first event that mentions a party; the trust score is
recomputed after every event so readers never see a stale composite.
"""

from decimal import Decimal
from typing import Any

from marketplace_core.kernel.events import Event
from marketplace_core.kernel.policy import MarketPolicy
from marketplace_core.reputation.models import (
    ScoreHistoryEntry,
    compute_trust_score,
    display_average,
    new_reputation_record,
)


class ReputationRegistry:
    """
    Current reputation of every party seen so far

    Built from events: CivilScoreAdjusted, OrderCommitmentRecorded,
                       OrderCompletionRecorded, PaymentRecorded,
                       SupplierRated, CounterpartRated
    """

    def __init__(self, policy: MarketPolicy) -> None:
        self.policy = policy
        self.records: dict[str, dict[str, Any]] = {}

    def apply_event(self, event: Event) -> None:
        handler = getattr(self, f"_apply_{_snake(event.event_type)}", None)
        if handler is None:
            return
        record = self._record_for(event)
        handler(record, event.payload)
        record["version"] = event.version
        record["updated_at"] = event.occurred_at.isoformat()
        record["trust_score"] = compute_trust_score(record, self.policy)

    def _record_for(self, event: Event) -> dict[str, Any]:
        party_id = event.payload["party_id"]
        if party_id not in self.records:
            self.records[party_id] = new_reputation_record(
                party_id, self.policy, event.occurred_at.isoformat()
            )
        return self.records[party_id]

    def _apply_civil_score_adjusted(self, record: dict, payload: dict) -> None:
        record["civil_score"] = payload["new_score"]
        record["history"].append(
            ScoreHistoryEntry(
                score=payload["new_score"],
                delta=payload["delta"],
                reason=payload["reason"],
                timestamp=payload["adjusted_at"],
            )
        )

    def _apply_order_commitment_recorded(self, record: dict, payload: dict) -> None:
        record["committed_orders"] += 1

    def _apply_order_completion_recorded(self, record: dict, payload: dict) -> None:
        record["completed_orders"] += 1

    def _apply_payment_recorded(self, record: dict, payload: dict) -> None:
        record["total_payments"] += 1
        if payload["on_time"]:
            record["on_time_payments"] += 1

    def _apply_supplier_rated(self, record: dict, payload: dict) -> None:
        record["supplier_rating"] = {
            "average": Decimal(str(payload["new_average"])),
            "count": payload["new_count"],
        }

    def _apply_counterpart_rated(self, record: dict, payload: dict) -> None:
        record["counterpart_rating"] = {
            "average": Decimal(str(payload["new_average"])),
            "count": payload["new_count"],
        }

    # ========== Query Methods ==========

    def get(self, party_id: str) -> dict[str, Any] | None:
        """Live record (None if the party has no reputation events yet)"""
        return self.records.get(party_id)

    def view(self, party_id: str) -> dict[str, Any]:
        """
        Plain-dict snapshot of a party's reputation

        Parties never seen before get the neutral defaults without creating a
        record.
        """
        record = self.records.get(party_id)
        if record is None:
            record = new_reputation_record(party_id, self.policy, "")
            record["created_at"] = None
            record["updated_at"] = None
        return {
            "party_id": party_id,
            "civil_score": record["civil_score"],
            "history": record["history"].to_list(),
            "supplier_rating": {
                "average": str(display_average(record["supplier_rating"]["average"])),
                "count": record["supplier_rating"]["count"],
            },
            "counterpart_rating": {
                "average": str(display_average(record["counterpart_rating"]["average"])),
                "count": record["counterpart_rating"]["count"],
            },
            "on_time_payments": record["on_time_payments"],
            "total_payments": record["total_payments"],
            "completed_orders": record["completed_orders"],
            "committed_orders": record["committed_orders"],
            "trust_score": record["trust_score"],
            "created_at": record["created_at"],
            "updated_at": record["updated_at"],
            "version": record["version"],
        }

    def list_by_civil_score(self, limit: int = 10) -> list[dict[str, Any]]:
        """Parties with the highest civil score first"""
        ranked = sorted(
            self.records.values(), key=lambda r: (-r["civil_score"], r["party_id"])
        )
        return [self.view(r["party_id"]) for r in ranked[:limit]]


def _snake(name: str) -> str:
    out = []
    for i, ch in enumerate(name):
        if ch.isupper() and i:
            out.append("_")
        out.append(ch.lower())
    return "".join(out)
