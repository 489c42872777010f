"""
Tests for the reputation ledger and registry

The ledger decides (returns events), the registry folds them into records.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from marketplace_core.kernel.errors import ValidationError
from marketplace_core.kernel.ids import generate_id
from marketplace_core.reputation.ledger import ReputationLedger, reputation_stream_id
from marketplace_core.reputation.projections import ReputationRegistry


def apply_all(registry: ReputationRegistry, events: list) -> None:
    for event in events:
        registry.apply_event(event)


def test_reputation_stream_id() -> None:
    assert reputation_stream_id("farm-7") == "reputation:farm-7"


def test_completion_on_unknown_party_starts_from_initial(
    ledger: ReputationLedger, now: datetime
) -> None:
    events = ledger.record_completion(
        None, "vendor-ravi", 10, "order_completed", now=now, command_id=generate_id()
    )

    assert len(events) == 1
    assert events[0].event_type == "CivilScoreAdjusted"
    assert events[0].stream_id == "reputation:vendor-ravi"
    assert events[0].version == 1
    assert events[0].payload["previous_score"] == 500
    assert events[0].payload["new_score"] == 510


def test_completed_order_also_counts_towards_completion_ratio(
    ledger: ReputationLedger, reputation_registry: ReputationRegistry, now: datetime
) -> None:
    events = ledger.record_completion(
        None,
        "vendor-ravi",
        10,
        "order_completed",
        now=now,
        command_id=generate_id(),
        order_id="order-1",
        counts_as_completed_order=True,
    )
    assert [e.event_type for e in events] == ["CivilScoreAdjusted", "OrderCompletionRecorded"]
    assert [e.version for e in events] == [1, 2]

    apply_all(reputation_registry, events)
    record = reputation_registry.get("vendor-ravi")
    assert record["civil_score"] == 510
    assert record["completed_orders"] == 1
    assert record["version"] == 2


def test_civil_score_is_clamped(
    ledger: ReputationLedger, reputation_registry: ReputationRegistry, now: datetime
) -> None:
    """Large positive deltas stop at the maximum, negative ones at zero"""
    apply_all(
        reputation_registry,
        ledger.record_completion(None, "farm-7", 700, "order_completed", now=now, command_id="c1"),
    )
    assert reputation_registry.get("farm-7")["civil_score"] == 1000

    events = ledger.record_cancellation(
        reputation_registry.get("farm-7"), "farm-7", -1500, "order_cancelled", now=now, command_id="c2"
    )
    assert events[0].payload["requested_delta"] == -1500
    assert events[0].payload["delta"] == -1000
    apply_all(reputation_registry, events)
    assert reputation_registry.get("farm-7")["civil_score"] == 0


def test_history_holds_at_most_fifty_entries(
    ledger: ReputationLedger, reputation_registry: ReputationRegistry, now: datetime
) -> None:
    for _ in range(60):
        apply_all(
            reputation_registry,
            ledger.record_completion(
                reputation_registry.get("vendor-ravi"),
                "vendor-ravi",
                10,
                "order_completed",
                now=now,
                command_id=generate_id(),
            ),
        )

    view = reputation_registry.view("vendor-ravi")
    assert len(view["history"]) == 50
    assert view["civil_score"] == 1000
    assert view["history"][-1]["score"] == 1000
    # The oldest ten adjustments (510..600) were evicted
    assert view["history"][0]["score"] == 610


def test_rating_average_is_incremental(
    ledger: ReputationLedger, reputation_registry: ReputationRegistry, now: datetime
) -> None:
    for rating in (4, 5):
        apply_all(
            reputation_registry,
            ledger.record_rating(
                reputation_registry.get("farm-7"), "farm-7", rating, now=now, command_id=generate_id()
            ),
        )

    rating = reputation_registry.get("farm-7")["supplier_rating"]
    assert rating["count"] == 2
    assert rating["average"] == Decimal("4.5")


def test_rating_average_keeps_full_precision_until_viewed(
    ledger: ReputationLedger, reputation_registry: ReputationRegistry, now: datetime
) -> None:
    for rating in (4, 5, 1):
        apply_all(
            reputation_registry,
            ledger.record_rating(
                reputation_registry.get("farm-7"), "farm-7", rating, now=now, command_id=generate_id()
            ),
        )

    assert reputation_registry.get("farm-7")["supplier_rating"]["average"] == Decimal(10) / Decimal(3)
    assert reputation_registry.view("farm-7")["supplier_rating"]["average"] == "3.3333"


@pytest.mark.parametrize("rating", [0, 6, True, 4.5])
def test_rating_out_of_range_is_rejected(ledger: ReputationLedger, now: datetime, rating) -> None:
    with pytest.raises(ValidationError):
        ledger.record_rating(None, "farm-7", rating, now=now, command_id=generate_id())


def test_payments_feed_trust_score(
    ledger: ReputationLedger, reputation_registry: ReputationRegistry, now: datetime
) -> None:
    for on_time in (True, False):
        apply_all(
            reputation_registry,
            ledger.record_payment(
                reputation_registry.get("vendor-ravi"),
                "vendor-ravi",
                "order-1",
                on_time,
                now=now,
                command_id=generate_id(),
            ),
        )

    record = reputation_registry.get("vendor-ravi")
    assert record["total_payments"] == 2
    assert record["on_time_payments"] == 1
    # 40*0.5 + 35*0.5 + 25*0.5 - still neutral on every axis
    assert record["trust_score"] == 50.0


def test_counterpart_rating_feeds_trust_score(
    ledger: ReputationLedger, reputation_registry: ReputationRegistry, now: datetime
) -> None:
    apply_all(
        reputation_registry,
        ledger.record_counterpart_rating(None, "vendor-ravi", 5, now=now, command_id=generate_id()),
    )
    # 40*0.5 + 35*0.5 + 25*1.0
    assert reputation_registry.get("vendor-ravi")["trust_score"] == 62.5


def test_view_of_unknown_party_is_neutral(reputation_registry: ReputationRegistry) -> None:
    view = reputation_registry.view("nobody")
    assert view["civil_score"] == 500
    assert view["trust_score"] == 50.0
    assert view["history"] == []
    assert reputation_registry.get("nobody") is None


def test_list_by_civil_score(
    ledger: ReputationLedger, reputation_registry: ReputationRegistry, now: datetime
) -> None:
    apply_all(
        reputation_registry,
        ledger.record_completion(None, "farm-7", 10, "order_completed", now=now, command_id="a"),
    )
    apply_all(
        reputation_registry,
        ledger.record_cancellation(None, "vendor-ravi", -15, "order_cancelled", now=now, command_id="b"),
    )

    ranked = reputation_registry.list_by_civil_score()
    assert [r["party_id"] for r in ranked] == ["farm-7", "vendor-ravi"]
    assert ranked[1]["civil_score"] == 485
