"""
MatchingGateway tests - identity, idempotent commands and projection rebuild
"""

from datetime import datetime
from pathlib import Path

import pytest

from marketplace_core.gateway import Actor, MatchingGateway
from marketplace_core.kernel.errors import NotFound, ValidationError
from marketplace_core.kernel.policy import MarketPolicy
from marketplace_core.kernel.time import TestTimeProvider
from marketplace_core.order.models import Role


def test_actor_of_validates_role() -> None:
    assert Actor.of("vendor-ravi", "vendor").role == Role.VENDOR
    with pytest.raises(ValidationError):
        Actor.of("vendor-ravi", "admin")
    with pytest.raises(ValidationError):
        Actor.of("", "vendor")


def test_operations_require_actor(market: MatchingGateway) -> None:
    with pytest.raises(ValidationError):
        market.create_order("vendor-ravi", "Rice", 10)


def test_invalid_command_fields_map_to_validation_error(
    market: MatchingGateway, ravi: Actor
) -> None:
    with pytest.raises(ValidationError, match="quantity"):
        market.create_order(ravi, "Rice", "lots")


def test_replayed_command_id_returns_same_result(
    market: MatchingGateway, ravi: Actor
) -> None:
    first = market.create_order(ravi, "Rice", 10, command_id="cmd-create-rice")
    events_before = market.event_store.count_events()

    second = market.create_order(ravi, "Rice", 10, command_id="cmd-create-rice")

    assert second["order_id"] == first["order_id"]
    assert market.event_store.count_events() == events_before
    assert len(market.list_orders()) == 1


def test_replayed_bid_is_not_applied_twice(
    market: MatchingGateway, ravi: Actor, farm: Actor
) -> None:
    order = market.create_order(ravi, "Rice", 10)
    market.submit_bid(farm, order["order_id"], 100, 60, command_id="cmd-bid")
    market.submit_bid(farm, order["order_id"], 100, 60, command_id="cmd-bid")

    reloaded = market.get_order(order["order_id"])
    # BidSubmitted plus the pending -> bidding change
    assert reloaded["version"] == 3
    assert list(reloaded["bids"]) == ["farm-7"]


def test_unknown_aggregates(market: MatchingGateway, farm: Actor) -> None:
    with pytest.raises(NotFound):
        market.get_order("missing")
    with pytest.raises(NotFound):
        market.submit_bid(farm, "missing", 100, 60)
    with pytest.raises(NotFound):
        market.get_auction("missing")
    with pytest.raises(NotFound):
        market.get_group_buy("missing")


def test_unknown_party_has_neutral_reputation(market: MatchingGateway) -> None:
    reputation = market.get_reputation("vendor-nobody")

    assert reputation["civil_score"] == 500
    assert reputation["trust_score"] == 50.0
    assert market.recompute_trust_score("vendor-nobody") == 50.0


def test_projections_rebuild_from_event_store(
    temp_db: Path,
    market: MatchingGateway,
    policy: MarketPolicy,
    test_time: TestTimeProvider,
    ravi: Actor,
    meena: Actor,
    farm: Actor,
    tomorrow: datetime,
) -> None:
    order = market.create_order(ravi, "Rice", 10)
    market.submit_bid(farm, order["order_id"], 100, 60)
    market.accept_bid(ravi, order["order_id"], "farm-7")
    market.advance_status(farm, order["order_id"], "preparing")
    auction = market.create_auction(
        farm, title="Mangoes", starting_price=30, quantity=50, end_time=tomorrow
    )
    market.place_bid(meena, auction["auction_id"], 31)
    group_buy = market.create_group_buy(
        farm, title="Lentils", target_quantity=10, price_per_unit=1, deadline=tomorrow
    )
    market.join_group_buy(meena, group_buy["group_buy_id"], 4)

    restarted = MatchingGateway(temp_db, policy=policy, time_provider=test_time)

    assert restarted.get_order(order["order_id"]) == market.get_order(order["order_id"])
    assert restarted.get_auction(auction["auction_id"]) == market.get_auction(
        auction["auction_id"]
    )
    assert restarted.get_group_buy(group_buy["group_buy_id"]) == market.get_group_buy(
        group_buy["group_buy_id"]
    )
    assert restarted.get_reputation("farm-7") == market.get_reputation("farm-7")


def test_second_gateway_catches_up_before_writing(
    temp_db: Path,
    market: MatchingGateway,
    policy: MarketPolicy,
    test_time: TestTimeProvider,
    ravi: Actor,
    farm: Actor,
    mill: Actor,
) -> None:
    order = market.create_order(ravi, "Rice", 10)
    other = MatchingGateway(temp_db, policy=policy, time_provider=test_time)

    market.submit_bid(farm, order["order_id"], 100, 60)
    # The second gateway has not seen farm's bid yet
    other.submit_bid(mill, order["order_id"], 95, 30)

    merged = market.get_order(order["order_id"])
    assert set(merged["bids"]) == {"farm-7", "mill-2"}
    assert merged["version"] == 4
