"""
Group buys through the gateway: enrollment, derived progress, automatic
close/cancel, payments and the per-participant order fan-out
"""

from datetime import datetime
from decimal import Decimal

import pytest

from marketplace_core.gateway import Actor, MatchingGateway
from marketplace_core.groupbuy.handlers import group_buy_order_id
from marketplace_core.groupbuy.models import find_participant
from marketplace_core.kernel.errors import (
    DeadlinePassed,
    GroupBuyNotActive,
    InvalidTransition,
    MarketError,
    NotAuthorized,
    NotFound,
    PaymentAlreadyConfirmed,
    ValidationError,
)
from marketplace_core.kernel.time import TestTimeProvider


@pytest.fixture
def campaign(market: MatchingGateway, farm: Actor, tomorrow: datetime) -> dict:
    """Rice: 100 kg at 2.5 per kg, deadline tomorrow"""
    return market.create_group_buy(
        farm,
        title="Basmati rice",
        target_quantity=100,
        price_per_unit="2.5",
        deadline=tomorrow,
        unit="kg",
    )


def status_of(group_buy: dict, vendor_id: str) -> str:
    return find_participant(group_buy, vendor_id)["status"]


def assert_progress_matches_participants(group_buy: dict) -> None:
    expected = sum(
        (Decimal(p["quantity"]) for p in group_buy["participants"] if p["status"] != "cancelled"),
        Decimal("0"),
    )
    assert Decimal(group_buy["current_quantity"]) == expected


def test_create_group_buy(campaign: dict) -> None:
    assert campaign["status"] == "active"
    assert campaign["current_quantity"] == "0"
    assert campaign["current_participants"] == 0
    assert campaign["participants"] == []


def test_deadline_must_be_in_future(market: MatchingGateway, farm: Actor, now: datetime) -> None:
    with pytest.raises(ValidationError):
        market.create_group_buy(
            farm, title="Rice", target_quantity=100, price_per_unit=2, deadline=now
        )


def test_join_updates_progress(
    market: MatchingGateway, campaign: dict, meena: Actor, arjun: Actor
) -> None:
    group_buy_id = campaign["group_buy_id"]
    market.join_group_buy(meena, group_buy_id, 30)
    group_buy = market.join_group_buy(arjun, group_buy_id, 20)

    assert Decimal(group_buy["current_quantity"]) == Decimal("50")
    assert group_buy["current_participants"] == 2
    assert group_buy["completion_percentage"] == "50.00"
    assert group_buy["status"] == "active"


def test_rejoin_merges_quantity(market: MatchingGateway, campaign: dict, meena: Actor) -> None:
    group_buy_id = campaign["group_buy_id"]
    market.join_group_buy(meena, group_buy_id, 30)
    group_buy = market.join_group_buy(meena, group_buy_id, 10)

    assert len(group_buy["participants"]) == 1
    assert Decimal(find_participant(group_buy, "vendor-meena")["quantity"]) == Decimal("40")
    assert group_buy["current_participants"] == 1


def test_leave_keeps_entry_but_drops_quantity(
    market: MatchingGateway, campaign: dict, meena: Actor, arjun: Actor
) -> None:
    group_buy_id = campaign["group_buy_id"]
    market.join_group_buy(meena, group_buy_id, 30)
    market.join_group_buy(arjun, group_buy_id, 20)
    group_buy = market.leave_group_buy(arjun, group_buy_id)

    assert len(group_buy["participants"]) == 2
    assert status_of(group_buy, "vendor-arjun") == "cancelled"
    assert Decimal(group_buy["current_quantity"]) == Decimal("30")
    assert group_buy["current_participants"] == 1

    group_buy = market.join_group_buy(arjun, group_buy_id, 5)
    assert status_of(group_buy, "vendor-arjun") == "committed"
    assert Decimal(find_participant(group_buy, "vendor-arjun")["quantity"]) == Decimal("5")
    assert_progress_matches_participants(group_buy)


def test_progress_always_matches_participants(
    market: MatchingGateway, campaign: dict, ravi: Actor, meena: Actor, arjun: Actor
) -> None:
    group_buy_id = campaign["group_buy_id"]
    steps = [
        (market.join_group_buy, ravi, 12),
        (market.join_group_buy, meena, 7),
        (market.leave_group_buy, ravi, None),
        (market.join_group_buy, arjun, "3.5"),
        (market.join_group_buy, meena, 4),
        (market.join_group_buy, ravi, 1),
        (market.leave_group_buy, arjun, None),
    ]
    for operation, actor, quantity in steps:
        args = (group_buy_id,) if quantity is None else (group_buy_id, quantity)
        group_buy = operation(actor, *args)
        assert_progress_matches_participants(group_buy)

    assert Decimal(group_buy["current_quantity"]) == Decimal("12")


def test_reaching_target_closes_campaign(
    market: MatchingGateway, campaign: dict, meena: Actor, arjun: Actor, ravi: Actor
) -> None:
    group_buy_id = campaign["group_buy_id"]
    market.join_group_buy(meena, group_buy_id, 60)
    group_buy = market.join_group_buy(arjun, group_buy_id, 50)

    # The crossing join is taken whole
    assert group_buy["status"] == "closed"
    assert Decimal(group_buy["current_quantity"]) == Decimal("110")

    with pytest.raises(GroupBuyNotActive):
        market.join_group_buy(ravi, group_buy_id, 5)
    with pytest.raises(GroupBuyNotActive):
        market.leave_group_buy(meena, group_buy_id)


def test_join_after_deadline(
    market: MatchingGateway, campaign: dict, meena: Actor, test_time: TestTimeProvider
) -> None:
    test_time.advance_days(2)
    with pytest.raises(DeadlinePassed):
        market.join_group_buy(meena, campaign["group_buy_id"], 10)


def test_supplier_cannot_join(market: MatchingGateway, campaign: dict, mill: Actor) -> None:
    with pytest.raises(NotAuthorized):
        market.join_group_buy(mill, campaign["group_buy_id"], 10)


def test_leave_requires_membership(
    market: MatchingGateway, campaign: dict, meena: Actor
) -> None:
    with pytest.raises(NotFound):
        market.leave_group_buy(meena, campaign["group_buy_id"])


def test_payment_and_confirmation(
    market: MatchingGateway, campaign: dict, meena: Actor, farm: Actor, mill: Actor
) -> None:
    group_buy_id = campaign["group_buy_id"]
    market.join_group_buy(meena, group_buy_id, 30)

    group_buy = market.pay_group_buy(meena, group_buy_id)
    assert status_of(group_buy, "vendor-meena") == "paid"

    with pytest.raises(PaymentAlreadyConfirmed):
        market.leave_group_buy(meena, group_buy_id)
    with pytest.raises(PaymentAlreadyConfirmed):
        market.pay_group_buy(meena, group_buy_id)
    with pytest.raises(NotAuthorized):
        market.confirm_participant(mill, group_buy_id, "vendor-meena")

    group_buy = market.confirm_participant(farm, group_buy_id, "vendor-meena")
    assert status_of(group_buy, "vendor-meena") == "confirmed"
    # Paid participants still count
    assert Decimal(group_buy["current_quantity"]) == Decimal("30")


def test_confirm_requires_payment(
    market: MatchingGateway, campaign: dict, meena: Actor, farm: Actor
) -> None:
    market.join_group_buy(meena, campaign["group_buy_id"], 30)
    with pytest.raises(InvalidTransition):
        market.confirm_participant(farm, campaign["group_buy_id"], "vendor-meena")


def test_expire_after_deadline(
    market: MatchingGateway,
    campaign: dict,
    meena: Actor,
    system: Actor,
    test_time: TestTimeProvider,
) -> None:
    group_buy_id = campaign["group_buy_id"]
    market.join_group_buy(meena, group_buy_id, 30)

    # Nothing happens before the deadline
    group_buy = market.expire_group_buy(system, group_buy_id)
    assert group_buy["status"] == "active"

    test_time.advance_days(2)
    group_buy = market.expire_group_buy(system, group_buy_id)
    assert group_buy["status"] == "cancelled"
    assert group_buy["cancel_reason"] == "deadline_passed"


def test_supplier_cancel(
    market: MatchingGateway, campaign: dict, farm: Actor, mill: Actor
) -> None:
    with pytest.raises(NotAuthorized):
        market.cancel_group_buy(mill, campaign["group_buy_id"])

    group_buy = market.cancel_group_buy(farm, campaign["group_buy_id"], reason="Harvest failed")
    assert group_buy["status"] == "cancelled"
    assert group_buy["cancel_reason"] == "Harvest failed"

    with pytest.raises(InvalidTransition):
        market.cancel_group_buy(farm, campaign["group_buy_id"])


# =============================================================================
# Completion and fan-out
# =============================================================================


def test_complete_requires_closed_campaign(
    market: MatchingGateway, campaign: dict, meena: Actor, farm: Actor
) -> None:
    market.join_group_buy(meena, campaign["group_buy_id"], 30)
    with pytest.raises(InvalidTransition):
        market.complete_group_buy(farm, campaign["group_buy_id"])


def test_complete_fans_out_one_order_per_participant(
    market: MatchingGateway,
    campaign: dict,
    meena: Actor,
    arjun: Actor,
    ravi: Actor,
    farm: Actor,
) -> None:
    group_buy_id = campaign["group_buy_id"]
    market.join_group_buy(ravi, group_buy_id, 10)
    market.leave_group_buy(ravi, group_buy_id)
    market.join_group_buy(meena, group_buy_id, 60)
    market.join_group_buy(arjun, group_buy_id, 50)

    result = market.complete_group_buy(farm, group_buy_id)

    assert result.complete
    assert len(result.created) == 2
    assert result.existing == []
    assert market.get_group_buy(group_buy_id)["status"] == "fulfilled"

    meena_order = market.get_order(group_buy_order_id(group_buy_id, "vendor-meena"))
    assert meena_order["status"] == "accepted"
    assert meena_order["source"] == "group_buy"
    assert meena_order["source_id"] == group_buy_id
    assert meena_order["supplier_id"] == "farm-7"
    assert Decimal(meena_order["quantity"]) == Decimal("60")
    assert Decimal(meena_order["final_price"]) == Decimal("150")

    # The participant who left gets nothing
    assert market.list_orders(vendor="vendor-ravi") == []
    assert market.get_reputation("vendor-arjun")["committed_orders"] == 1


def test_complete_again_creates_nothing_new(
    market: MatchingGateway, campaign: dict, meena: Actor, farm: Actor
) -> None:
    group_buy_id = campaign["group_buy_id"]
    market.join_group_buy(meena, group_buy_id, 100)
    market.complete_group_buy(farm, group_buy_id)

    again = market.complete_group_buy(farm, group_buy_id)

    assert again.created == []
    assert again.existing == [group_buy_order_id(group_buy_id, "vendor-meena")]
    assert len(market.list_orders()) == 1
    assert len(market.order_registry.list_by_source(group_buy_id)) == 1


def test_partial_fan_out_failure_is_retried(
    market: MatchingGateway,
    campaign: dict,
    meena: Actor,
    arjun: Actor,
    farm: Actor,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    group_buy_id = campaign["group_buy_id"]
    market.join_group_buy(meena, group_buy_id, 60)
    market.join_group_buy(arjun, group_buy_id, 50)

    spawn_order = market._spawn_order

    def flaky_spawn(command, actor, now):
        if command.vendor_id == "vendor-arjun":
            raise MarketError("order store unavailable")
        return spawn_order(command, actor, now)

    monkeypatch.setattr(market, "_spawn_order", flaky_spawn)
    result = market.complete_group_buy(farm, group_buy_id)
    monkeypatch.undo()

    assert result.created == [group_buy_order_id(group_buy_id, "vendor-meena")]
    assert result.failed == {"vendor-arjun": "order store unavailable"}
    assert not result.complete
    # Fulfilment is not rolled back
    assert market.get_group_buy(group_buy_id)["status"] == "fulfilled"

    retried = market.retry_fan_out()

    assert [r.created for r in retried] == [[group_buy_order_id(group_buy_id, "vendor-arjun")]]
    assert len(market.list_orders()) == 2
    assert set(market.get_group_buy(group_buy_id)["fanout"]) == {"vendor-meena", "vendor-arjun"}


def test_list_active_group_buys(
    market: MatchingGateway, campaign: dict, meena: Actor
) -> None:
    assert [g["group_buy_id"] for g in market.list_active_group_buys()] == [
        campaign["group_buy_id"]
    ]
    market.join_group_buy(meena, campaign["group_buy_id"], 100)
    assert market.list_active_group_buys() == []
