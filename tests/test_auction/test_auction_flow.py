"""
Auctions through the gateway: the bid race, winner determination against
the reserve, and the order spawned for the winner
"""

import threading
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from marketplace_core.auction.handlers import auction_order_id, winning_bid
from marketplace_core.gateway import Actor, MatchingGateway
from marketplace_core.kernel.errors import (
    AuctionEnded,
    BidTooLow,
    InvalidTransition,
    MarketError,
    NotAuthorized,
    ValidationError,
)
from marketplace_core.kernel.time import TestTimeProvider
from marketplace_core.sweep import DeadlineSweep


@pytest.fixture
def auction(market: MatchingGateway, farm: Actor, tomorrow: datetime) -> dict:
    """Mangoes: starting 30, reserve 25, ends tomorrow"""
    return market.create_auction(
        farm,
        title="Surplus mangoes",
        starting_price=30,
        quantity=50,
        end_time=tomorrow,
        reserve_price=25,
        unit="kg",
    )


def test_create_auction(auction: dict) -> None:
    assert auction["status"] == "active"
    assert auction["current_price"] == "30"
    assert auction["reserve_price"] == "25"
    assert auction["bids"] == []
    assert auction["winner"] is None


def test_auction_end_time_must_be_in_future(
    market: MatchingGateway, farm: Actor, now: datetime
) -> None:
    with pytest.raises(ValidationError):
        market.create_auction(
            farm, title="Mangoes", starting_price=30, quantity=50, end_time=now
        )


def test_vendor_cannot_open_auction(
    market: MatchingGateway, ravi: Actor, tomorrow: datetime
) -> None:
    with pytest.raises(NotAuthorized):
        market.create_auction(
            ravi, title="Mangoes", starting_price=30, quantity=50, end_time=tomorrow
        )


def test_opening_bid_may_undercut_start(
    market: MatchingGateway, auction: dict, ravi: Actor
) -> None:
    updated = market.place_bid(ravi, auction["auction_id"], 28)
    assert updated["current_price"] == "28"
    assert winning_bid(updated)["vendor_id"] == "vendor-ravi"


def test_later_bids_must_beat_current_price(
    market: MatchingGateway, auction: dict, ravi: Actor, meena: Actor
) -> None:
    auction_id = auction["auction_id"]
    market.place_bid(ravi, auction_id, 35)

    with pytest.raises(BidTooLow):
        market.place_bid(meena, auction_id, 35)
    with pytest.raises(BidTooLow):
        market.place_bid(meena, auction_id, 34)

    updated = market.place_bid(meena, auction_id, "35.50")
    assert updated["current_price"] == "35.50"
    assert len(updated["bids"]) == 2
    assert [b["is_winning"] for b in updated["bids"]] == [False, True]


def test_supplier_cannot_bid(market: MatchingGateway, auction: dict, farm: Actor) -> None:
    with pytest.raises(NotAuthorized):
        market.place_bid(farm, auction["auction_id"], 40)


def test_bid_after_end_time(
    market: MatchingGateway, auction: dict, ravi: Actor, test_time: TestTimeProvider
) -> None:
    test_time.advance_days(2)
    with pytest.raises(AuctionEnded):
        market.place_bid(ravi, auction["auction_id"], 40)


def test_close_with_winner_spawns_order(
    market: MatchingGateway, auction: dict, ravi: Actor, farm: Actor
) -> None:
    """Start 30, reserve 25, single bid 28: the bid wins"""
    auction_id = auction["auction_id"]
    market.place_bid(ravi, auction_id, 28)

    closed = market.close_auction(farm, auction_id)

    assert closed["status"] == "completed"
    assert closed["winner"]["vendor_id"] == "vendor-ravi"
    assert Decimal(closed["winner"]["winning_amount"]) == Decimal("28")
    assert closed["spawned_order_id"] == auction_order_id(auction_id)

    order = market.get_order(closed["spawned_order_id"])
    assert order["status"] == "accepted"
    assert order["vendor_id"] == "vendor-ravi"
    assert order["supplier_id"] == "farm-7"
    assert order["source"] == "auction"
    assert order["source_id"] == auction_id
    assert order["category"] == "auction"
    assert Decimal(order["final_price"]) == Decimal("28")
    assert Decimal(order["quantity"]) == Decimal("50")
    assert market.get_reputation("vendor-ravi")["committed_orders"] == 1


def test_close_below_reserve_has_no_winner(
    market: MatchingGateway, auction: dict, ravi: Actor, farm: Actor
) -> None:
    auction_id = auction["auction_id"]
    market.place_bid(ravi, auction_id, 20)

    closed = market.close_auction(farm, auction_id)

    assert closed["status"] == "closed"
    assert closed["winner"] is None
    assert closed["spawned_order_id"] is None
    assert market.list_orders() == []


def test_close_without_bids(market: MatchingGateway, auction: dict, farm: Actor) -> None:
    closed = market.close_auction(farm, auction["auction_id"])
    assert closed["status"] == "closed"
    assert closed["winner"] is None


def test_close_twice_keeps_winner_and_order(
    market: MatchingGateway, auction: dict, ravi: Actor, meena: Actor, farm: Actor
) -> None:
    auction_id = auction["auction_id"]
    market.place_bid(ravi, auction_id, 31)
    market.place_bid(meena, auction_id, 33)

    first = market.close_auction(farm, auction_id)
    second = market.close_auction(farm, auction_id)

    assert first["winner"] == second["winner"]
    assert second["winner"]["vendor_id"] == "vendor-meena"
    assert second["spawned_order_id"] == first["spawned_order_id"]
    assert len(market.list_orders()) == 1
    assert second["version"] == first["version"]


def test_bid_on_closed_auction(
    market: MatchingGateway, auction: dict, ravi: Actor, farm: Actor
) -> None:
    market.close_auction(farm, auction["auction_id"])
    with pytest.raises(AuctionEnded):
        market.place_bid(ravi, auction["auction_id"], 40)


def test_only_owning_supplier_closes(
    market: MatchingGateway, auction: dict, mill: Actor
) -> None:
    with pytest.raises(NotAuthorized):
        market.close_auction(mill, auction["auction_id"])


def test_cancel_auction(
    market: MatchingGateway, auction: dict, ravi: Actor, farm: Actor
) -> None:
    cancelled = market.cancel_auction(farm, auction["auction_id"], reason="Crop damaged")
    assert cancelled["status"] == "cancelled"

    with pytest.raises(AuctionEnded):
        market.place_bid(ravi, auction["auction_id"], 40)
    with pytest.raises(InvalidTransition):
        market.close_auction(farm, auction["auction_id"])
    with pytest.raises(InvalidTransition):
        market.cancel_auction(farm, auction["auction_id"])


def test_completed_auction_cannot_be_cancelled(
    market: MatchingGateway, auction: dict, ravi: Actor, farm: Actor
) -> None:
    market.place_bid(ravi, auction["auction_id"], 40)
    market.close_auction(farm, auction["auction_id"])
    with pytest.raises(InvalidTransition):
        market.cancel_auction(farm, auction["auction_id"])


def test_list_active_auctions(
    market: MatchingGateway, auction: dict, farm: Actor, now: datetime
) -> None:
    sooner = market.create_auction(
        farm,
        title="Bananas",
        starting_price=10,
        quantity=20,
        end_time=now + timedelta(hours=2),
    )
    active = market.list_active_auctions()
    assert [a["auction_id"] for a in active] == [sooner["auction_id"], auction["auction_id"]]


def test_failed_spawn_is_retried(
    market: MatchingGateway,
    auction: dict,
    ravi: Actor,
    farm: Actor,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A winner whose order could not be created is picked up by retry_fan_out"""
    auction_id = auction["auction_id"]
    market.place_bid(ravi, auction_id, 40)

    def broken_spawn(*args, **kwargs):
        raise MarketError("order store unavailable")

    monkeypatch.setattr(market, "_spawn_order", broken_spawn)
    closed = market.close_auction(farm, auction_id)
    assert closed["status"] == "completed"
    assert closed["spawned_order_id"] is None
    monkeypatch.undo()

    market.retry_fan_out()

    assert market.get_auction(auction_id)["spawned_order_id"] == auction_order_id(auction_id)
    assert len(market.list_orders(vendor="vendor-ravi")) == 1


def test_concurrent_bids_keep_single_leader(
    market: MatchingGateway, auction: dict
) -> None:
    """Racing bidders: exactly one winning bid, and it sets current_price"""
    auction_id = auction["auction_id"]
    errors: list[Exception] = []

    def bidder(n: int) -> None:
        vendor = Actor.of(f"vendor-{n}", "vendor")
        for step in range(10):
            try:
                market.place_bid(vendor, auction_id, 31 + step * 8 + n)
            except BidTooLow:
                continue
            except Exception as e:
                errors.append(e)

    threads = [threading.Thread(target=bidder, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    final = market.get_auction(auction_id)
    winners = [b for b in final["bids"] if b["is_winning"]]
    assert len(winners) == 1
    assert winners[0] is final["bids"][-1]
    assert final["current_price"] == winners[0]["amount"]

    amounts = [Decimal(b["amount"]) for b in final["bids"]]
    assert amounts == sorted(amounts)
    assert len(set(amounts)) == len(amounts)


def test_queries_and_sweep_run_alongside_writers(
    market: MatchingGateway, ravi: Actor, farm: Actor, now: datetime, tomorrow: datetime
) -> None:
    """List queries and a sweep pass never trip over projections being written"""
    done = threading.Event()
    errors: list[Exception] = []

    def writer() -> None:
        try:
            for n in range(150):
                order = market.create_order(ravi, f"Rice batch {n}", 10)
                market.submit_bid(farm, order["order_id"], 40, 60)
                if n % 10 == 0:
                    market.create_auction(
                        farm,
                        title=f"Mangoes {n}",
                        starting_price=30,
                        quantity=50,
                        end_time=tomorrow,
                    )
        except Exception as e:
            errors.append(e)
        finally:
            done.set()

    def reader() -> None:
        sweep = DeadlineSweep(market)
        while not done.is_set():
            try:
                market.list_orders(vendor="vendor-ravi")
                market.list_active_auctions()
                market.list_active_group_buys()
                sweep.run(now)
            except Exception as e:
                errors.append(e)
                return

    threads = [threading.Thread(target=writer)]
    threads += [threading.Thread(target=reader) for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(market.list_orders(vendor="vendor-ravi", status="bidding")) == 150
    assert len(market.list_active_auctions()) == 15
