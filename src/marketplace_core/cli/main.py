"""
Marketplace Core CLI

Command-line interface for operating the marketplace core against a local
event store. Every mutating command needs the acting party (--as) and, where
the role is not implied, --role.

Usage:
    market init --db market.db
    market order create --as vendor-ravi --title "Tomatoes" --quantity 40
    market order bid --as farm-7 --order <id> --price 120 --turnaround 90
    market order accept --as vendor-ravi --order <id> --supplier farm-7
    market auction create --as farm-7 --title "Surplus mangoes" ...
    market groupbuy complete --as farm-7 --id <id>
    market reputation show --party vendor-ravi
    market sweep
"""

import json
import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional

import typer
from typing_extensions import Annotated

from marketplace_core.gateway import Actor, MatchingGateway
from marketplace_core.kernel.errors import MarketError
from marketplace_core.kernel.logging import configure_logging, is_production
from marketplace_core.kernel.policy import MarketPolicy
from marketplace_core.sweep import DeadlineSweep

# Logs go to stderr so --json output stays clean
configure_logging(json_output=is_production(), log_level=os.getenv("MARKET_LOG_LEVEL", "WARNING"))

app = typer.Typer(
    name="market",
    help="Marketplace Core - orders, auctions, group buys and reputation",
    add_completion=False,
)

order_app = typer.Typer(help="Purchase order commands")
auction_app = typer.Typer(help="Auction commands")
groupbuy_app = typer.Typer(help="Group buy commands")
reputation_app = typer.Typer(help="Reputation commands")

app.add_typer(order_app, name="order")
app.add_typer(auction_app, name="auction")
app.add_typer(groupbuy_app, name="groupbuy")
app.add_typer(reputation_app, name="reputation")

DbOption = Annotated[Optional[Path], typer.Option("--db", help="Database path")]
AsOption = Annotated[str, typer.Option("--as", help="Acting party id")]
JsonOption = Annotated[bool, typer.Option("--json", help="Output as JSON")]


def default_db() -> Path:
    return Path(os.getenv("MARKET_DB", ".market.db"))


def get_gateway(db_path: Optional[Path] = None) -> MatchingGateway:
    """Open the gateway on an existing database"""
    db = db_path or default_db()
    if not db.exists():
        typer.echo(f"Error: Database not found: {db}", err=True)
        typer.echo(f"Run 'market init --db {db}' to initialize", err=True)
        raise typer.Exit(1)
    return MatchingGateway(db, policy=MarketPolicy.from_env())


@contextmanager
def market_errors() -> Iterator[None]:
    """Report rejected operations as a one-line error and exit code 1"""
    try:
        yield
    except MarketError as e:
        typer.echo(f"Error ({type(e).__name__}): {e}", err=True)
        raise typer.Exit(1) from e


def echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


# Initialization command


@app.command()
def init(db: DbOption = None) -> None:
    """Initialize a new marketplace database"""
    db = db or default_db()
    if db.exists():
        typer.echo(f"Error: Database already exists: {db}", err=True)
        raise typer.Exit(1)

    MatchingGateway(db)
    typer.echo(f"✓ Initialized marketplace database: {db}")


# Order commands


@order_app.command("create")
def order_create(
    party: AsOption,
    title: Annotated[str, typer.Option("--title", help="What is being bought")],
    quantity: Annotated[str, typer.Option("--quantity", help="Quantity")],
    unit: Annotated[str, typer.Option("--unit", help="Unit of measure")] = "unit",
    category: Annotated[str, typer.Option("--category", help="Category")] = "general",
    estimated_price: Annotated[
        Optional[str], typer.Option("--estimated-price", help="Expected total price")
    ] = None,
    group: Annotated[bool, typer.Option("--group", help="Create a group order")] = False,
    max_participants: Annotated[
        Optional[int], typer.Option("--max-participants", help="Group size cap")
    ] = None,
    deadline: Annotated[
        Optional[str], typer.Option("--deadline", help="Group deadline (ISO 8601)")
    ] = None,
    db: DbOption = None,
) -> None:
    """Create a purchase order"""
    market = get_gateway(db)
    with market_errors():
        order = market.create_order(
            Actor.of(party, "vendor"),
            title=title,
            quantity=quantity,
            unit=unit,
            category=category,
            estimated_price=estimated_price,
            kind="group" if group else "individual",
            max_participants=max_participants,
            deadline=deadline,
        )

    typer.echo(f"✓ Created order: {order['order_id']}")
    typer.echo(f"  Title: {order['title']}")
    typer.echo(f"  Quantity: {order['quantity']} {order['unit']}")
    typer.echo(f"  Kind: {order['kind']}")
    typer.echo(f"  Status: {order['status']}")


@order_app.command("bid")
def order_bid(
    party: AsOption,
    order_id: Annotated[str, typer.Option("--order", help="Order ID")],
    price: Annotated[str, typer.Option("--price", help="Offered price")],
    turnaround: Annotated[int, typer.Option("--turnaround", help="Turnaround in minutes")],
    message: Annotated[str, typer.Option("--message", help="Note to the vendor")] = "",
    db: DbOption = None,
) -> None:
    """Submit (or replace) a supplier bid"""
    market = get_gateway(db)
    with market_errors():
        order = market.submit_bid(
            Actor.of(party, "supplier"), order_id, price, turnaround, message
        )
    typer.echo(f"✓ Bid recorded on {order_id} ({len(order['bids'])} bids, status {order['status']})")


@order_app.command("accept")
def order_accept(
    party: AsOption,
    order_id: Annotated[str, typer.Option("--order", help="Order ID")],
    supplier: Annotated[str, typer.Option("--supplier", help="Supplier whose bid to accept")],
    db: DbOption = None,
) -> None:
    """Accept a supplier's bid"""
    market = get_gateway(db)
    with market_errors():
        order = market.accept_bid(Actor.of(party, "vendor"), order_id, supplier)
    typer.echo(f"✓ Accepted bid from {supplier}")
    typer.echo(f"  Final price: {order['final_price']}")
    typer.echo(f"  Payment due: {order['payment']['due_at']}")


@order_app.command("join")
def order_join(
    party: AsOption,
    order_id: Annotated[str, typer.Option("--order", help="Order ID")],
    quantity: Annotated[str, typer.Option("--quantity", help="Committed quantity")],
    db: DbOption = None,
) -> None:
    """Join a group order"""
    market = get_gateway(db)
    with market_errors():
        order = market.join_group(Actor.of(party, "vendor"), order_id, quantity)
    participants = order["group"]["participants"]
    typer.echo(f"✓ Joined group order {order_id} ({len(participants)} participants)")


@order_app.command("advance")
def order_advance(
    party: AsOption,
    order_id: Annotated[str, typer.Option("--order", help="Order ID")],
    status: Annotated[str, typer.Option("--status", help="New status")],
    role: Annotated[str, typer.Option("--role", help="vendor or supplier")],
    note: Annotated[str, typer.Option("--note", help="History note")] = "",
    db: DbOption = None,
) -> None:
    """Advance an order along the fulfillment chain"""
    market = get_gateway(db)
    with market_errors():
        order = market.advance_status(Actor.of(party, role), order_id, status, note)
    typer.echo(f"✓ Order {order_id} is now {order['status']}")


@order_app.command("pay")
def order_pay(
    party: AsOption,
    order_id: Annotated[str, typer.Option("--order", help="Order ID")],
    db: DbOption = None,
) -> None:
    """Record the vendor's payment"""
    market = get_gateway(db)
    with market_errors():
        order = market.record_payment(Actor.of(party, "vendor"), order_id)
    on_time = "on time" if order["payment"]["on_time"] else "late"
    typer.echo(f"✓ Payment recorded ({on_time})")


@order_app.command("rate")
def order_rate(
    party: AsOption,
    order_id: Annotated[str, typer.Option("--order", help="Order ID")],
    role: Annotated[str, typer.Option("--role", help="vendor or supplier")],
    rating: Annotated[int, typer.Option("--rating", help="1-5")],
    comment: Annotated[str, typer.Option("--comment", help="Comment")] = "",
    db: DbOption = None,
) -> None:
    """Rate the other party of a delivered order"""
    market = get_gateway(db)
    with market_errors():
        market.leave_feedback(Actor.of(party, role), order_id, rating, comment)
    typer.echo(f"✓ Feedback recorded on {order_id}")


@order_app.command("show")
def order_show(
    order_id: Annotated[str, typer.Option("--id", help="Order ID")],
    as_json: JsonOption = False,
    db: DbOption = None,
) -> None:
    """Show an order"""
    market = get_gateway(db)
    with market_errors():
        order = market.get_order(order_id)

    if as_json:
        echo_json(order)
        return

    typer.echo(f"Order: {order['order_id']}")
    typer.echo(f"  Title: {order['title']}")
    typer.echo(f"  Vendor: {order['vendor_id']}")
    typer.echo(f"  Supplier: {order['supplier_id'] or '-'}")
    typer.echo(f"  Status: {order['status']}")
    typer.echo(f"  Quantity: {order['quantity']} {order['unit']}")
    if order["final_price"]:
        typer.echo(f"  Final price: {order['final_price']}")
    typer.echo(f"  Bids: {len(order['bids'])}")
    typer.echo("  History:")
    for entry in order["status_history"]:
        typer.echo(f"    {entry['timestamp']}  {entry['status']}  {entry['note']}")


@order_app.command("list")
def order_list(
    vendor: Annotated[Optional[str], typer.Option("--vendor", help="Filter by vendor")] = None,
    supplier: Annotated[
        Optional[str], typer.Option("--supplier", help="Filter by supplier")
    ] = None,
    status: Annotated[Optional[str], typer.Option("--status", help="Filter by status")] = None,
    as_json: JsonOption = False,
    db: DbOption = None,
) -> None:
    """List orders"""
    market = get_gateway(db)
    orders = market.list_orders(vendor=vendor, supplier=supplier, status=status)

    if as_json:
        echo_json(orders)
        return
    if not orders:
        typer.echo("No orders")
        return

    typer.echo(f"Orders ({len(orders)}):")
    for order in orders:
        typer.echo(f"  {order['order_id']}: {order['title']} [{order['status']}]")


# Auction commands


@auction_app.command("create")
def auction_create(
    party: AsOption,
    title: Annotated[str, typer.Option("--title", help="Lot title")],
    starting_price: Annotated[str, typer.Option("--starting-price", help="Starting price")],
    quantity: Annotated[str, typer.Option("--quantity", help="Lot quantity")],
    end_time: Annotated[str, typer.Option("--end-time", help="End time (ISO 8601)")],
    reserve_price: Annotated[
        Optional[str], typer.Option("--reserve-price", help="Minimum winning bid")
    ] = None,
    unit: Annotated[str, typer.Option("--unit", help="Unit of measure")] = "unit",
    db: DbOption = None,
) -> None:
    """Open an auction"""
    market = get_gateway(db)
    with market_errors():
        auction = market.create_auction(
            Actor.of(party, "supplier"),
            title=title,
            starting_price=starting_price,
            quantity=quantity,
            end_time=end_time,
            reserve_price=reserve_price,
            unit=unit,
        )
    typer.echo(f"✓ Created auction: {auction['auction_id']}")
    typer.echo(f"  Starting price: {auction['starting_price']}")
    typer.echo(f"  Ends: {auction['end_time']}")


@auction_app.command("bid")
def auction_bid(
    party: AsOption,
    auction_id: Annotated[str, typer.Option("--auction", help="Auction ID")],
    amount: Annotated[str, typer.Option("--amount", help="Bid amount")],
    db: DbOption = None,
) -> None:
    """Bid on an auction"""
    market = get_gateway(db)
    with market_errors():
        auction = market.place_bid(Actor.of(party, "vendor"), auction_id, amount)
    typer.echo(f"✓ Leading bid: {auction['current_price']}")


@auction_app.command("close")
def auction_close(
    party: AsOption,
    auction_id: Annotated[str, typer.Option("--auction", help="Auction ID")],
    db: DbOption = None,
) -> None:
    """Close an auction and spawn the winner's order"""
    market = get_gateway(db)
    with market_errors():
        auction = market.close_auction(Actor.of(party, "supplier"), auction_id)

    typer.echo(f"✓ Auction {auction_id} is {auction['status']}")
    if auction["winner"]:
        typer.echo(f"  Winner: {auction['winner']['vendor_id']}")
        typer.echo(f"  Winning bid: {auction['winner']['winning_amount']}")
        typer.echo(f"  Order: {auction['spawned_order_id']}")
    else:
        typer.echo("  No winner")


@auction_app.command("show")
def auction_show(
    auction_id: Annotated[str, typer.Option("--id", help="Auction ID")],
    as_json: JsonOption = False,
    db: DbOption = None,
) -> None:
    """Show an auction"""
    market = get_gateway(db)
    with market_errors():
        auction = market.get_auction(auction_id)

    if as_json:
        echo_json(auction)
        return

    typer.echo(f"Auction: {auction['auction_id']}")
    typer.echo(f"  Title: {auction['title']}")
    typer.echo(f"  Status: {auction['status']}")
    typer.echo(f"  Current price: {auction['current_price']}")
    typer.echo(f"  Bids: {len(auction['bids'])}")


# Group buy commands


@groupbuy_app.command("create")
def groupbuy_create(
    party: AsOption,
    title: Annotated[str, typer.Option("--title", help="Campaign title")],
    target_quantity: Annotated[str, typer.Option("--target", help="Target quantity")],
    price_per_unit: Annotated[str, typer.Option("--price-per-unit", help="Unit price")],
    deadline: Annotated[str, typer.Option("--deadline", help="Deadline (ISO 8601)")],
    unit: Annotated[str, typer.Option("--unit", help="Unit of measure")] = "unit",
    db: DbOption = None,
) -> None:
    """Open a group buy"""
    market = get_gateway(db)
    with market_errors():
        group_buy = market.create_group_buy(
            Actor.of(party, "supplier"),
            title=title,
            target_quantity=target_quantity,
            price_per_unit=price_per_unit,
            deadline=deadline,
            unit=unit,
        )
    typer.echo(f"✓ Created group buy: {group_buy['group_buy_id']}")
    typer.echo(f"  Target: {group_buy['target_quantity']} {group_buy['unit']}")
    typer.echo(f"  Deadline: {group_buy['deadline']}")


@groupbuy_app.command("join")
def groupbuy_join(
    party: AsOption,
    group_buy_id: Annotated[str, typer.Option("--id", help="Group buy ID")],
    quantity: Annotated[str, typer.Option("--quantity", help="Committed quantity")],
    db: DbOption = None,
) -> None:
    """Join (or top up) a group buy"""
    market = get_gateway(db)
    with market_errors():
        group_buy = market.join_group_buy(Actor.of(party, "vendor"), group_buy_id, quantity)
    typer.echo(
        f"✓ Progress: {group_buy['current_quantity']}/{group_buy['target_quantity']} "
        f"({group_buy['completion_percentage']}%), status {group_buy['status']}"
    )


@groupbuy_app.command("leave")
def groupbuy_leave(
    party: AsOption,
    group_buy_id: Annotated[str, typer.Option("--id", help="Group buy ID")],
    db: DbOption = None,
) -> None:
    """Leave a group buy"""
    market = get_gateway(db)
    with market_errors():
        group_buy = market.leave_group_buy(Actor.of(party, "vendor"), group_buy_id)
    typer.echo(f"✓ Left group buy ({group_buy['current_participants']} participants remain)")


@groupbuy_app.command("complete")
def groupbuy_complete(
    party: AsOption,
    group_buy_id: Annotated[str, typer.Option("--id", help="Group buy ID")],
    db: DbOption = None,
) -> None:
    """Fulfil a closed group buy and fan out orders"""
    market = get_gateway(db)
    with market_errors():
        result = market.complete_group_buy(Actor.of(party, "supplier"), group_buy_id)
    typer.echo(f"✓ {result.summary()}")
    for vendor_id, error in result.failed.items():
        typer.echo(f"  ✗ {vendor_id}: {error}", err=True)
    if result.failed:
        raise typer.Exit(1)


@groupbuy_app.command("show")
def groupbuy_show(
    group_buy_id: Annotated[str, typer.Option("--id", help="Group buy ID")],
    as_json: JsonOption = False,
    db: DbOption = None,
) -> None:
    """Show a group buy"""
    market = get_gateway(db)
    with market_errors():
        group_buy = market.get_group_buy(group_buy_id)

    if as_json:
        echo_json(group_buy)
        return

    typer.echo(f"Group buy: {group_buy['group_buy_id']}")
    typer.echo(f"  Title: {group_buy['title']}")
    typer.echo(f"  Status: {group_buy['status']}")
    typer.echo(
        f"  Progress: {group_buy['current_quantity']}/{group_buy['target_quantity']} "
        f"({group_buy['current_participants']} participants)"
    )


# Reputation commands


@reputation_app.command("show")
def reputation_show(
    party: Annotated[str, typer.Option("--party", help="Party ID")],
    as_json: JsonOption = False,
    db: DbOption = None,
) -> None:
    """Show a party's reputation"""
    market = get_gateway(db)
    record = market.get_reputation(party)

    if as_json:
        echo_json(record)
        return

    typer.echo(f"Reputation: {party}")
    typer.echo(f"  Civil score: {record['civil_score']}")
    typer.echo(f"  Trust score: {record['trust_score']}")
    rating = record["supplier_rating"]
    typer.echo(f"  Supplier rating: {rating['average']} ({rating['count']} ratings)")
    typer.echo(f"  History entries: {len(record['history'])}")


# Sweep


@app.command()
def sweep(
    as_json: JsonOption = False,
    db: DbOption = None,
) -> None:
    """Close, expire and fan out everything past its deadline"""
    market = get_gateway(db)
    result = DeadlineSweep(market).run()

    if as_json:
        echo_json(result.to_dict())
    else:
        typer.echo(result.summary())
    if result.has_errors():
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
