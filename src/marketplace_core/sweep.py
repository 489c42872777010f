"""
DeadlineSweep - Periodic deadline enforcement

Nothing in the core fires on a timer: deadlines are only checked when an
operation runs. The sweep is that operation for aggregates nobody touches -
it is meant to be called periodically (e.g., every minute) by a scheduler.

Each pass:
1. Closes active auctions past end_time (spawning the winner's order)
2. Expires active group buys past their deadline with the target unmet
3. Expires pending/bidding group orders past their deadline
4. Re-attempts fan-out orders missing from earlier passes

Fun fact: Medieval fairs were opened and closed by ringing a bell - trade
after the bell was void. The sweep is our bell-ringer.
"""

import sqlite3
import time
from datetime import datetime
from typing import Any

from marketplace_core.gateway import Actor, MatchingGateway
from marketplace_core.kernel.errors import MarketError
from marketplace_core.kernel.ids import generate_id
from marketplace_core.kernel.logging import LogOperation, get_logger
from marketplace_core.kernel.metrics import sweep_duration_seconds
from marketplace_core.kernel.time import parse_datetime

logger = get_logger(__name__)


class SweepResult:
    """
    Result of one sweep pass

    Lists the aggregates each step touched, and every aggregate that failed
    (id -> error message).
    """

    def __init__(self, sweep_id: str, swept_at: datetime) -> None:
        self.sweep_id = sweep_id
        self.swept_at = swept_at
        self.closed_auctions: list[str] = []
        self.expired_group_buys: list[str] = []
        self.expired_orders: list[str] = []
        self.fanout_orders_created: list[str] = []
        self.errors: dict[str, str] = {}

    def has_errors(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sweep_id": self.sweep_id,
            "swept_at": self.swept_at.isoformat(),
            "closed_auctions": list(self.closed_auctions),
            "expired_group_buys": list(self.expired_group_buys),
            "expired_orders": list(self.expired_orders),
            "fanout_orders_created": list(self.fanout_orders_created),
            "errors": dict(self.errors),
        }

    def summary(self) -> str:
        """Human-readable summary of the sweep"""
        parts = [
            f"Sweep {self.sweep_id} at {self.swept_at.isoformat()}",
            f"Auctions closed: {len(self.closed_auctions)}",
            f"Group buys expired: {len(self.expired_group_buys)}",
            f"Orders expired: {len(self.expired_orders)}",
        ]
        if self.fanout_orders_created:
            parts.append(f"Fan-out orders created: {len(self.fanout_orders_created)}")
        if self.errors:
            parts.append(f"Errors: {len(self.errors)}")
        return " | ".join(parts)


class DeadlineSweep:
    """Applies stored deadlines against a caller supplied `now`"""

    def __init__(self, gateway: MatchingGateway) -> None:
        self.gateway = gateway
        self.actor = Actor.system()

    def run(self, now: datetime | str | None = None) -> SweepResult:
        """
        Execute a single sweep pass

        One aggregate failing is logged and recorded; the sweep moves on.
        """
        now = parse_datetime(now) or self.gateway.time_provider.now()
        result = SweepResult(generate_id(), now)
        start = time.perf_counter()

        with LogOperation(logger, "deadline_sweep", sweep_id=result.sweep_id):
            for auction in self.gateway.list_due_auctions(now):
                auction_id = auction["auction_id"]
                if self._attempt(result, auction_id, self.gateway.close_auction, auction_id):
                    result.closed_auctions.append(auction_id)

            for group_buy in self.gateway.list_due_group_buys(now):
                group_buy_id = group_buy["group_buy_id"]
                updated = self._attempt(
                    result, group_buy_id, self.gateway.expire_group_buy, group_buy_id
                )
                if updated and updated["status"] == "cancelled":
                    result.expired_group_buys.append(group_buy_id)

            for order in self.gateway.list_expirable_orders():
                if now <= parse_datetime(order["group"]["deadline"]):
                    continue
                order_id = order["order_id"]
                if self._attempt(result, order_id, self.gateway.expire_order, order_id):
                    result.expired_orders.append(order_id)

            try:
                for fanout in self.gateway.retry_fan_out(now):
                    result.fanout_orders_created.extend(fanout.created)
                    for vendor_id, error in fanout.failed.items():
                        result.errors[f"{fanout.group_buy_id}/{vendor_id}"] = error
            except (MarketError, sqlite3.Error) as e:
                logger.error("Fan-out retry failed", error_type=type(e).__name__, error=str(e))
                result.errors["fan_out"] = str(e)

        sweep_duration_seconds.observe(time.perf_counter() - start)
        logger.info(
            "Sweep finished",
            sweep_id=result.sweep_id,
            closed_auctions=len(result.closed_auctions),
            expired_group_buys=len(result.expired_group_buys),
            expired_orders=len(result.expired_orders),
            errors=len(result.errors),
        )
        return result

    def _attempt(self, result: SweepResult, aggregate_id: str, operation, *args) -> Any:
        try:
            return operation(self.actor, *args, now=result.swept_at)
        except (MarketError, sqlite3.Error) as e:
            logger.error(
                "Sweep step failed",
                aggregate_id=aggregate_id,
                operation=operation.__name__,
                error_type=type(e).__name__,
                error=str(e),
            )
            result.errors[aggregate_id] = str(e)
            return None
