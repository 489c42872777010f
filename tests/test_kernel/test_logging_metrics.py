"""
Test infrastructure components: logging, metrics and SQLite lock retries.
"""

import sqlite3
from datetime import datetime, timezone

import pytest
from prometheus_client import REGISTRY

from marketplace_core.gateway import Actor, MatchingGateway
from marketplace_core.kernel.errors import Conflict, NotFound
from marketplace_core.kernel.event_store import SQLiteEventStore
from marketplace_core.kernel.events import Event
from marketplace_core.kernel.logging import (
    LogOperation,
    configure_logging,
    get_correlation_id,
    get_logger,
    redact_context,
    set_correlation_id,
)
from marketplace_core.kernel.retry import is_writer_contention, retry_on_sqlite_lock
from marketplace_core.metrics_server import build_parser


def sample(name: str, labels: dict[str, str] | None = None) -> float:
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


class TestLoggingFramework:
    """Test structured logging framework."""

    def test_configure_logging_console(self) -> None:
        configure_logging(json_output=False, log_level="INFO")
        assert get_logger(__name__) is not None

    def test_configure_logging_json(self) -> None:
        configure_logging(json_output=True, log_level="DEBUG")
        assert get_logger(__name__) is not None

    def test_correlation_id(self) -> None:
        assert get_correlation_id()

        set_correlation_id("sweep-42")
        assert get_correlation_id() == "sweep-42"

    def test_redact_context(self) -> None:
        redacted = redact_context(
            {"vendor_id": "vendor-ravi", "amount": "35", "operation": "place_bid"}
        )
        assert redacted == {
            "vendor_id": "***REDACTED***",
            "amount": "***REDACTED***",
            "operation": "place_bid",
        }

    def test_log_operation_passes_exceptions_through(self) -> None:
        configure_logging(json_output=False, log_level="INFO")
        logger = get_logger(__name__)

        with LogOperation(logger, "quiet_operation", order_id="o-1"):
            pass
        with pytest.raises(NotFound):
            with LogOperation(logger, "rejected_operation"):
                raise NotFound("Order", "o-1")
        with pytest.raises(ValueError):
            with LogOperation(logger, "failing_operation"):
                raise ValueError("Test error")


class TestRetry:
    """Only SQLite lock errors are retried."""

    def test_retries_operational_error(self) -> None:
        calls = []

        @retry_on_sqlite_lock(max_attempts=3, min_wait_ms=1, max_wait_ms=1)
        def flaky() -> str:
            calls.append(1)
            if len(calls) < 3:
                raise sqlite3.OperationalError("database is locked")
            return "ok"

        assert flaky() == "ok"
        assert len(calls) == 3

    def test_gives_up_after_max_attempts(self) -> None:
        calls = []

        @retry_on_sqlite_lock(max_attempts=2, min_wait_ms=1, max_wait_ms=1)
        def locked() -> None:
            calls.append(1)
            raise sqlite3.OperationalError("database is locked")

        with pytest.raises(sqlite3.OperationalError):
            locked()
        assert len(calls) == 2

    def test_only_contention_counts(self) -> None:
        assert is_writer_contention(sqlite3.OperationalError("database is locked"))
        assert is_writer_contention(sqlite3.OperationalError("database is busy"))
        assert not is_writer_contention(sqlite3.OperationalError("no such table: events"))
        assert not is_writer_contention(Conflict("o-1", 1, 2))

    def test_conflicts_are_not_retried(self) -> None:
        calls = []

        @retry_on_sqlite_lock(min_wait_ms=1, max_wait_ms=1)
        def conflicting() -> None:
            calls.append(1)
            raise Conflict("o-1", 1, 2)

        with pytest.raises(Conflict):
            conflicting()
        assert len(calls) == 1


class TestMetrics:
    """Counters move when the core does work."""

    def test_event_store_counts_appends_and_conflicts(self, event_store: SQLiteEventStore) -> None:
        labels = {"stream_type": "order", "event_type": "MetricsProbe"}
        appended_before = sample("market_events_appended_total", labels)
        conflicts_before = sample("market_conflicts_total", {"stream_type": "order"})

        event = Event(
            event_id="evt-metrics-1",
            stream_id="order-metrics",
            stream_type="order",
            version=1,
            command_id="cmd-metrics-1",
            event_type="MetricsProbe",
            occurred_at=datetime.now(timezone.utc),
            actor_id="vendor-ravi",
            payload={},
        )
        event_store.append("order-metrics", 0, [event])
        stale = event.model_copy(update={"event_id": "evt-metrics-2", "command_id": "cmd-metrics-2"})
        with pytest.raises(Conflict):
            event_store.append("order-metrics", 0, [stale])

        assert sample("market_events_appended_total", labels) == appended_before + 1
        assert sample("market_conflicts_total", {"stream_type": "order"}) == conflicts_before + 1

    def test_commands_counted_by_outcome(self, market: MatchingGateway, ravi: Actor, farm: Actor) -> None:
        success = {"command_type": "create_order", "status": "success"}
        replayed = {"command_type": "create_order", "status": "replayed"}
        rejected = {"command_type": "submit_bid", "status": "rejected"}
        before = {
            "success": sample("market_commands_processed_total", success),
            "replayed": sample("market_commands_processed_total", replayed),
            "rejected": sample("market_commands_processed_total", rejected),
        }

        market.create_order(ravi, "Rice", 10, command_id="cmd-metrics-order")
        market.create_order(ravi, "Rice", 10, command_id="cmd-metrics-order")
        with pytest.raises(NotFound):
            market.submit_bid(farm, "missing", 100, 60)

        assert sample("market_commands_processed_total", success) == before["success"] + 1
        assert sample("market_commands_processed_total", replayed) == before["replayed"] + 1
        assert sample("market_commands_processed_total", rejected) == before["rejected"] + 1


class TestMetricsServerArguments:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("MARKET_DB", raising=False)
        args = build_parser().parse_args([])
        assert args.port == 9090
        assert args.db is None

    def test_health_alongside_metrics(self) -> None:
        args = build_parser().parse_args(["--db", "market.db", "--health-port", "8081"])
        assert args.db == "market.db"
        assert args.health_port == 8081
