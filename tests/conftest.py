"""
Pytest configuration and shared fixtures

Fun fact: The name "conftest" comes from pytest's configuration testing
framework. Files named conftest.py are automatically discovered and their
fixtures are available to all tests in the same directory and subdirectories!
"""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator

import pytest

from marketplace_core.auction.handlers import AuctionEngine
from marketplace_core.auction.projections import AuctionRegistry
from marketplace_core.gateway import Actor, MatchingGateway
from marketplace_core.groupbuy.handlers import GroupBuyEngine
from marketplace_core.groupbuy.projections import GroupBuyRegistry
from marketplace_core.kernel.event_store import SQLiteEventStore
from marketplace_core.kernel.policy import MarketPolicy
from marketplace_core.kernel.time import TestTimeProvider
from marketplace_core.order.handlers import OrderLifecycle
from marketplace_core.order.projections import OrderRegistry
from marketplace_core.reputation.ledger import ReputationLedger
from marketplace_core.reputation.projections import ReputationRegistry


@pytest.fixture
def temp_db() -> Iterator[Path]:
    """Provide a temporary database file that's cleaned up after test"""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    yield db_path

    # Cleanup (WAL mode leaves sidecar files)
    for suffix in ("", "-wal", "-shm"):
        path = Path(f"{db_path}{suffix}")
        if path.exists():
            path.unlink()


@pytest.fixture
def event_store(temp_db: Path) -> SQLiteEventStore:
    """Provide a fresh event store for each test"""
    return SQLiteEventStore(temp_db)


@pytest.fixture
def test_time() -> TestTimeProvider:
    """
    Provide a controllable time provider for deterministic tests

    Default time: 2025-01-15 12:00:00 UTC, a Wednesday - market day in a
    good many towns.
    """
    return TestTimeProvider(datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def now(test_time: TestTimeProvider) -> datetime:
    return test_time.now()


@pytest.fixture
def tomorrow(now: datetime) -> datetime:
    return now + timedelta(days=1)


@pytest.fixture
def policy() -> MarketPolicy:
    """Default market policy"""
    return MarketPolicy()


# =============================================================================
# Gateway Fixtures
# =============================================================================


@pytest.fixture
def market(temp_db: Path, policy: MarketPolicy, test_time: TestTimeProvider) -> MatchingGateway:
    """
    Provide a gateway on a fresh database with frozen time

    Operations called without `now` run at test_time.
    """
    return MatchingGateway(temp_db, policy=policy, time_provider=test_time)


@pytest.fixture
def ravi() -> Actor:
    """A vendor (street food stall)"""
    return Actor.of("vendor-ravi", "vendor")


@pytest.fixture
def meena() -> Actor:
    """A second vendor"""
    return Actor.of("vendor-meena", "vendor")


@pytest.fixture
def arjun() -> Actor:
    """A third vendor"""
    return Actor.of("vendor-arjun", "vendor")


@pytest.fixture
def farm() -> Actor:
    """A supplier (vegetable farm)"""
    return Actor.of("farm-7", "supplier")


@pytest.fixture
def mill() -> Actor:
    """A second supplier"""
    return Actor.of("mill-2", "supplier")


@pytest.fixture
def system() -> Actor:
    return Actor.system()


# =============================================================================
# Handler and Projection Fixtures
# =============================================================================


@pytest.fixture
def ledger(policy: MarketPolicy) -> ReputationLedger:
    return ReputationLedger(policy)


@pytest.fixture
def order_lifecycle(policy: MarketPolicy, ledger: ReputationLedger) -> OrderLifecycle:
    """
    Provide order handlers

    Handlers are stateless - they take projections as parameters.
    """
    return OrderLifecycle(policy, ledger)


@pytest.fixture
def auction_engine(policy: MarketPolicy) -> AuctionEngine:
    return AuctionEngine(policy)


@pytest.fixture
def group_buy_engine(policy: MarketPolicy) -> GroupBuyEngine:
    return GroupBuyEngine(policy)


@pytest.fixture
def order_registry() -> OrderRegistry:
    return OrderRegistry()


@pytest.fixture
def auction_registry() -> AuctionRegistry:
    return AuctionRegistry()


@pytest.fixture
def group_buy_registry() -> GroupBuyRegistry:
    return GroupBuyRegistry()


@pytest.fixture
def reputation_registry(policy: MarketPolicy) -> ReputationRegistry:
    return ReputationRegistry(policy)
