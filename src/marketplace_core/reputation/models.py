"""
Reputation Domain Models

Civil score with a bounded history, incremental supplier rating, and the
vendor trust score composite.

Fun fact: Medieval merchant guilds kept "black books" of traders who failed
to pay - reputation ledgers predate credit bureaus by six centuries!
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from pydantic import BaseModel, Field

from marketplace_core.kernel.policy import MarketPolicy


class ScoreHistoryEntry(BaseModel):
    """One civil score change"""

    score: int = Field(..., description="Civil score after the change")
    delta: int = Field(..., description="Applied change (after clamping)")
    reason: str = Field(..., description="Why the score changed")
    timestamp: datetime = Field(..., description="When the change happened")

    model_config = {"frozen": True}


class ScoreHistory:
    """
    Bounded ring buffer of score changes

    Fixed-capacity slot array plus a write cursor. Once full, each append
    overwrites the oldest slot - O(1) eviction, evicted entries are gone.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("History capacity must be at least 1")
        self._slots: list[ScoreHistoryEntry | None] = [None] * capacity
        self._cursor = 0
        self._size = 0

    @property
    def capacity(self) -> int:
        return len(self._slots)

    def append(self, entry: ScoreHistoryEntry) -> None:
        self._slots[self._cursor] = entry
        self._cursor = (self._cursor + 1) % self.capacity
        if self._size < self.capacity:
            self._size += 1

    def entries(self) -> list[ScoreHistoryEntry]:
        """Entries oldest first"""
        if self._size < self.capacity:
            return [e for e in self._slots[: self._size] if e is not None]
        ordered = self._slots[self._cursor :] + self._slots[: self._cursor]
        return [e for e in ordered if e is not None]

    def latest(self) -> ScoreHistoryEntry | None:
        if self._size == 0:
            return None
        return self._slots[(self._cursor - 1) % self.capacity]

    def __len__(self) -> int:
        return self._size

    def __iter__(self):
        return iter(self.entries())

    def to_list(self) -> list[dict[str, Any]]:
        return [entry.model_dump(mode="json") for entry in self.entries()]


def incremental_mean(average: Decimal, count: int, value: Decimal | int) -> tuple[Decimal, int]:
    """
    Fold one more observation into a running (average, count) pair

    average' = (average * count + value) / (count + 1)

    The result keeps full Decimal precision; only display_average rounds.
    """
    value = Decimal(value)
    new_count = count + 1
    return (average * count + value) / new_count, new_count


def display_average(average: Decimal) -> Decimal:
    """Average rounded to 4 places for presentation"""
    return average.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)


def ratio_or_neutral(numerator: int, denominator: int, neutral: float) -> float:
    """numerator/denominator, or the neutral midpoint when nothing was observed"""
    if denominator <= 0:
        return neutral
    return numerator / denominator


def compute_trust_score(record: dict[str, Any], policy: MarketPolicy) -> float:
    """
    Vendor trust score in [0, 100]

    score = 40 * on_time_ratio + 35 * completion_ratio + 25 * (avg_rating / 5)

    Each sub-metric falls back to the neutral midpoint while its denominator
    is zero, so a first-time vendor scores exactly 50.
    """
    neutral = policy.trust_neutral_ratio

    on_time_ratio = ratio_or_neutral(
        record["on_time_payments"], record["total_payments"], neutral
    )
    completion_ratio = ratio_or_neutral(
        record["completed_orders"], record["committed_orders"], neutral
    )
    completion_ratio = min(completion_ratio, 1.0)

    rating = record["counterpart_rating"]
    if rating["count"] > 0:
        rating_ratio = float(rating["average"]) / policy.rating_max
    else:
        rating_ratio = neutral

    score = (
        policy.trust_weight_payment * on_time_ratio
        + policy.trust_weight_completion * completion_ratio
        + policy.trust_weight_rating * rating_ratio
    )
    return round(max(0.0, min(policy.trust_score_max, score)), 2)


def new_reputation_record(
    party_id: str, policy: MarketPolicy, created_at: str
) -> dict[str, Any]:
    """Fresh record for a party seen for the first time"""
    record = {
        "party_id": party_id,
        "civil_score": policy.civil_score_initial,
        "history": ScoreHistory(policy.score_history_capacity),
        "supplier_rating": {"average": Decimal("0"), "count": 0},
        "counterpart_rating": {"average": Decimal("0"), "count": 0},
        "on_time_payments": 0,
        "total_payments": 0,
        "completed_orders": 0,
        "committed_orders": 0,
        "trust_score": 0.0,
        "created_at": created_at,
        "updated_at": created_at,
        "version": 0,
    }
    record["trust_score"] = compute_trust_score(record, policy)
    return record
