"""
Reputation - civil score, supplier rating and vendor trust score

Records are pure folds over reputation events; see ReputationLedger for the
operations that produce them.
"""

from marketplace_core.reputation.ledger import ReputationLedger, reputation_stream_id
from marketplace_core.reputation.models import (
    ScoreHistory,
    ScoreHistoryEntry,
    compute_trust_score,
    incremental_mean,
)
from marketplace_core.reputation.projections import ReputationRegistry

__all__ = [
    "ReputationLedger",
    "ReputationRegistry",
    "ScoreHistory",
    "ScoreHistoryEntry",
    "compute_trust_score",
    "incremental_mean",
    "reputation_stream_id",
]
