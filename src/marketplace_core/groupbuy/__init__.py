"""
GroupBuy - supplier-run pooled purchases that fan out into orders
"""

from marketplace_core.groupbuy.handlers import FanOutResult, GroupBuyEngine, group_buy_order_id
from marketplace_core.groupbuy.models import GroupBuyStatus, ParticipantStatus, compute_progress
from marketplace_core.groupbuy.projections import GroupBuyRegistry

__all__ = [
    "FanOutResult",
    "GroupBuyEngine",
    "GroupBuyRegistry",
    "GroupBuyStatus",
    "ParticipantStatus",
    "compute_progress",
    "group_buy_order_id",
]
