"""
Auction - supplier flash sales decided by a time-boxed bid race
"""

from marketplace_core.auction.handlers import AuctionEngine, auction_order_id, winning_bid
from marketplace_core.auction.models import AuctionStatus
from marketplace_core.auction.projections import AuctionRegistry

__all__ = [
    "AuctionEngine",
    "AuctionRegistry",
    "AuctionStatus",
    "auction_order_id",
    "winning_bid",
]
