"""
Auction Domain Models

A supplier puts surplus or flash-sale stock up for a short, time-boxed bid
race. The highest bid standing at close wins if it meets the reserve.

    active -> closed -> completed   (winner found)
    active -> closed                (no qualifying winner)
    active/closed -> cancelled

Fun fact: Roman auctions were announced by planting a spear in the ground -
"sub hasta" - which is why Italian auctions were long called "subasta".
"""

from enum import Enum


class AuctionStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"  # Ended without a qualifying winner
    COMPLETED = "completed"  # Ended with a winner
    CANCELLED = "cancelled"


ENDED_STATUSES = frozenset({AuctionStatus.CLOSED, AuctionStatus.COMPLETED})
