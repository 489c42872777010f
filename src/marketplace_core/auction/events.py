"""
Auction Module Events
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from marketplace_core.auction.models import AuctionStatus


class AuctionCreated(BaseModel):
    auction_id: str
    supplier_id: str
    title: str
    description: str = ""
    starting_price: Decimal
    reserve_price: Decimal | None
    quantity: Decimal
    unit: str
    end_time: datetime
    created_at: datetime


class AuctionBidPlaced(BaseModel):
    """A new bid took the lead (the previous leader's flag is cleared)"""

    auction_id: str
    vendor_id: str
    amount: Decimal
    previous_price: Decimal
    submitted_at: datetime


class AuctionWinner(BaseModel):
    vendor_id: str
    winning_amount: Decimal
    confirmed_at: datetime


class AuctionClosed(BaseModel):
    """
    Bidding ended

    status is completed when the leading bid met the reserve, closed
    otherwise.
    """

    auction_id: str
    status: AuctionStatus
    winner: AuctionWinner | None = None
    reason: str
    closed_by: str | None
    closed_at: datetime


class AuctionOrderSpawned(BaseModel):
    """The winner's order exists (links auction -> order)"""

    auction_id: str
    order_id: str
    spawned_at: datetime


class AuctionCancelled(BaseModel):
    auction_id: str
    previous_status: AuctionStatus
    reason: str = ""
    cancelled_by: str | None
    cancelled_at: datetime
