"""
Auction Module Commands
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class CreateAuction(BaseModel):
    """
    Put a lot up for auction

    reserve_price is the floor a winning bid must reach; None means no floor.
    """

    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=2000)
    starting_price: Decimal = Field(..., gt=0)
    reserve_price: Decimal | None = Field(default=None, ge=0)
    quantity: Decimal = Field(..., gt=0)
    unit: str = Field(default="unit", min_length=1, max_length=50)
    end_time: datetime


class PlaceAuctionBid(BaseModel):
    auction_id: str
    amount: Decimal = Field(..., gt=0)


class CloseAuction(BaseModel):
    auction_id: str


class CancelAuction(BaseModel):
    auction_id: str
    reason: str = Field(default="", max_length=500)
