"""
GroupBuy Module Commands
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class CreateGroupBuy(BaseModel):
    """
    Open a pooled purchase campaign

    min_participants is informational: the campaign closes on quantity alone.
    """

    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=2000)
    target_quantity: Decimal = Field(..., gt=0)
    price_per_unit: Decimal = Field(..., gt=0)
    unit: str = Field(default="unit", min_length=1, max_length=50)
    min_participants: int = Field(default=1, ge=1)
    deadline: datetime
    delivery_date: datetime | None = None


class JoinGroupBuy(BaseModel):
    group_buy_id: str
    quantity: Decimal = Field(..., gt=0)


class LeaveGroupBuy(BaseModel):
    group_buy_id: str


class RecordParticipantPayment(BaseModel):
    group_buy_id: str


class ConfirmParticipant(BaseModel):
    group_buy_id: str
    vendor_id: str


class CancelGroupBuy(BaseModel):
    group_buy_id: str
    reason: str = Field(default="", max_length=500)


class ExpireGroupBuy(BaseModel):
    group_buy_id: str


class CompleteGroupBuy(BaseModel):
    group_buy_id: str
