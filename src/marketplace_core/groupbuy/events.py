"""
GroupBuy Module Events

Progress never appears in a payload: the projection recomputes it from the
participant list after every event.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class GroupBuyCreated(BaseModel):
    group_buy_id: str
    supplier_id: str
    title: str
    description: str = ""
    target_quantity: Decimal
    price_per_unit: Decimal
    unit: str
    min_participants: int
    deadline: datetime
    delivery_date: datetime | None = None
    created_at: datetime


class GroupBuyJoined(BaseModel):
    """
    A vendor committed quantity

    A vendor already in the list has the quantity merged into their entry;
    a vendor who had left is re-activated with the new quantity.
    """

    group_buy_id: str
    vendor_id: str
    quantity: Decimal
    merged: bool = False
    rejoined: bool = False
    joined_at: datetime


class GroupBuyLeft(BaseModel):
    group_buy_id: str
    vendor_id: str
    left_at: datetime


class ParticipantPaid(BaseModel):
    group_buy_id: str
    vendor_id: str
    paid_at: datetime


class ParticipantConfirmed(BaseModel):
    group_buy_id: str
    vendor_id: str
    confirmed_by: str | None
    confirmed_at: datetime


class GroupBuyClosed(BaseModel):
    """Target quantity reached"""

    group_buy_id: str
    current_quantity: Decimal
    closed_at: datetime


class GroupBuyCancelled(BaseModel):
    group_buy_id: str
    reason: str
    cancelled_by: str | None
    cancelled_at: datetime


class GroupBuyFulfilled(BaseModel):
    group_buy_id: str
    participant_ids: list[str]
    fulfilled_by: str | None
    fulfilled_at: datetime


class GroupBuyOrderSpawned(BaseModel):
    group_buy_id: str
    vendor_id: str
    order_id: str
    spawned_at: datetime
