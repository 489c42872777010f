"""
Order Module Events - facts about an order

Status history is not stored as its own event: the projection derives each
history entry from the event that changed the status.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from marketplace_core.order.models import OrderKind, OrderSource, OrderStatus


class GroupSettings(BaseModel):
    min_participants: int
    max_participants: int
    deadline: datetime


class OrderCreated(BaseModel):
    """
    A new order exists

    Direct orders start pending with no supplier. Spawned orders start
    accepted, with their supplier and final price already settled.
    """

    order_id: str
    vendor_id: str
    supplier_id: str | None = None
    kind: OrderKind
    source: OrderSource
    source_id: str | None = None
    title: str
    description: str = ""
    category: str = "general"
    unit: str
    quantity: Decimal
    estimated_price: Decimal | None = None
    final_price: Decimal | None = None
    status: OrderStatus
    group: GroupSettings | None = None
    payment_due_at: datetime | None = None
    created_at: datetime
    created_by: str | None


class BiddingOpened(BaseModel):
    """First bid moved the order from pending to bidding"""

    order_id: str
    opened_by: str
    opened_at: datetime


class BidSubmitted(BaseModel):
    order_id: str
    supplier_id: str
    price: Decimal
    message: str
    turnaround_minutes: int
    replaced_previous: bool = False
    submitted_at: datetime


class BidAccepted(BaseModel):
    order_id: str
    supplier_id: str
    final_price: Decimal
    payment_due_at: datetime
    accepted_by: str
    accepted_at: datetime


class GroupJoined(BaseModel):
    order_id: str
    vendor_id: str
    quantity: Decimal
    joined_at: datetime


class OrderStatusChanged(BaseModel):
    order_id: str
    from_status: OrderStatus
    to_status: OrderStatus
    role: str
    note: str = ""
    changed_by: str | None
    changed_at: datetime


class OrderNoteAdded(BaseModel):
    order_id: str
    note: str
    added_by: str
    added_at: datetime


class DeliveryTrackingUpdated(BaseModel):
    order_id: str
    tracking: dict[str, Any] = Field(default_factory=dict)
    updated_by: str
    updated_at: datetime


class OrderPaymentRecorded(BaseModel):
    order_id: str
    due_at: datetime | None
    on_time: bool
    paid_by: str
    paid_at: datetime


class OrderFeedbackLeft(BaseModel):
    """One side rated the other"""

    order_id: str
    rated_party_id: str
    rated_role: str  # "supplier" (rated by vendor) or "vendor" (rated by supplier)
    rating: int
    comment: str = ""
    rated_by: str
    rated_at: datetime
