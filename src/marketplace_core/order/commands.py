"""
Order Module Commands - Intentions to change order state

Field-level validation (positive quantities and prices, rating range) happens
here; state-dependent validation happens in the handlers.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, model_validator

from marketplace_core.order.models import OrderKind, OrderSource, OrderStatus


class GroupSpec(BaseModel):
    """Pool settings of a group order"""

    min_participants: int = Field(default=1, ge=1)
    max_participants: int = Field(..., ge=1)
    deadline: datetime

    @model_validator(mode="after")
    def _check_bounds(self) -> "GroupSpec":
        if self.max_participants < self.min_participants:
            raise ValueError("max_participants must be >= min_participants")
        return self


class CreateOrder(BaseModel):
    """
    Create a purchase request

    Group orders carry a GroupSpec; the creating vendor owns the order but is
    not enrolled as a participant.
    """

    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=2000)
    category: str = Field(default="general", max_length=100)
    unit: str = Field(default="unit", min_length=1, max_length=50)
    quantity: Decimal = Field(..., gt=0)
    estimated_price: Decimal | None = Field(default=None, gt=0)
    kind: OrderKind = OrderKind.INDIVIDUAL
    group: GroupSpec | None = None

    @model_validator(mode="after")
    def _check_group(self) -> "CreateOrder":
        if self.kind == OrderKind.GROUP and self.group is None:
            raise ValueError("Group orders need group settings")
        if self.kind == OrderKind.INDIVIDUAL and self.group is not None:
            raise ValueError("Individual orders cannot carry group settings")
        return self


class SpawnOrder(BaseModel):
    """
    Create an already-accepted order on behalf of an auction or group buy

    Never issued by the external layer - the engines fan out with it.
    """

    order_id: str
    vendor_id: str
    supplier_id: str
    title: str
    unit: str
    quantity: Decimal = Field(..., gt=0)
    final_price: Decimal = Field(..., gt=0)
    source: OrderSource
    source_id: str


class SubmitBid(BaseModel):
    """Supplier offers a price (replaces the supplier's earlier bid)"""

    order_id: str
    price: Decimal = Field(..., gt=0)
    message: str = Field(default="", max_length=1000)
    turnaround_minutes: int = Field(..., gt=0)


class AcceptBid(BaseModel):
    order_id: str
    supplier_id: str


class JoinGroup(BaseModel):
    order_id: str
    quantity: Decimal = Field(..., gt=0)


class AdvanceStatus(BaseModel):
    order_id: str
    new_status: OrderStatus
    note: str = Field(default="", max_length=1000)


class AddNote(BaseModel):
    order_id: str
    note: str = Field(..., min_length=1, max_length=2000)


class UpdateDeliveryTracking(BaseModel):
    order_id: str
    tracking: dict[str, Any] = Field(..., min_length=1)


class RecordOrderPayment(BaseModel):
    order_id: str


class LeaveFeedback(BaseModel):
    """Vendor rates the supplier, or supplier rates the vendor"""

    order_id: str
    rating: int
    comment: str = Field(default="", max_length=1000)


class ExpireOrder(BaseModel):
    order_id: str
