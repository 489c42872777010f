"""
Reputation Events

Each event is self-contained: it carries the resulting score or average, so
replaying the stream reproduces the record without consulting the policy.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class CivilScoreAdjusted(BaseModel):
    """Civil score changed by a completion, participation or cancellation"""

    party_id: str = Field(..., description="Party whose score changed")
    previous_score: int = Field(..., description="Score before the change")
    requested_delta: int = Field(..., description="Delta asked for by the caller")
    delta: int = Field(..., description="Delta actually applied after clamping")
    new_score: int = Field(..., description="Score after clamping")
    reason: str = Field(..., description="Human readable reason")
    source_id: str | None = Field(default=None, description="Order that caused it")
    adjusted_at: datetime = Field(..., description="When the change happened")


class OrderCommitmentRecorded(BaseModel):
    """Vendor committed to an order (bid accepted or order spawned)"""

    party_id: str
    order_id: str
    recorded_at: datetime


class OrderCompletionRecorded(BaseModel):
    """Vendor's order reached completed"""

    party_id: str
    order_id: str
    recorded_at: datetime


class PaymentRecorded(BaseModel):
    """Vendor paid for an order"""

    party_id: str
    order_id: str
    on_time: bool
    recorded_at: datetime


class SupplierRated(BaseModel):
    """Supplier received a 1-5 rating"""

    party_id: str
    rating: int
    new_average: Decimal
    new_count: int
    source_id: str | None = None
    rated_at: datetime


class CounterpartRated(BaseModel):
    """Vendor received a 1-5 rating from a supplier"""

    party_id: str
    rating: int
    new_average: Decimal
    new_count: int
    source_id: str | None = None
    rated_at: datetime
