"""
Event model for the marketplace event log

Every change to an Order, Auction, GroupBuy or reputation record is recorded
as an immutable event. Current state is whatever the events fold into - the
log is the audit trail and the source of truth at the same time.
"""

from datetime import datetime

from pydantic import BaseModel, Field

# Stream types (one stream per aggregate instance)
ORDER_STREAM = "order"
AUCTION_STREAM = "auction"
GROUP_BUY_STREAM = "group_buy"
REPUTATION_STREAM = "reputation"


class Event(BaseModel):
    """
    Base event - a fact about one aggregate

    The (stream_id, version) pair is the optimistic lock: an event can only
    be appended on top of the version it was decided against. command_id is
    the idempotency key of the operation that produced the event.
    """

    event_id: str = Field(..., description="Unique event identifier (time ordered)")
    stream_id: str = Field(..., description="Aggregate identifier")
    stream_type: str = Field(
        ..., description="Aggregate type: 'order', 'auction', 'group_buy', 'reputation'"
    )
    event_type: str = Field(
        ..., description="Specific event type: 'BidSubmitted', 'AuctionClosed', etc."
    )
    occurred_at: datetime = Field(..., description="Caller supplied time of the change")
    actor_id: str | None = Field(
        default=None,
        description="Party that caused the event (None for system/sweep events)",
    )
    command_id: str = Field(..., description="Idempotency key of the causing command")
    payload: dict = Field(
        default_factory=dict, description="Event data (JSON-serializable)"
    )
    version: int = Field(..., ge=1, description="Stream version after this event")

    model_config = {
        "frozen": True,
        "json_schema_extra": {
            "examples": [
                {
                    "event_id": "01908e9a-3b87-7000-8000-123456789abc",
                    "stream_id": "0190a1b2-0000-7000-8000-000000000001",
                    "stream_type": "auction",
                    "event_type": "AuctionBidPlaced",
                    "occurred_at": "2025-01-15T10:30:00Z",
                    "actor_id": "vendor-ravi",
                    "command_id": "cmd-123",
                    "payload": {"vendor_id": "vendor-ravi", "amount": "42.00"},
                    "version": 3,
                }
            ]
        },
    }


def create_event(
    *,
    event_id: str,
    stream_id: str,
    stream_type: str,
    event_type: str,
    occurred_at: datetime,
    command_id: str,
    version: int,
    actor_id: str | None = None,
    payload: dict | None = None,
) -> Event:
    """Build an event from named parts"""
    return Event(
        event_id=event_id,
        stream_id=stream_id,
        stream_type=stream_type,
        event_type=event_type,
        occurred_at=occurred_at,
        actor_id=actor_id,
        command_id=command_id,
        payload=payload or {},
        version=version,
    )
