"""
Custom exceptions for the marketplace core

Every rejection the core can produce is a typed, synchronous error. The
external API layer maps these to transport responses; nothing in the core
retries a domain error on the caller's behalf.

Fun fact: Street markets have had dispute rules for millennia - the agoranomoi
of ancient Athens were magistrates who policed weights, measures and prices
in the marketplace. These classes are our agoranomoi.
"""


class MarketError(Exception):
    """Base exception for all marketplace core errors"""

    pass


class EventStoreError(MarketError):
    """Base class for event store errors"""

    pass


class CommandIdempotencyViolation(EventStoreError):
    """
    Raised when a command_id was already used for a different stream

    A replay of the same command against the same stream is not an error -
    the store returns the originally appended events instead.
    """

    def __init__(self, command_id: str, message: str = "") -> None:
        self.command_id = command_id
        super().__init__(
            message or f"Command {command_id} already processed (idempotency preserved)"
        )


class StreamVersionConflict(EventStoreError):
    """
    Raised when stream version doesn't match expected (optimistic locking)

    Indicates concurrent modification - caller should reload and retry.
    """

    def __init__(
        self, stream_id: str, expected_version: int, actual_version: int
    ) -> None:
        self.stream_id = stream_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Stream {stream_id} version mismatch: "
            f"expected {expected_version}, got {actual_version}"
        )


class Conflict(StreamVersionConflict):
    """
    Lost update on an aggregate

    Another writer changed the aggregate between our read and our write.
    Concurrent state is never overwritten; re-read and retry.
    """

    pass


class InvariantViolation(MarketError):
    """Raised when a stored aggregate fails a structural consistency check"""

    pass


class NotFound(MarketError):
    """Raised when an aggregate id is unknown"""

    def __init__(self, aggregate_type: str, aggregate_id: str) -> None:
        self.aggregate_type = aggregate_type
        self.aggregate_id = aggregate_id
        super().__init__(f"{aggregate_type} {aggregate_id} not found")


class NotAuthorized(MarketError):
    """Raised when the actor lacks the role or ownership for an operation"""

    def __init__(self, actor_id: str | None, operation: str, reason: str = "") -> None:
        self.actor_id = actor_id
        self.operation = operation
        self.reason = reason
        message = f"Actor {actor_id} is not authorized to {operation}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class ValidationError(MarketError):
    """Raised for malformed input: quantity, price, role, rating"""

    pass


class InvalidTransition(MarketError):
    """Raised when the state machine rejects an edge"""

    def __init__(
        self,
        aggregate_id: str,
        current: str,
        attempted: str,
        role: str | None = None,
    ) -> None:
        self.aggregate_id = aggregate_id
        self.current = current
        self.attempted = attempted
        self.role = role
        by = f" by {role}" if role else ""
        super().__init__(
            f"Invalid transition for {aggregate_id}{by}: {current} -> {attempted}"
        )


class GroupBuyNotActive(InvalidTransition):
    """Raised when a group buy participant operation hits a non-active campaign"""

    def __init__(self, group_buy_id: str, current: str, attempted: str) -> None:
        super().__init__(group_buy_id, current, attempted)


# Order errors


class BiddingClosed(MarketError):
    """Raised when a bid arrives after the order left the bidding phase"""

    def __init__(self, order_id: str, status: str) -> None:
        self.order_id = order_id
        self.status = status
        super().__init__(f"Order {order_id} is {status} - bidding is closed")


class DeadlinePassed(MarketError):
    """Raised when an operation is attempted after a stored deadline"""

    def __init__(self, aggregate_id: str, deadline: str) -> None:
        self.aggregate_id = aggregate_id
        self.deadline = deadline
        super().__init__(f"Deadline {deadline} for {aggregate_id} has passed")


class GroupFull(MarketError):
    """Raised when an order's group already holds max_participants vendors"""

    def __init__(self, order_id: str, max_participants: int) -> None:
        self.order_id = order_id
        self.max_participants = max_participants
        super().__init__(
            f"Group order {order_id} is full ({max_participants} participants)"
        )


class DuplicateParticipant(MarketError):
    """Raised when a vendor joins an order group it already belongs to"""

    def __init__(self, order_id: str, vendor_id: str) -> None:
        self.order_id = order_id
        self.vendor_id = vendor_id
        super().__init__(f"Vendor {vendor_id} already participates in order {order_id}")


# Auction errors


class AuctionEnded(MarketError):
    """Raised when bidding on an auction that is not active or past end_time"""

    def __init__(self, auction_id: str, status: str) -> None:
        self.auction_id = auction_id
        self.status = status
        super().__init__(f"Auction {auction_id} has ended (status: {status})")


class BidTooLow(MarketError):
    """Raised when an auction bid does not exceed the current price"""

    def __init__(self, auction_id: str, amount: str, current_price: str) -> None:
        self.auction_id = auction_id
        self.amount = amount
        self.current_price = current_price
        super().__init__(
            f"Bid {amount} on auction {auction_id} must exceed current price {current_price}"
        )


# Group buy errors


class PaymentAlreadyConfirmed(MarketError):
    """Raised when a participant tries to leave after paying"""

    def __init__(self, group_buy_id: str, vendor_id: str, status: str) -> None:
        self.group_buy_id = group_buy_id
        self.vendor_id = vendor_id
        self.status = status
        super().__init__(
            f"Vendor {vendor_id} cannot leave group buy {group_buy_id} "
            f"after payment ({status})"
        )
