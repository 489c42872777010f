"""
Prometheus metrics for the marketplace core.
"""

from prometheus_client import Counter, Histogram, start_http_server

# ============================================================================
# Event Store Metrics
# ============================================================================

events_appended_total = Counter(
    "market_events_appended_total",
    "Total number of events appended to the event store",
    ["stream_type", "event_type"],
)

conflicts_total = Counter(
    "market_conflicts_total",
    "Total number of optimistic locking conflicts (lost updates prevented)",
    ["stream_type"],
)

# ============================================================================
# Command Processing Metrics
# ============================================================================

command_duration_seconds = Histogram(
    "market_command_duration_seconds",
    "Duration of command processing in seconds",
    ["command_type"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

commands_processed_total = Counter(
    "market_commands_processed_total",
    "Total number of commands processed",
    ["command_type", "status"],  # status: success, rejected, failure, replayed
)

# ============================================================================
# Marketplace Metrics
# ============================================================================

auction_bids_total = Counter(
    "market_auction_bids_total",
    "Total number of accepted auction bids",
)

order_bids_total = Counter(
    "market_order_bids_total",
    "Total number of supplier bids submitted on orders",
)

fanout_orders_created_total = Counter(
    "market_fanout_orders_created_total",
    "Orders created by auction/group-buy fan-out",
    ["source"],
)

fanout_failures_total = Counter(
    "market_fanout_failures_total",
    "Fan-out order creations that failed and await retry",
    ["source"],
)

reputation_adjustments_total = Counter(
    "market_reputation_adjustments_total",
    "Civil score adjustments recorded",
    ["reason"],
)

sweep_duration_seconds = Histogram(
    "market_sweep_duration_seconds",
    "Duration of deadline sweep runs in seconds",
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)


def start_metrics_server(port: int = 9090) -> None:
    """Start Prometheus metrics HTTP server."""
    start_http_server(port)
