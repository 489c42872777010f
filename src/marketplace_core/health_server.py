"""
Health check HTTP server for liveness and readiness probes.

Endpoints:
    /health/live      process is up
    /health/ready     event store reachable
    /health/detailed  event and stream counts, plus marketplace figures when
                      a MatchingGateway is attached
"""

import sqlite3
from pathlib import Path
from typing import Any

from flask import Flask, jsonify

from marketplace_core import __version__
from marketplace_core.kernel.events import (
    AUCTION_STREAM,
    GROUP_BUY_STREAM,
    ORDER_STREAM,
    REPUTATION_STREAM,
)
from marketplace_core.kernel.logging import get_logger

logger = get_logger(__name__)

SERVICE_NAME = "marketplace-core"

app = Flask(__name__)

# Set by initialize_health_server()
_db_path: Path | None = None
_gateway: Any = None  # MatchingGateway, optional


def initialize_health_server(db_path: str | Path, gateway: Any = None) -> None:
    """
    Point the health endpoints at a database (and optionally a live gateway).

    Args:
        db_path: Path to SQLite event store
        gateway: Optional MatchingGateway for marketplace figures
    """
    global _db_path, _gateway
    _db_path = Path(db_path)
    _gateway = gateway
    logger.info("Health server initialized", db_path=str(_db_path))


def _not_ready(reason: str, **extra: Any) -> tuple[Any, int]:
    return jsonify({"status": "not_ready", "reason": reason, **extra}), 503


@app.route("/health/live", methods=["GET"])
def liveness() -> tuple[Any, int]:
    """Liveness probe - the process answers."""
    return jsonify({"status": "alive", "service": SERVICE_NAME}), 200


@app.route("/health/ready", methods=["GET"])
def readiness() -> tuple[Any, int]:
    """
    Readiness probe - the event store can be queried.

    Returns 200 when ready, 503 otherwise. Never creates the database.
    """
    if _db_path is None:
        logger.error("Readiness check failed: DB path not initialized")
        return _not_ready("database_path_not_initialized")

    if not _db_path.exists():
        logger.error("Readiness check failed: DB file does not exist", db_path=str(_db_path))
        return _not_ready("database_file_not_found", db_path=str(_db_path))

    try:
        conn = sqlite3.connect(str(_db_path), timeout=1.0)
        try:
            event_count = conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]
        finally:
            conn.close()
    except sqlite3.Error as e:
        logger.error("Readiness check failed: DB error", error=str(e))
        return _not_ready("database_error", error=str(e))

    logger.debug("Readiness check passed", event_count=event_count)
    return jsonify({"status": "ready", "database": "accessible", "event_count": event_count}), 200


@app.route("/health/detailed", methods=["GET"])
def detailed_health() -> tuple[Any, int]:
    """
    Detailed health - database figures and, with a gateway, open market activity.

    Returns 200 when healthy, 503 when degraded.
    """
    health_data: dict[str, Any] = {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": __version__,
    }

    if _db_path and _db_path.exists():
        try:
            conn = sqlite3.connect(str(_db_path), timeout=1.0)
            try:
                event_count = conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]
                streams = {
                    row[0]: row[1]
                    for row in conn.execute(
                        "SELECT stream_type, COUNT(DISTINCT stream_id) "
                        "FROM events GROUP BY stream_type"
                    )
                }
                page_count = conn.execute("PRAGMA page_count").fetchone()[0]
                page_size = conn.execute("PRAGMA page_size").fetchone()[0]
            finally:
                conn.close()

            health_data["database"] = {
                "status": "healthy",
                "path": str(_db_path),
                "event_count": event_count,
                "stream_count": sum(streams.values()),
                "streams": {
                    stream_type: streams.get(stream_type, 0)
                    for stream_type in (
                        ORDER_STREAM,
                        AUCTION_STREAM,
                        GROUP_BUY_STREAM,
                        REPUTATION_STREAM,
                    )
                },
                "size_mb": round(page_count * page_size / (1024 * 1024), 2),
            }
        except sqlite3.Error as e:
            logger.error("Database health check failed", error=str(e))
            health_data["database"] = {"status": "unhealthy", "error": str(e)}
            health_data["status"] = "degraded"
    else:
        health_data["database"] = {"status": "not_initialized"}
        health_data["status"] = "degraded"

    if _gateway is not None:
        health_data["market"] = {
            "orders": len(_gateway.order_registry.orders),
            "active_auctions": len(_gateway.list_active_auctions()),
            "active_group_buys": len(_gateway.list_active_group_buys()),
            "reputation_records": len(_gateway.reputation_registry.records),
        }

    status_code = 200 if health_data["status"] == "healthy" else 503
    return jsonify(health_data), status_code


def run_health_server(port: int = 8080, debug: bool = False) -> None:
    """
    Run the health check server.

    Args:
        port: Port to listen on (default: 8080)
        debug: Enable Flask debug mode (default: False)
    """
    logger.info("Starting health check server", port=port)
    app.run(host="0.0.0.0", port=port, debug=debug)
