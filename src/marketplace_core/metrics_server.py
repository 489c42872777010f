"""
Observability process for a marketplace deployment.

Serves the market_* Prometheus metrics and, when given a database, the
health endpoints next to them:

    market-metrics --port 9090
    market-metrics --port 9090 --db market.db --health-port 8080
"""

import argparse
import os
import threading

from marketplace_core.health_server import initialize_health_server, run_health_server
from marketplace_core.kernel.logging import configure_logging, get_logger, is_production
from marketplace_core.kernel.metrics import start_metrics_server

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Marketplace Core metrics and health")
    parser.add_argument("--port", type=int, default=9090, help="Metrics port (default: 9090)")
    parser.add_argument(
        "--db",
        default=os.getenv("MARKET_DB"),
        help="Event store to report health for (default: $MARKET_DB)",
    )
    parser.add_argument(
        "--health-port", type=int, default=8080, help="Health port when --db is set"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        default=is_production(),
        help="JSON log lines (default in production)",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging(json_output=args.json_logs, log_level=args.log_level)

    start_metrics_server(port=args.port)
    logger.info("Metrics endpoint up", endpoint=f"http://0.0.0.0:{args.port}/metrics")

    if args.db:
        initialize_health_server(args.db)
        run_health_server(port=args.health_port)
        return

    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        logger.info("Shutting down metrics server")


if __name__ == "__main__":
    main()
