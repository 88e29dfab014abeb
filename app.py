#!/usr/bin/env python3
"""
Market Data Ingestion Pipeline - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
Starts the feed, the enabled delivery paths and the store,
and runs until SIGINT/SIGTERM.

============================================================
USAGE
============================================================
Direct execution:
    python app.py

Durable log path only:
    python app.py --no-event-bus --durable-log

Environment-based configuration (.env is loaded):
    DATABASE_URL=postgresql://... MARKET_DATA_SYMBOLS=BTC-USD,ETH-USD python app.py

============================================================
"""

import argparse
import asyncio
import dataclasses
import logging
import signal
import sys
from dataclasses import dataclass
from typing import List, Optional

from core.clock import SystemClock
from core.config import PipelineConfig
from core.exceptions import ConfigurationError
from data_ingestion.collectors.coinbase_feed import CoinbaseFeed
from data_ingestion.dispatcher import MessageDispatcher
from data_ingestion.ingestion_service import MarketDataStreamingService
from messaging.event_bus import EventBus
from messaging.log_consumer import MarketDataLogConsumer
from messaging.log_producer import MarketDataLogProducer
from monitoring.metrics import PipelineMetrics
from storage.database import Database, DatabaseError
from storage.market_data_writer import MarketDataWriter


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


# ============================================================
# CLI
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="market-data-pipeline",
        description="Real-time exchange ticker ingestion into a time-indexed store",
    )
    parser.add_argument(
        "--env-file",
        type=str,
        default=None,
        help="Path to a .env file (default: ./.env if present)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Override LOG_LEVEL",
    )
    parser.add_argument(
        "--symbols",
        type=str,
        default=None,
        metavar="BTC-USD,ETH-USD",
        help="Override MARKET_DATA_SYMBOLS",
    )
    parser.add_argument(
        "--no-event-bus",
        action="store_true",
        help="Disable the in-process event bus path",
    )
    parser.add_argument(
        "--durable-log",
        action="store_true",
        help="Enable the durable log (Kafka) path",
    )
    parser.add_argument(
        "--check-db",
        action="store_true",
        help="Verify the database connection and exit",
    )
    return parser


def build_config(args: argparse.Namespace) -> PipelineConfig:
    """Environment configuration with CLI overrides applied."""
    config = PipelineConfig.from_env(args.env_file)

    overrides = {}
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.no_event_bus:
        overrides["event_bus_enabled"] = False
    if args.durable_log:
        overrides["durable_log_enabled"] = True
    if args.symbols:
        symbols = tuple(s.strip() for s in args.symbols.split(",") if s.strip())
        overrides["feed"] = dataclasses.replace(config.feed, symbols=symbols)

    if overrides:
        config = dataclasses.replace(config, **overrides)
    return config.require_valid()


# ============================================================
# WIRING
# ============================================================

@dataclass
class Pipeline:
    """Every long-lived component of a running process."""
    database: Database
    metrics: PipelineMetrics
    service: MarketDataStreamingService


def build_pipeline(config: PipelineConfig) -> Pipeline:
    clock = SystemClock()
    metrics = PipelineMetrics()

    database = Database(config.database)
    writer = MarketDataWriter(database, clock=clock)
    dispatcher = MessageDispatcher(writer, exchange=config.feed.exchange_name, clock=clock)
    feed = CoinbaseFeed(config.feed, clock=clock, metrics=metrics)

    event_bus = EventBus(metrics) if config.event_bus_enabled else None

    log_producer = None
    log_consumer = None
    if config.durable_log_enabled:
        log_producer = MarketDataLogProducer(config.kafka, clock=clock, metrics=metrics)
        log_consumer = MarketDataLogConsumer(dispatcher, config.kafka, metrics=metrics)

    service = MarketDataStreamingService(
        feed,
        dispatcher,
        config,
        metrics=metrics,
        event_bus=event_bus,
        log_producer=log_producer,
        log_consumer=log_consumer,
    )
    return Pipeline(database=database, metrics=metrics, service=service)


# ============================================================
# MAIN FUNCTION
# ============================================================

def _install_signal_handlers(stop: asyncio.Event) -> None:
    if sys.platform == "win32":
        return
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop.set)


async def run_application(config: PipelineConfig) -> int:
    """
    Run the pipeline until a stop signal.

    Returns:
        Exit code
    """
    logger = logging.getLogger("app")
    pipeline = build_pipeline(config)

    try:
        pipeline.database.connect()
    except DatabaseError as e:
        logger.critical(f"Database unavailable, cannot start: {e}")
        return 1

    stop = asyncio.Event()
    _install_signal_handlers(stop)

    try:
        if not await pipeline.service.start_streaming():
            return 1

        logger.info("Streaming (press Ctrl+C to stop)...")
        await stop.wait()
        logger.info("Stop requested")
        return 0
    except asyncio.CancelledError:
        logger.info("Interrupted")
        return 130
    finally:
        await pipeline.service.stop_streaming()
        logger.info(f"Final counters: {pipeline.metrics.snapshot().counters}")
        pipeline.database.dispose()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        config = build_config(args)
    except ConfigurationError as e:
        for error in e.errors or [e.message]:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format=LOG_FORMAT,
    )

    if args.check_db:
        database = Database(config.database)
        healthy = database.health_check()
        database.dispose()
        print(f"Database {config.database.redacted_url()}: {'OK' if healthy else 'UNREACHABLE'}")
        return 0 if healthy else 1

    return asyncio.run(run_application(config))


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
