"""
Main application entry point for Alertboard.

Opens the alert database once, serves the HTTP API until shutdown and closes
the database exactly once on the way out.
"""

import argparse
import logging
import sys

import structlog
import uvicorn

from . import __version__
from .api import create_app
from .config import config
from .exceptions import StoreInitError
from .storage import SqliteAlertStore


logger = structlog.get_logger(__name__)


def configure_logging(log_level: str) -> None:
    """Configure structured JSON logging on top of the stdlib logging module."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(message)s",
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def run() -> int:
    """Run the server with the current configuration; returns the exit code."""
    configure_logging(config.log_level)

    logger.info(
        "Starting Alertboard",
        version=__version__,
        host=config.host,
        port=config.port,
        db_path=config.db_path,
    )

    try:
        store = SqliteAlertStore(
            config.db_path,
            timeout=config.db_timeout_seconds,
            chunk_size=config.backup_chunk_size,
            pool_size=config.db_pool_size,
        )
    except StoreInitError as e:
        logger.error("Failed to open alert store", db_path=config.db_path, error=str(e))
        return 1

    try:
        uvicorn.run(
            create_app(store),
            host=config.host,
            port=config.port,
            log_level=config.log_level.lower(),
            access_log=True,
        )
    finally:
        store.close()

    logger.info("Alertboard stopped")
    return 0


def cli():
    """Command-line interface entry point."""
    parser = argparse.ArgumentParser(
        description="Alertboard - embedded alert store with HTTP API"
    )
    parser.add_argument(
        "--host",
        default=config.host,
        help="Server host (default: %(default)s)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=config.port,
        help="Server port (default: %(default)s)"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=config.log_level.upper(),
        help="Log level (default: %(default)s)"
    )
    parser.add_argument(
        "--db-path",
        default=config.db_path,
        help="Alert database file (default: %(default)s)"
    )

    args = parser.parse_args()

    # Update config with command-line arguments
    config.host = args.host
    config.port = args.port
    config.log_level = args.log_level
    config.db_path = args.db_path

    sys.exit(run())


if __name__ == "__main__":
    cli()
