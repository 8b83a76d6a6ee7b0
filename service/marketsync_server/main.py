"""
MarketSync Server - Main entry point.

Starts the HTTP front end over a RoomService backed by the configured
snapshot store.

Usage:
    marketsync-server
    python -m service.marketsync_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Configuration errors exit before anything binds a port
    - The store is connected before the first request is served
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter
import uvicorn

from .api import create_app
from .config import HttpSettings, ServerConfig
from .service import RoomService
from .store import create_snapshot_store

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def main() -> None:
    """Main entry point."""
    try:
        config = ServerConfig.from_env()
        settings = HttpSettings()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    config.log_config()

    service = RoomService(create_snapshot_store(config.store), config=config)
    app = create_app(service=service, settings=settings)

    logger.info(f"Starting MarketSync server on {settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
