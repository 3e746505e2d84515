"""
BDR node controller - Main entry point.

This module runs as the container's main process:
- Parses configuration from the environment (once)
- Bootstraps storage, settings, TLS and access rules
- Starts the engine and makes it a replication group member
- Supervises the engine until it stops

Usage:
    python -m dbaas.bdrnode.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Exit codes:
    0 - engine stopped (requested or not)
    1 - configuration or bootstrap failure
    2 - supervisor loop exited abnormally

Invariants:
    - Missing required variables exit 1 before any side effect
    - The superuser password is removed from os.environ before any child runs
"""

from __future__ import annotations

import asyncio
import logging
import sys

import json_log_formatter

from .config import NodeConfig, scrub_secrets
from .errors import ConfigError
from .supervisor import EXIT_ABNORMAL, Supervisor

logger = logging.getLogger(__name__)


def setup_logging(config: NodeConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Node configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = NodeConfig.from_env()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    scrub_secrets()
    setup_logging(config)
    config.log_config()

    supervisor = Supervisor.from_config(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        exit_code = loop.run_until_complete(supervisor.run())
    finally:
        loop.close()

    if exit_code is None:
        logger.error("Supervisor loop exited abnormally")
        exit_code = EXIT_ABNORMAL
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
