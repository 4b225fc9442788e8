#!/usr/bin/env python3
"""
Run the search index synchronizer.

This script keeps the Meilisearch indexes in step with the database:
- Configures the drip lists and projects indexes
- Polls the configured chains for changed rows
- Upserts changed entities and waits for the backend to confirm them
- Serves the /health endpoint when enabled

Runs until SIGTERM/SIGINT, or until synchronization fails. Designed to be
supervised (systemd, Docker restart policy, Kubernetes) so a failure leads to
a restart.

Usage:
    python scripts/run_sync.py [--config CONFIG_PATH] [--log-level LEVEL]

Exit codes:
    0: Stopped on request
    1: Startup or synchronization failure
"""

import argparse
import asyncio
import sys

import structlog

from index_sync.service import SyncService
from index_sync.utils.config_loader import ConfigLoader, ConfigurationError
from index_sync.utils.logging_config import configure_logging, configure_logging_from_config

log = structlog.stdlib.get_logger()


def main() -> None:
    """Main entry point for the synchronizer process."""
    parser = argparse.ArgumentParser(description="Search index synchronizer")
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration file",
        default=None,
    )
    parser.add_argument(
        "--log-level",
        type=str,
        help="Override the configured log level",
        default=None,
    )

    args = parser.parse_args()

    try:
        config = ConfigLoader().load_config(args.config)
    except ConfigurationError as e:
        configure_logging(log_level="INFO", json_logs=False)
        log.error("configuration_error", error=str(e))
        sys.exit(1)

    if args.log_level:
        config.logging.log_level = args.log_level
    configure_logging_from_config(config.logging)

    try:
        exit_code = asyncio.run(SyncService(config).run())
    except Exception as e:
        log.error("application_failed", error=str(e), exc_info=True)
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
