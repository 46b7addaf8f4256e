#!/usr/bin/env python3
"""Command-line entry point for the Courier transmitter.

Loads the JSON watch configuration, then watches the configured paths and
pushes every change to the receiver until SIGINT/SIGTERM.

Exit codes: 0 on clean shutdown, 2 on configuration errors, 1 on any other
fatal error.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from courier.errors import ConfigError, CourierError
from courier.models.schemas import WatchConfig
from courier.utils.config import Settings, get_settings, load_watch_config
from courier.utils.logging_setup import configure_logging, shutdown_logging
from domains.transmission.agent import TransmitterAgent

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_CONFIG = 2


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments."""

    parser = argparse.ArgumentParser(
        description="Watch directories and transmit file changes to a Courier receiver.",
    )
    parser.add_argument(
        "-C",
        "--config",
        type=Path,
        required=True,
        help="Path to a config.json file with Url, Paths and Key.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (DEBUG, INFO, WARNING, ERROR). Overrides COURIER_LOG_LEVEL.",
    )
    parser.add_argument(
        "--initial-sync",
        action="store_true",
        help="Send every existing file once after startup.",
    )

    return parser.parse_args(argv)


async def serve(config: WatchConfig, settings: Settings) -> None:
    """Run the agent with signal-driven shutdown."""

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()

    def _signal_handler(signum, frame):  # noqa: D401
        logger.info(f"Received signal {signum}, shutting down.")
        loop.call_soon_threadsafe(stop.set)

    previous = {
        sig: signal.signal(sig, _signal_handler)
        for sig in (signal.SIGINT, signal.SIGTERM)
    }

    try:
        await TransmitterAgent(config, settings).run(stop)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the CLI script."""

    args = parse_args(argv)
    settings = get_settings()

    updates = {}
    if args.log_level:
        updates["log_level"] = args.log_level
    if args.initial_sync:
        updates["initial_sync"] = True
    if updates:
        settings = settings.model_copy(update=updates)

    configure_logging(settings.log_level)

    try:
        config = load_watch_config(args.config)
    except ConfigError as exc:
        logger.error(f"{exc}")
        shutdown_logging()
        return EXIT_CONFIG

    exit_code = EXIT_OK
    try:
        asyncio.run(serve(config, settings))
    except CourierError as exc:
        logger.error(f"Transmitter failed: {exc}")
        exit_code = EXIT_FATAL
    except Exception as exc:
        logger.opt(exception=exc).critical(f"Transmitter crashed: {exc}")
        exit_code = EXIT_FATAL
    finally:
        shutdown_logging()

    return exit_code


if __name__ == "__main__":  # pragma: no cover - CLI bridge
    sys.exit(main())
