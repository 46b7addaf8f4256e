#!/usr/bin/env python3
"""Command-line entry point for the Courier receiver."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional

import uvicorn
from loguru import logger

from courier.errors import ConfigError
from courier.main import create_app
from courier.utils.config import get_settings
from courier.utils.logging_setup import configure_logging, shutdown_logging


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments."""

    settings = get_settings()
    parser = argparse.ArgumentParser(
        description="Receive file changes from Courier transmitters and mirror them locally.",
    )
    parser.add_argument(
        "-p",
        "--port",
        type=int,
        default=settings.receiver_port,
        help="Port to listen on (default: %(default)s).",
    )
    parser.add_argument(
        "-k",
        "--key",
        default=settings.receiver_key,
        required=settings.receiver_key is None,
        help="The passkey for PSK auth.",
    )
    parser.add_argument(
        "--host",
        default=settings.receiver_host,
        help="Interface to bind (default: %(default)s).",
    )
    parser.add_argument(
        "--root",
        type=Path,
        default=settings.receiver_root,
        help="Mirror incoming paths under this directory instead of using them verbatim.",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    )

    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the CLI script."""

    args = parse_args(argv)
    settings = get_settings().model_copy(update={
        "receiver_port": args.port,
        "receiver_key": args.key,
        "receiver_host": args.host,
        "receiver_root": args.root,
        "log_level": args.log_level,
    })

    configure_logging(settings.log_level)

    try:
        app = create_app(settings)
    except ConfigError as exc:
        logger.error(f"{exc}")
        shutdown_logging()
        return 2

    logger.info(f"Starting server at http://{settings.receiver_host}:{settings.receiver_port}")
    try:
        uvicorn.run(
            app,
            host=settings.receiver_host,
            port=settings.receiver_port,
            log_config=None,
            log_level=settings.log_level.lower(),
        )
    finally:
        shutdown_logging()

    return 0


if __name__ == "__main__":  # pragma: no cover - CLI bridge
    sys.exit(main())
