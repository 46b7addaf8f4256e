"""
Configuration management for Courier.

Tunables come from environment variables (prefix ``COURIER_``) and ``.env``
files via pydantic-settings. The watch configuration (receiver URL, watched
paths, key) is a separate JSON file passed on the command line.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import List, Optional, Union

from loguru import logger
from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from courier.errors import ConfigError
from courier.models.schemas import WatchConfig
from courier.utils.helpers import normalise_path


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    log_level: str = "INFO"

    # Event pipeline
    debounce_window: float = 2.5  # seconds
    settle_delay: float = 0.1
    event_timeout: float = 30.0
    initial_sync: bool = False
    exclude_patterns: str = ""
    notifier_check_interval: float = 1.0  # seconds between observer health checks

    # Delivery
    read_attempts: int = 5
    read_backoff: float = 0.5
    status_retries: int = 0  # extra attempts on non-2xx responses

    # Transport
    request_timeout: float = 30.0
    pool_max_connections: int = 10
    pool_keepalive_expiry: float = 30.0

    # Receiver
    receiver_host: str = "0.0.0.0"
    receiver_port: int = 8080
    receiver_key: Optional[str] = None
    receiver_root: Optional[Path] = None
    receiver_max_body: int = 80_000_000
    api_title: str = "Courier Receiver"
    api_version: str = "1.0.0"

    model_config = SettingsConfigDict(
        env_prefix="COURIER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def get_exclude_patterns(self) -> list[str]:
        """Parse exclude patterns into list."""
        return [p.strip() for p in self.exclude_patterns.split(',') if p.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def expand_paths(paths: List[str]) -> tuple[str, ...]:
    """
    Normalise configured watch paths.

    Args:
        paths: Raw paths from the config file

    Returns:
        Existing paths, user-expanded and resolved, duplicates removed in order
    """
    expanded: list[str] = []
    seen: set[str] = set()

    for raw in paths:
        path = normalise_path(Path(raw))
        if not path.exists():
            logger.warning(f"Configured path does not exist, skipping: {raw}")
            continue

        key = str(path)
        if key in seen:
            continue
        seen.add(key)
        expanded.append(key)

    return tuple(expanded)


def load_watch_config(path: Union[str, Path]) -> WatchConfig:
    """
    Load the JSON watch configuration.

    Args:
        path: Path to a config.json file with ``Url``, ``Paths`` and ``Key``

    Returns:
        Validated, immutable watch configuration

    Raises:
        ConfigError: If the file is missing, not JSON, or fails validation
    """
    config_path = Path(path)
    if not config_path.is_file():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Failed to parse configuration {config_path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError("Configuration root must be a JSON object")

    # Keys are matched case-insensitively ("Url" and "url" both work)
    normalised = {k.lower(): v for k, v in raw.items()}
    data = {
        "Url": normalised.get("url"),
        "Paths": normalised.get("paths") or [],
        "Key": normalised.get("key"),
    }

    if not isinstance(data["Paths"], list) or not all(isinstance(p, str) for p in data["Paths"]):
        raise ConfigError("Paths must be a list of strings")

    try:
        config = WatchConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration {config_path}: {exc}") from exc

    paths = expand_paths(list(config.paths))
    if not paths:
        raise ConfigError("No existing paths to watch")

    logger.info(f"Loaded watch configuration: {len(paths)} path(s) -> {config.url}")
    return config.model_copy(update={"paths": paths})
