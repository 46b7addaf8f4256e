"""
Helper utilities for Courier.

Common functions used by the transmitter and the receiver.
"""

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional


def now_iso() -> str:
    """Get current timestamp as ISO string."""
    return datetime.now(timezone.utc).isoformat()


def normalise_path(path: Path) -> Path:
    """Return a resolved version of ``path`` without forcing existence."""

    try:
        return path.expanduser().resolve()
    except (FileNotFoundError, RuntimeError):
        return path.expanduser().absolute()


def format_bytes(bytes_count: float) -> str:
    """Format bytes as human-readable string."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024.0:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024.0
    return f"{bytes_count:.1f} PB"


def should_exclude_path(path: Path, exclude_patterns: Optional[List[str]] = None) -> bool:
    """
    Check if path should be excluded based on patterns.

    Args:
        path: Path to check
        exclude_patterns: Glob patterns; a pattern also matches as a substring

    Returns:
        True if should exclude, False otherwise
    """
    if not exclude_patterns:
        return False

    path_str = str(path)

    for pattern in exclude_patterns:
        if path.match(pattern) or pattern in path_str:
            return True

    return False


def iter_files(root: Path) -> Iterator[Path]:
    """
    Yield every regular file under ``root``.

    A file root yields itself. Directory symlinks are not followed, so the
    walk always terminates.
    """
    if root.is_file():
        yield root
        return

    for dirpath, _dirnames, filenames in os.walk(root):
        for name in filenames:
            candidate = Path(dirpath) / name
            if candidate.is_file():
                yield candidate


def rebase_path(path: str, root: Optional[Path]) -> Path:
    """
    Map an incoming absolute path under ``root``.

    Args:
        path: Path as sent by the transmitter
        root: Base directory, or None to use the path verbatim

    Returns:
        Target path on this machine

    Raises:
        ValueError: If the path would escape ``root``
    """
    target = Path(path)
    if root is None:
        return target

    base = normalise_path(root)
    relative = Path(*target.parts[1:]) if target.is_absolute() else target
    candidate = Path(os.path.normpath(base / relative))
    if candidate != base and base not in candidate.parents:
        raise ValueError(f"Path escapes receiver root: {path}")
    return candidate
