"""Per-path debouncing of write events.

Editors and copy tools emit several write notifications for one logical save.
The debouncer accepts the first event for a path and suppresses the rest until
the window has elapsed. It is not thread-safe: only the dispatcher loop may
call it.
"""

from __future__ import annotations

DEBOUNCE_WINDOW = 2.5  # seconds


class EventDebouncer:
    """Suppression window keyed by path."""

    def __init__(self, window: float = DEBOUNCE_WINDOW) -> None:
        """Initialize debouncer.

        Args:
            window: Minimum seconds between two accepted events for one path.
        """
        if window < 0:
            raise ValueError(f"window must not be negative: {window}")

        self.window = window
        self._last_accepted: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._last_accepted)

    def should_accept(self, path: str, now: float) -> bool:
        """Decide whether a write event for ``path`` at ``now`` is delivered.

        The timestamp is recorded on acceptance, before any delivery starts, so
        events queued during a slow delivery are still suppressed.

        Args:
            path: Event path.
            now: Monotonic timestamp of the event.

        Returns:
            True if the event should be delivered.
        """
        last = self._last_accepted.get(path)
        if last is not None and now - last < self.window:
            return False

        self._last_accepted[path] = now
        return True

    def forget(self, path: str) -> None:
        """Drop the window for ``path`` (used when the file is removed)."""
        self._last_accepted.pop(path, None)

    def prune(self, now: float) -> int:
        """Discard entries whose window has expired.

        Returns:
            Number of entries removed.
        """
        expired = [p for p, ts in self._last_accepted.items() if now - ts >= self.window]
        for path in expired:
            del self._last_accepted[path]
        return len(expired)
