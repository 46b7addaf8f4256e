"""
Error taxonomy for Courier.

Startup failures (configuration, watch registration) are fatal. Everything
raised while handling a single filesystem event is reported for that event
only and never stops the pipeline.
"""

from typing import Optional


class CourierError(Exception):
    """Base class for all Courier errors."""


class ConfigError(CourierError):
    """Raised when the watch configuration is missing or invalid."""


class WatchSetupError(CourierError):
    """Raised when a directory cannot be registered with the notifier."""

    def __init__(self, path: str, reason: Optional[str] = None):
        self.path = path
        self.reason = reason
        message = f"Failed to watch {path}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ReadExhaustedError(CourierError):
    """Raised when a file stays unreadable or empty after every read attempt."""

    def __init__(self, path: str, attempts: int, last_error: Optional[BaseException] = None):
        self.path = path
        self.attempts = attempts
        self.last_error = last_error
        detail = f"last error: {last_error}" if last_error else "file was empty"
        super().__init__(f"Could not read {path} after {attempts} attempts ({detail})")


class TransportError(CourierError):
    """Raised when a request cannot be built, sent, or its response read."""

    def __init__(self, path: str, method: str, reason: str):
        self.path = path
        self.method = method
        self.reason = reason
        super().__init__(f"{method} {path} failed: {reason}")


class EventTimeoutError(CourierError):
    """Raised when processing a single event exceeds its time ceiling."""

    def __init__(self, path: str, timeout: float):
        self.path = path
        self.timeout = timeout
        super().__init__(f"Processing {path} did not finish within {timeout:g}s")


class NotifierInternalError(CourierError):
    """Reported by the filesystem notifier; watching continues."""


class NotifierFailedError(CourierError):
    """Raised when the observer or one of its watches dies while running."""


class EventProcessingError(CourierError):
    """Wraps an unexpected exception raised while processing one event."""

    def __init__(self, path: str, cause: BaseException):
        self.path = path
        self.cause = cause
        super().__init__(f"Unexpected failure while processing {path}: {cause!r}")
