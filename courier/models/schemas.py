"""
Data models for Courier.

Shared between the transmitter pipeline and the receiver API.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =====================================================
# Configuration Models
# =====================================================

class WatchConfig(BaseModel):
    """Receiver target and watched roots, loaded once at startup."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    url: str = Field(alias="Url")
    paths: Tuple[str, ...] = Field(default=(), alias="Paths")
    key: str = Field(alias="Key")

    @field_validator("url")
    @classmethod
    def url_not_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("receiver URL must not be empty")
        return value.strip()


# =====================================================
# Filesystem Event Models
# =====================================================

class RawEventKind(str, Enum):
    """Event kinds reported by the filesystem notifier."""
    CREATE = "create"
    WRITE = "write"
    CHMOD = "chmod"
    REMOVE = "remove"
    RENAME = "rename"


class EventKind(str, Enum):
    """Logical event kinds that drive deliveries."""
    WRITE = "write"
    REMOVE = "remove"


@dataclass(frozen=True, slots=True)
class RawEvent:
    """A notifier event before classification."""

    path: str
    kind: RawEventKind
    is_directory: bool = False
    observed_at: float = field(default_factory=time.monotonic)


@dataclass(frozen=True, slots=True)
class FileEvent:
    """A classified event handed to the delivery pipeline."""

    path: str
    kind: EventKind
    observed_at: float = field(default_factory=time.monotonic)


# =====================================================
# Delivery Models
# =====================================================

class HttpMethod(str, Enum):
    POST = "POST"
    DELETE = "DELETE"


@dataclass(frozen=True, slots=True)
class DeliveryRequest:
    """One request against the receiver. Built fresh for every attempt."""

    path: str
    method: HttpMethod
    content: bytes = b""

    @classmethod
    def write(cls, path: str, content: bytes) -> "DeliveryRequest":
        return cls(path=path, method=HttpMethod.POST, content=content)

    @classmethod
    def remove(cls, path: str) -> "DeliveryRequest":
        return cls(path=path, method=HttpMethod.DELETE)


@dataclass(slots=True)
class DeliveryOutcome:
    """
    Result of delivering one event.

    ``success`` means the request completed, whatever the status code was.
    Use ``accepted`` to check for a 2xx response.
    """

    path: str
    method: HttpMethod
    success: bool
    status_code: Optional[int] = None
    elapsed: float = 0.0
    error: Optional[Exception] = None
    attempts: int = 1
    response_size: int = 0

    @property
    def accepted(self) -> bool:
        return self.success and self.status_code is not None and 200 <= self.status_code < 300

    @classmethod
    def failed(cls, path: str, method: HttpMethod, error: Exception, *, elapsed: float = 0.0,
               attempts: int = 1) -> "DeliveryOutcome":
        return cls(path=path, method=method, success=False, elapsed=elapsed, error=error,
                   attempts=attempts)


# =====================================================
# Receiver Models
# =====================================================

class FilePayload(BaseModel):
    """JSON body sent by the transmitter for both saves and removals."""
    path: str
    content: str = ""


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: str
    version: str
