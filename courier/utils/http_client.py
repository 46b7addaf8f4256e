"""
HTTP client for the Courier receiver.

Provides:
- One pooled AsyncClient shared by every concurrent delivery
- Gzip-compressed JSON request bodies
- PSK authentication via the Authorization header
- An overall deadline per request
"""

import asyncio
import gzip
import json
import time
from typing import Optional

import httpx
from loguru import logger

from courier.errors import TransportError
from courier.models.schemas import DeliveryOutcome, DeliveryRequest, WatchConfig

DEFAULT_TIMEOUT = 30.0  # seconds
DEFAULT_MAX_CONNECTIONS = 10
DEFAULT_KEEPALIVE_EXPIRY = 30.0


def encode_payload(path: str, content: bytes) -> bytes:
    """
    Build the gzip-compressed request body.

    Args:
        path: Path of the file as seen by the watcher
        content: Raw file bytes (empty for deletions)

    Returns:
        gzip(UTF-8 JSON ``{"path": ..., "content": ...}``)
    """
    document = {
        "path": path,
        "content": content.decode("utf-8", errors="replace"),
    }
    return gzip.compress(json.dumps(document, ensure_ascii=False).encode("utf-8"))


class ReceiverClient:
    """Sends delivery requests to the configured receiver."""

    def __init__(
        self,
        config: WatchConfig,
        timeout: float = DEFAULT_TIMEOUT,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
        keepalive_expiry: float = DEFAULT_KEEPALIVE_EXPIRY,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the receiver client.

        Args:
            config: Watch configuration holding the receiver URL and key
            timeout: Overall deadline for one request, in seconds
            max_connections: Connection pool size
            keepalive_expiry: Seconds an idle connection is kept for reuse
            transport: Optional httpx transport (used by tests)
        """
        self.url = config.url
        self.timeout = timeout
        self._key = config.key
        self._client = httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_connections,
                keepalive_expiry=keepalive_expiry,
            ),
            transport=transport,
        )

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Content-Encoding": "gzip",
            "Authorization": self._key,
        }

    async def deliver(self, request: DeliveryRequest) -> DeliveryOutcome:
        """
        Send one request and drain its response.

        Any HTTP status counts as a completed attempt; interpreting it is up
        to the caller.

        Args:
            request: Path, method and content to send

        Returns:
            Outcome with status code, elapsed time and response size

        Raises:
            TransportError: On encoding, network, deadline or body-read failure
        """
        method = request.method.value
        start = time.perf_counter()

        logger.info(f"Sending {method} {request.path} ({len(request.content)} bytes)")

        try:
            response, body = await asyncio.wait_for(self._send(request), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(request.path, method, f"no response within {self.timeout:g}s") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransportError(request.path, method, str(e) or e.__class__.__name__) from e
        except (ValueError, TypeError) as e:
            raise TransportError(request.path, method, f"failed to build request: {e}") from e

        elapsed = time.perf_counter() - start
        logger.info(
            f"Request completed: {method} {request.path} status={response.status_code} "
            f"duration_ms={elapsed * 1000:.0f} response_size={len(body)}"
        )

        return DeliveryOutcome(
            path=request.path,
            method=request.method,
            success=True,
            status_code=response.status_code,
            elapsed=elapsed,
            response_size=len(body),
        )

    async def _send(self, request: DeliveryRequest) -> tuple[httpx.Response, bytes]:
        http_request = self._client.build_request(
            request.method.value,
            self.url,
            content=encode_payload(request.path, request.content),
            headers=self.headers,
        )
        response = await self._client.send(http_request, stream=True)
        try:
            # The body must be read before the connection returns to the pool
            body = await response.aread()
        finally:
            await response.aclose()
        return response, body

    async def aclose(self) -> None:
        """Close pooled connections."""
        logger.debug("Closing receiver client...")
        await self._client.aclose()

    async def __aenter__(self) -> "ReceiverClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
