"""
Delivery policy for the transmission domain.

Wraps the receiver client with:
- Bounded, linearly backed-off file reads (empty reads count as failures)
- One POST per successful read, one DELETE per removal
- Optional retries when the receiver answers with a non-2xx status
"""

import asyncio
import time
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from loguru import logger

from courier.errors import ReadExhaustedError, TransportError
from courier.models.schemas import DeliveryOutcome, DeliveryRequest, HttpMethod

if TYPE_CHECKING:
    from courier.utils.http_client import ReceiverClient

READ_ATTEMPTS = 5
READ_BACKOFF = 0.5  # seconds, multiplied by the attempt number

Sleep = Callable[[float], Awaitable[None]]


def _read_file(path: str) -> bytes:
    return Path(path).read_bytes()


class DeliveryPolicy:
    """Turns file events into receiver requests."""

    def __init__(
        self,
        client: "ReceiverClient",
        read_attempts: int = READ_ATTEMPTS,
        read_backoff: float = READ_BACKOFF,
        status_retries: int = 0,
        sleep: Optional[Sleep] = None,
    ):
        """
        Initialize delivery policy.

        Args:
            client: Receiver client shared by all deliveries
            read_attempts: Maximum reads before giving up on a file
            read_backoff: Base backoff; attempt N waits N * read_backoff
            status_retries: Extra attempts when the receiver answers non-2xx
            sleep: Awaitable sleep, replaceable in tests
        """
        if read_attempts < 1:
            raise ValueError("read_attempts must be at least 1")

        self.client = client
        self.read_attempts = read_attempts
        self.read_backoff = read_backoff
        self.status_retries = max(0, status_retries)
        self._sleep = sleep or asyncio.sleep

    async def read_content(self, path: str) -> bytes:
        """
        Read a file, retrying while it is unreadable or empty.

        Zero-length content is treated as a file still being written, so a
        genuinely empty file is never delivered.

        Raises:
            ReadExhaustedError: If every attempt failed
        """
        content, _ = await self._read_with_retries(path)
        return content

    async def _read_with_retries(self, path: str) -> tuple[bytes, int]:
        last_error: Optional[OSError] = None

        for attempt in range(1, self.read_attempts + 1):
            try:
                content = await asyncio.to_thread(_read_file, path)
            except OSError as e:
                last_error = e
                logger.warning(f"Read attempt {attempt}/{self.read_attempts} failed for {path}: {e}")
            else:
                if content:
                    logger.debug(f"Read {path} ({len(content)} bytes) on attempt {attempt}")
                    return content, attempt
                last_error = None
                logger.debug(f"Read attempt {attempt}/{self.read_attempts} returned no data for {path}")

            if attempt < self.read_attempts:
                await self._sleep(attempt * self.read_backoff)

        raise ReadExhaustedError(path, self.read_attempts, last_error)

    async def send_file(self, path: str) -> DeliveryOutcome:
        """Read ``path`` and POST its content to the receiver."""
        return await self._with_status_policy(path, HttpMethod.POST, self._read_and_send)

    async def send_removal(self, path: str) -> DeliveryOutcome:
        """Notify the receiver that ``path`` was removed."""
        return await self._with_status_policy(path, HttpMethod.DELETE, self._send_removal)

    async def _read_and_send(self, path: str) -> DeliveryOutcome:
        start = time.perf_counter()
        try:
            content, attempts = await self._read_with_retries(path)
        except ReadExhaustedError as e:
            return DeliveryOutcome.failed(
                path, HttpMethod.POST, e,
                elapsed=time.perf_counter() - start,
                attempts=e.attempts,
            )

        outcome = await self._deliver(DeliveryRequest.write(path, content))
        outcome.attempts = attempts
        return outcome

    async def _send_removal(self, path: str) -> DeliveryOutcome:
        return await self._deliver(DeliveryRequest.remove(path))

    async def _deliver(self, request: DeliveryRequest) -> DeliveryOutcome:
        try:
            return await self.client.deliver(request)
        except TransportError as e:
            return DeliveryOutcome.failed(request.path, request.method, e)

    async def _with_status_policy(
        self,
        path: str,
        method: HttpMethod,
        operation: Callable[[str], Awaitable[DeliveryOutcome]],
    ) -> DeliveryOutcome:
        outcome = await operation(path)

        for retry in range(1, self.status_retries + 1):
            if not outcome.success or outcome.accepted:
                return outcome

            logger.warning(
                f"Receiver answered {outcome.status_code} for {method.value} {path}, "
                f"retry {retry}/{self.status_retries}"
            )
            await self._sleep(retry * self.read_backoff)
            outcome = await operation(path)

        if outcome.success and not outcome.accepted:
            logger.warning(f"Receiver answered {outcome.status_code} for {method.value} {path}")

        return outcome
