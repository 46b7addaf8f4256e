"""
Transmitter agent lifecycle.

Owns the notifier, registers the configured roots, runs the dispatcher until
the stop event fires, then drains in-flight deliveries and releases
resources. Only startup failures propagate out of ``run``.
"""

import asyncio
from pathlib import Path
from typing import Optional

from loguru import logger

from courier.errors import NotifierFailedError
from courier.models.schemas import RawEvent, RawEventKind, WatchConfig
from courier.utils.config import Settings, get_settings
from courier.utils.helpers import iter_files, should_exclude_path
from courier.utils.http_client import ReceiverClient
from domains.transmission.delivery.policy import DeliveryPolicy
from domains.transmission.watchers.debouncer import EventDebouncer
from domains.transmission.watchers.dispatcher import EventDispatcher
from domains.transmission.watchers.filesystem import FileSystemNotifier
from domains.transmission.watchers.registrar import WatchRegistrar


class TransmitterAgent:
    """Watches the configured paths and transmits changes."""

    def __init__(
        self,
        config: WatchConfig,
        settings: Optional[Settings] = None,
        client: Optional[ReceiverClient] = None,
        observer=None,
    ):
        """
        Initialize agent.

        Args:
            config: Receiver URL, watched paths and key
            settings: Pipeline tunables (defaults to environment settings)
            client: Receiver client; created from ``config`` when omitted
            observer: watchdog observer; platform default when omitted
        """
        self.config = config
        self.settings = settings or get_settings()
        self.client = client
        self.observer = observer

        self.notifier: Optional[FileSystemNotifier] = None
        self.registrar: Optional[WatchRegistrar] = None
        self.dispatcher: Optional[EventDispatcher] = None

    def _build_client(self) -> ReceiverClient:
        return ReceiverClient(
            self.config,
            timeout=self.settings.request_timeout,
            max_connections=self.settings.pool_max_connections,
            keepalive_expiry=self.settings.pool_keepalive_expiry,
        )

    async def run(self, stop: asyncio.Event) -> None:
        """
        Run until ``stop`` is set or the notifier closes.

        Raises:
            WatchSetupError: If a configured directory cannot be registered
            NotifierFailedError: If the observer dies while running
        """
        settings = self.settings
        queue: asyncio.Queue = asyncio.Queue()
        owns_client = self.client is None
        client = self.client or self._build_client()

        self.notifier = FileSystemNotifier(
            queue,
            observer=self.observer,
            exclude_patterns=settings.get_exclude_patterns(),
        )
        self.registrar = WatchRegistrar(self.notifier)
        policy = DeliveryPolicy(
            client,
            read_attempts=settings.read_attempts,
            read_backoff=settings.read_backoff,
            status_retries=settings.status_retries,
        )
        self.dispatcher = EventDispatcher(
            queue,
            policy,
            debouncer=EventDebouncer(settings.debounce_window),
            registrar=self.registrar,
            settle_delay=settings.settle_delay,
            event_timeout=settings.event_timeout,
        )

        logger.info(f"Starting transmitter for {len(self.config.paths)} path(s) -> {self.config.url}")

        try:
            self.notifier.start()
            self._register_paths()

            if settings.initial_sync:
                self._queue_initial_sync(queue)

            logger.success(f"Watching {len(self.registrar.registered)} directories")
            monitor = asyncio.create_task(self._monitor_notifier(settings.notifier_check_interval))
            try:
                await self.dispatcher.run(stop)
            finally:
                monitor.cancel()
                await self.dispatcher.drain(timeout=settings.settle_delay + settings.event_timeout + 1)
        finally:
            await asyncio.to_thread(self.notifier.close)
            if owns_client:
                await client.aclose()
            logger.info("Transmitter stopped")

    def _register_paths(self) -> None:
        roots = [root for root in self.config.paths if Path(root).is_dir()]
        files = [root for root in self.config.paths if not Path(root).is_dir()]

        # Trees first, so a file inside one needs no watch of its own
        for root in roots:
            self.registrar.register_root(root)
        for path in files:
            self.notifier.add_file(path)

    async def _monitor_notifier(self, interval: float) -> None:
        """Poll observer health; a dead observer ends the run with an error."""
        while True:
            await asyncio.sleep(interval)
            try:
                self.notifier.check_health()
            except NotifierFailedError as e:
                self.notifier.publish(e)
                return

    def _queue_initial_sync(self, queue: asyncio.Queue) -> None:
        patterns = self.settings.get_exclude_patterns()
        count = 0
        for root in self.config.paths:
            for path in iter_files(Path(root)):
                if should_exclude_path(path, patterns):
                    continue
                queue.put_nowait(RawEvent(str(path), RawEventKind.WRITE))
                count += 1
        logger.info(f"Queued {count} file(s) for initial sync")
