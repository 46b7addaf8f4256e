"""
Event dispatcher for the Transmission domain.

Consumes the notifier queue on a single coroutine, classifies each raw event,
applies the debouncer to writes, and runs every accepted event on its own task
under a fixed time ceiling. A failing or stuck event never stops the loop.
"""

import asyncio
import os
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional, Set

from loguru import logger

from courier.errors import (
    EventProcessingError,
    EventTimeoutError,
    NotifierFailedError,
    NotifierInternalError,
    WatchSetupError,
)
from courier.models.schemas import (
    DeliveryOutcome,
    EventKind,
    FileEvent,
    HttpMethod,
    RawEvent,
    RawEventKind,
)
from domains.transmission.watchers.debouncer import EventDebouncer

if TYPE_CHECKING:
    from domains.transmission.delivery.policy import DeliveryPolicy
    from domains.transmission.watchers.filesystem import NotifierItem
    from domains.transmission.watchers.registrar import WatchRegistrar

SETTLE_DELAY = 0.1  # seconds
EVENT_TIMEOUT = 30.0
PRUNE_THRESHOLD = 4096  # debouncer entries before expired ones are dropped

WRITE_KINDS = frozenset({RawEventKind.WRITE, RawEventKind.CHMOD, RawEventKind.CREATE})

Operation = Callable[[str], Awaitable[DeliveryOutcome]]


def _list_files(directories: List[str]) -> List[str]:
    files: List[str] = []
    for directory in directories:
        try:
            with os.scandir(directory) as entries:
                files.extend(sorted(entry.path for entry in entries if entry.is_file()))
        except OSError as e:
            logger.warning(f"Could not list new directory {directory}: {e}")
    return files


def classify(kind: RawEventKind) -> EventKind:
    """Map a notifier event kind to the delivery it triggers."""
    if kind in WRITE_KINDS:
        return EventKind.WRITE
    # REMOVE, and RENAME for the old name
    return EventKind.REMOVE


@dataclass
class DispatcherStats:
    """Counters emitted by the dispatcher for observability."""

    received: int = 0
    debounced: int = 0
    dispatched: int = 0
    delivered: int = 0
    failed: int = 0
    timed_out: int = 0


class EventDispatcher:
    """Single consumer of the notifier queue."""

    def __init__(
        self,
        events: "asyncio.Queue[NotifierItem]",
        policy: "DeliveryPolicy",
        debouncer: Optional[EventDebouncer] = None,
        registrar: Optional["WatchRegistrar"] = None,
        settle_delay: float = SETTLE_DELAY,
        event_timeout: float = EVENT_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """
        Initialize dispatcher.

        Args:
            events: Queue fed by the filesystem notifier
            policy: Delivery policy used for reads and sends
            debouncer: Write suppression window (2.5s by default)
            registrar: Registers directories created while running
            settle_delay: Pause between accepting a write and reading the file
            event_timeout: Ceiling for one event's processing
            clock: Monotonic clock used for pruning the debouncer
            sleep: Awaitable sleep, replaceable in tests
        """
        self.events = events
        self.policy = policy
        self.debouncer = debouncer if debouncer is not None else EventDebouncer()
        self.registrar = registrar
        self.settle_delay = settle_delay
        self.event_timeout = event_timeout
        self.stats = DispatcherStats()

        self._clock = clock
        self._sleep = sleep or asyncio.sleep
        self._tasks: Set[asyncio.Task] = set()
        self._abandoned: Set[asyncio.Future] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    @property
    def abandoned(self) -> int:
        return len(self._abandoned)

    async def run(self, stop: asyncio.Event) -> None:
        """
        Consume events until ``stop`` is set or the notifier closes.

        Tasks already dispatched keep running; see ``drain``.
        """
        logger.info("Event dispatcher started")
        stop_waiter = asyncio.ensure_future(stop.wait())

        try:
            while not stop.is_set():
                getter = asyncio.ensure_future(self.events.get())
                done, _ = await asyncio.wait(
                    {getter, stop_waiter}, return_when=asyncio.FIRST_COMPLETED
                )

                if getter not in done:
                    getter.cancel()
                    break

                item = getter.result()
                if item is None:
                    logger.info("Event stream closed")
                    break

                if isinstance(item, NotifierFailedError):
                    logger.critical(f"Event source failed: {item}")
                    raise item

                try:
                    self.handle(item)
                except Exception as e:
                    logger.opt(exception=e).error(f"Failed to handle notifier item {item!r}")
        finally:
            stop_waiter.cancel()

        logger.info(f"Event dispatcher stopped: {self.stats}")

    def handle(self, item: "NotifierItem") -> Optional[asyncio.Task]:
        """Process one queue item on the dispatcher coroutine."""
        if isinstance(item, NotifierInternalError):
            logger.warning(f"Notifier error: {item}")
            return None

        self.stats.received += 1
        kind = classify(item.kind)

        if item.is_directory:
            return self._handle_directory(item, kind)

        return self.dispatch(FileEvent(item.path, kind, item.observed_at))

    def dispatch(self, event: FileEvent) -> Optional[asyncio.Task]:
        """
        Debounce ``event`` if it is a write and schedule its delivery.

        Returns:
            The scheduled task, or None if the event was suppressed
        """
        if event.kind is EventKind.WRITE:
            if not self.debouncer.should_accept(event.path, event.observed_at):
                self.stats.debounced += 1
                logger.debug(f"Debounced write event: {event.path}")
                return None

            if len(self.debouncer) > PRUNE_THRESHOLD:
                self.debouncer.prune(self._clock())

            return self._spawn(event, self.policy.send_file, HttpMethod.POST, settle=True)

        # Removals are never debounced
        self.debouncer.forget(event.path)
        return self._spawn(event, self.policy.send_removal, HttpMethod.DELETE, settle=False)

    def _handle_directory(self, raw: RawEvent, kind: EventKind) -> Optional[asyncio.Task]:
        if kind is EventKind.REMOVE:
            if self.registrar is not None:
                self.registrar.forget(raw.path)
            return self.dispatch(FileEvent(raw.path, EventKind.REMOVE, raw.observed_at))

        if self.registrar is None:
            return None

        task = asyncio.create_task(
            self._register_directory(raw), name=f"REGISTER {raw.path}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _register_directory(self, raw: RawEvent) -> None:
        try:
            directories = await self.registrar.register_created(raw.path)
        except WatchSetupError as e:
            logger.error(f"Could not watch new directory: {e}")
            return
        except Exception as e:
            logger.opt(exception=e).error(f"Failed to register new directory {raw.path}")
            return

        if not directories:
            return
        logger.info(f"Watching new directory: {raw.path} ({len(directories)} directories)")

        # Files may have landed before watchdog saw the directory
        files = await asyncio.to_thread(_list_files, directories)
        for path in files:
            self.dispatch(FileEvent(path, EventKind.WRITE, raw.observed_at))

    def _spawn(self, event: FileEvent, operation: Operation, method: HttpMethod,
               settle: bool) -> asyncio.Task:
        task = asyncio.create_task(
            self._run_bounded(event, operation, method, settle),
            name=f"{method.value} {event.path}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self.stats.dispatched += 1
        return task

    async def _run_bounded(self, event: FileEvent, operation: Operation, method: HttpMethod,
                           settle: bool) -> DeliveryOutcome:
        if settle and self.settle_delay > 0:
            await self._sleep(self.settle_delay)

        inner = asyncio.ensure_future(self._guarded(event, operation, method))
        done, _ = await asyncio.wait({inner}, timeout=self.event_timeout)

        if inner in done:
            outcome = inner.result()
        else:
            # Abandoned, not cancelled: the transport deadline is the real bound
            self._abandoned.add(inner)
            inner.add_done_callback(self._abandoned.discard)
            outcome = DeliveryOutcome.failed(
                event.path, method, EventTimeoutError(event.path, self.event_timeout),
                elapsed=self.event_timeout,
            )

        self._report(event, outcome)
        return outcome

    async def _guarded(self, event: FileEvent, operation: Operation,
                       method: HttpMethod) -> DeliveryOutcome:
        try:
            return await operation(event.path)
        except Exception as e:
            logger.opt(exception=e).debug(f"Unexpected failure for {event.path}")
            return DeliveryOutcome.failed(event.path, method, EventProcessingError(event.path, e))

    def _report(self, event: FileEvent, outcome: DeliveryOutcome) -> None:
        action = outcome.method.value

        if outcome.success:
            self.stats.delivered += 1
            logger.info(
                f"Delivered {action} {event.path} status={outcome.status_code} "
                f"attempts={outcome.attempts} duration_ms={outcome.elapsed * 1000:.0f}"
            )
        elif isinstance(outcome.error, EventTimeoutError):
            self.stats.timed_out += 1
            logger.error(f"Timed out: {action} {event.path}: {outcome.error}")
        else:
            self.stats.failed += 1
            logger.warning(
                f"Failed: {action} {event.path} attempts={outcome.attempts}: {outcome.error}"
            )

    async def drain(self, timeout: Optional[float] = None) -> int:
        """
        Wait for dispatched tasks to finish.

        Every task ends within its ceiling, so this terminates even without a
        timeout. Abandoned operations are not waited for.

        Returns:
            Number of tasks still running when the wait ended
        """
        if not self._tasks:
            return 0

        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        logger.info(f"Waiting for {len(self._tasks)} in-flight deliveries...")

        # Directory registrations may dispatch more deliveries while we wait
        while self._tasks:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                break
            await asyncio.wait(set(self._tasks), timeout=remaining)

        if self._tasks:
            logger.warning(f"{len(self._tasks)} deliveries still running at shutdown")
        return len(self._tasks)
