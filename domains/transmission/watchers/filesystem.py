"""
Filesystem notifier for the Transmission domain.

Wraps a watchdog observer so the rest of the pipeline sees one ordered
asyncio queue of raw events. Each configured root is one recursive watch;
the registrar adds extra watches only for directories reached through
symlinks.

Queue items are ``RawEvent``, ``NotifierInternalError``,
``NotifierFailedError`` (from the health monitor), or ``None`` once the
notifier is closed.
"""

import asyncio
import os
from pathlib import Path
from typing import Dict, List, Optional, Set, Union

from loguru import logger
from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from courier.errors import NotifierFailedError, NotifierInternalError
from courier.models.schemas import RawEvent, RawEventKind
from courier.utils.helpers import should_exclude_path

NotifierItem = Union[RawEvent, NotifierInternalError, NotifierFailedError, None]


def _decode(path: Union[str, bytes]) -> str:
    return os.fsdecode(path)


def translate_event(event: FileSystemEvent) -> List[RawEvent]:
    """
    Map a watchdog event to raw notifier events.

    A move becomes a rename of the source plus a creation of the destination.
    Directory modifications and open/close notifications are dropped.

    Args:
        event: Event emitted by a watchdog observer

    Returns:
        Zero or more raw events
    """
    src = _decode(event.src_path)
    is_dir = event.is_directory

    if event.event_type == EVENT_TYPE_CREATED:
        return [RawEvent(src, RawEventKind.CREATE, is_dir)]

    if event.event_type == EVENT_TYPE_MODIFIED:
        # Directory modifications are extremely noisy and carry no content
        if is_dir:
            return []
        return [RawEvent(src, RawEventKind.WRITE, is_dir)]

    if event.event_type == EVENT_TYPE_DELETED:
        return [RawEvent(src, RawEventKind.REMOVE, is_dir)]

    if event.event_type == EVENT_TYPE_MOVED:
        raw = [RawEvent(src, RawEventKind.RENAME, is_dir)]
        dest = getattr(event, "dest_path", None)
        if dest:
            raw.append(RawEvent(_decode(dest), RawEventKind.CREATE, is_dir))
        return raw

    return []


class TransmissionEventHandler(FileSystemEventHandler):
    """Watchdog handler that forwards events to the notifier queue."""

    def __init__(self, notifier: "FileSystemNotifier"):
        super().__init__()
        self.notifier = notifier

    def on_any_event(self, event: FileSystemEvent) -> None:
        """Translate and publish every event; never raise into watchdog."""
        try:
            raw_events = translate_event(event)
        except Exception as e:
            self.notifier.publish(NotifierInternalError(f"Could not translate {event!r}: {e}"))
            return

        for raw in raw_events:
            if self.notifier.accepts(raw.path):
                self.notifier.publish(raw)


class FileSystemNotifier:
    """Thread-to-asyncio bridge around a watchdog observer."""

    def __init__(
        self,
        queue: "asyncio.Queue[NotifierItem]",
        loop: Optional[asyncio.AbstractEventLoop] = None,
        observer=None,
        exclude_patterns: Optional[List[str]] = None,
    ):
        """
        Initialize notifier.

        Args:
            queue: Queue consumed by the dispatcher
            loop: Loop owning the queue (defaults to the running loop)
            observer: watchdog observer (defaults to the platform observer)
            exclude_patterns: Path patterns whose events are dropped
        """
        self.queue = queue
        self.loop = loop or asyncio.get_running_loop()
        self.observer = observer if observer is not None else Observer()
        self.exclude_patterns = exclude_patterns or []
        self.handler = TransmissionEventHandler(self)

        self._watches: Dict[str, object] = {}
        self._directories: Set[str] = set()
        self._files: Set[str] = set()
        self._started = False
        self._closed = False

    @property
    def directories(self) -> Set[str]:
        """Roots of the recursive watches."""
        return set(self._directories)

    def start(self) -> None:
        """Start the observer threads."""
        if not self._started:
            self.observer.start()
            self._started = True
            logger.info("Filesystem observer started")

    def add(self, directory: str) -> None:
        """
        Watch ``directory`` and everything below it.

        watchdog follows new subdirectories itself, so only roots and
        directories reached through a symlink need their own watch.

        Raises:
            OSError: If the platform refuses the watch
        """
        if directory not in self._watches:
            self._watches[directory] = self.observer.schedule(self.handler, directory, recursive=True)
        self._directories.add(directory)
        logger.debug(f"Watching tree: {directory}")

    def add_file(self, path: str) -> None:
        """Watch a single file through its parent directory."""
        self._files.add(path)
        parent = str(Path(path).parent)
        if self.covers(path) or parent in self._watches:
            logger.debug(f"Watching file: {path}")
            return

        self._watches[parent] = self.observer.schedule(self.handler, parent, recursive=False)
        logger.debug(f"Watching file through its parent: {path}")

    def remove(self, directory: str) -> None:
        """Stop watching ``directory`` (usually because it was deleted)."""
        self._directories.discard(directory)
        watch = self._watches.pop(directory, None)
        if watch is None:
            return
        try:
            self.observer.unschedule(watch)
        except (KeyError, OSError) as e:
            logger.debug(f"Watch for {directory} already gone: {e}")

    def covers(self, path: str) -> bool:
        """Check whether ``path`` lies inside a watched tree."""
        for directory in self._directories:
            if path == directory or path.startswith(directory.rstrip(os.sep) + os.sep):
                return True
        return False

    def accepts(self, path: str) -> bool:
        """Check whether an event for ``path`` belongs to a watched entry."""
        if should_exclude_path(Path(path), self.exclude_patterns):
            return False
        return path in self._files or self.covers(path)

    def check_health(self) -> None:
        """
        Verify that the observer and every live watch are still running.

        A watch whose directory no longer exists is skipped; its removal event
        unschedules it.

        Raises:
            NotifierFailedError: If the observer thread or an emitter died
        """
        if not self._started or self._closed:
            return

        if not self.observer.is_alive():
            raise NotifierFailedError("Filesystem observer stopped unexpectedly")

        for emitter in list(getattr(self.observer, "emitters", ())):
            if emitter.is_alive():
                continue
            path = os.fsdecode(emitter.watch.path)
            if path in self._watches and os.path.isdir(path):
                raise NotifierFailedError(f"Watch on {path} stopped unexpectedly")

    def publish(self, item: NotifierItem) -> None:
        """Hand an item to the dispatcher loop. Safe from any thread."""
        try:
            self.loop.call_soon_threadsafe(self.queue.put_nowait, item)
        except RuntimeError:
            # Loop already closed during shutdown
            logger.debug(f"Dropping notifier item after loop shutdown: {item!r}")

    def close(self) -> None:
        """Stop the observer and signal end-of-stream to the dispatcher."""
        if self._closed:
            return
        self._closed = True

        if self._started:
            self.observer.stop()
            self.observer.join()
            logger.info("Filesystem observer stopped")

        self.publish(None)
