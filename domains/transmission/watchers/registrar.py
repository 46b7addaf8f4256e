"""
Recursive directory registration.

Each configured root becomes one recursive watch. The registrar still walks
the whole tree: every physical directory is recorded once, keyed by
``(st_dev, st_ino)``, which keeps the walk finite when symbolic links form
cycles and surfaces unreadable directories at startup. Directories reached
through a symlink are outside the recursive watch that found them, so they
get a watch of their own.
"""

import asyncio
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, AbstractSet, Dict, List, Set, Tuple

from loguru import logger

from courier.errors import WatchSetupError

if TYPE_CHECKING:
    from domains.transmission.watchers.filesystem import FileSystemNotifier

DirectoryIdentity = Tuple[int, int]


@dataclass(frozen=True)
class ScannedDirectory:
    """One directory found by ``WatchRegistrar.scan``."""

    path: str
    identity: DirectoryIdentity
    needs_watch: bool


class WatchRegistrar:
    """Registers directory trees with the filesystem notifier."""

    def __init__(self, notifier: "FileSystemNotifier"):
        self.notifier = notifier
        self._visited: Set[DirectoryIdentity] = set()
        self._registered: Dict[str, DirectoryIdentity] = {}

    @property
    def registered(self) -> List[str]:
        return list(self._registered)

    def register_root(self, root: str) -> List[str]:
        """
        Register a configured root and every directory below it.

        Plain files are not handled here; the caller watches them directly.

        Args:
            root: Directory path to walk

        Returns:
            Directories newly registered by this call, root first

        Raises:
            WatchSetupError: If any directory cannot be listed or watched.
                Roots registered before the failure stay registered.
        """
        if not os.path.isdir(root):
            return []

        registered = self.apply(self.scan(root, covered=False, known=frozenset(self._visited)))
        logger.debug(f"Registered {len(registered)} directories under {root}")
        return registered

    async def register_created(self, directory: str) -> List[str]:
        """
        Register a directory that appeared inside a watched tree.

        The walk runs in a worker thread; only the bookkeeping and any
        symlink watches happen on the calling loop.

        Returns:
            Directories newly registered
        """
        scanned = await asyncio.to_thread(
            self.scan, directory, True, frozenset(self._visited)
        )
        return self.apply(scanned)

    @staticmethod
    def scan(root: str, covered: bool, known: AbstractSet[DirectoryIdentity]) -> List[ScannedDirectory]:
        """
        Walk ``root`` without touching registrar state.

        Safe to call from a worker thread.

        Args:
            root: Directory to walk
            covered: Whether ``root`` already lies inside a recursive watch
            known: Identities already registered; their subtrees are skipped

        Returns:
            Directories in walk order (parents before children, names sorted)

        Raises:
            WatchSetupError: If a directory cannot be inspected or listed
        """
        found: List[ScannedDirectory] = []
        seen: Set[DirectoryIdentity] = set(known)
        stack = [(root, covered)]

        while stack:
            directory, is_covered = stack.pop()

            try:
                stat = os.stat(directory)
            except OSError as e:
                raise WatchSetupError(directory, str(e)) from e

            identity = (stat.st_dev, stat.st_ino)
            if identity in seen:
                logger.debug(f"Already watching {directory}, skipping")
                continue
            seen.add(identity)
            found.append(ScannedDirectory(directory, identity, needs_watch=not is_covered))

            try:
                with os.scandir(directory) as entries:
                    children = [
                        (entry.path, not entry.is_symlink())
                        for entry in entries
                        if entry.is_dir(follow_symlinks=True)
                    ]
            except OSError as e:
                raise WatchSetupError(directory, str(e)) from e

            # Reversed so the stack pops children in name order
            stack.extend(sorted(children, reverse=True))

        return found

    def apply(self, scanned: List[ScannedDirectory]) -> List[str]:
        """
        Record scanned directories and add the watches they need.

        Raises:
            WatchSetupError: If the notifier refuses a watch. Directories
                applied before the failure stay registered.
        """
        registered: List[str] = []

        for entry in scanned:
            if entry.identity in self._visited:
                continue

            if entry.needs_watch:
                try:
                    self.notifier.add(entry.path)
                except OSError as e:
                    raise WatchSetupError(entry.path, str(e)) from e

            self._visited.add(entry.identity)
            self._registered[entry.path] = entry.identity
            registered.append(entry.path)

        return registered

    def forget(self, directory: str) -> List[str]:
        """
        Drop ``directory`` and everything registered below it.

        Lets a directory that is deleted and re-created be registered again.

        Returns:
            Directories that were unregistered
        """
        prefix = directory.rstrip(os.sep) + os.sep
        removed = [
            path for path in self._registered
            if path == directory or path.startswith(prefix)
        ]

        for path in removed:
            self._visited.discard(self._registered.pop(path))
            self.notifier.remove(path)

        if removed:
            logger.debug(f"Stopped watching {len(removed)} directories under {directory}")
        return removed
