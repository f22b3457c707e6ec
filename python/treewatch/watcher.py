"""
Directory watcher: one watched root with its filters and subscribers.

DirectoryWatcher instances are created by a WatchService, which owns the
channel they register with and routes channel keys to them.

Lifecycle:
----------
INIT    initial walk in progress (inside the constructor)
ACTIVE  registrations live, events dispatched
CLOSED  registrations released, subscribers cleared, events ignored
"""

import asyncio
import logging
import threading
from pathlib import Path
from typing import Iterable, Optional, Union

from treewatch.channel import WatchChannel, WatchKey
from treewatch.dispatcher import Dispatcher, ErrorHandler
from treewatch.patterns import FilterSet, PathLike, PatternMatcher
from treewatch.subscriber import SubscriberLike
from treewatch.tree import WatchTree
from treewatch.types import RawEvent, WatchState

logger = logging.getLogger(__name__)


class DirectoryWatcher:
    """
    Recursive watcher for one directory.

    Constructor Args:
    -----------------
    channel: Channel to register directories with (owned by the service)
    path: Directory to watch, recursively
    separator: Path separator used by glob patterns (default: os.sep)
    includes / excludes: Initial patterns. Excludes of the form ``dir/**``
        given here keep matching subtrees from being registered at all.
    error_handler: Called as ``error_handler(subscriber, exc)`` when a
        subscriber callback raises
    loop: Event loop for coroutine callbacks

    Raises:
    -------
    FileNotFoundError: If path doesn't exist
    ValueError: If path is not a directory

    Example Usage:
    --------------
    >>> watcher = service.new_watcher("/workspace", excludes=["build/"])
    >>> watcher.include("**/*.py")
    >>> watcher.subscribe(Subscriber(on_modify=lambda w, p: print(p)))
    """

    def __init__(
        self,
        channel: WatchChannel,
        path: Union[str, Path],
        separator: Optional[str] = None,
        includes: Iterable[str] = (),
        excludes: Iterable[str] = (),
        error_handler: Optional[ErrorHandler] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Watch path does not exist: {path}")
        if not path.is_dir():
            raise ValueError(f"Watch path is not a directory: {path}")

        self._path = path.resolve()
        self._state = WatchState.INIT
        self._state_lock = threading.Lock()

        self._filters = FilterSet(separator)
        for glob in includes:
            self._filters.include(glob)
        for glob in excludes:
            self._filters.exclude(glob)

        self._dispatcher = Dispatcher(
            self, self._path, self._filters, error_handler=error_handler, loop=loop
        )
        self._tree = WatchTree(self._path, channel, self._dispatcher.notify, self._filters)
        self._tree.initialize()
        self._state = WatchState.ACTIVE

    @property
    def path(self) -> Path:
        """Absolute base path; delivered paths are relative to it."""
        return self._path

    @property
    def state(self) -> WatchState:
        return self._state

    # Filters

    def include(self, glob: str) -> PatternMatcher:
        return self._filters.include(glob)

    def exclude(self, glob: str) -> PatternMatcher:
        return self._filters.exclude(glob)

    def exclude_ignore_file(self, ignore_file: Union[str, Path]) -> int:
        """Exclude paths listed in a gitignore-style file (relative to the root)."""
        ignore_file = Path(ignore_file)
        if not ignore_file.is_absolute():
            ignore_file = self._path / ignore_file
        return self._filters.exclude_ignore_file(ignore_file)

    def should_track(self, path: PathLike) -> bool:
        return self._filters.should_track(path)

    # Subscriptions

    def subscribe(self, subscriber: SubscriberLike) -> SubscriberLike:
        if self._state is WatchState.CLOSED:
            raise RuntimeError(f"Watcher for {self._path} is closed")
        self._dispatcher.subscribe(subscriber)
        return subscriber

    def unsubscribe(self, subscriber: SubscriberLike) -> None:
        self._dispatcher.unsubscribe(subscriber)

    @property
    def subscribers(self) -> list[SubscriberLike]:
        return self._dispatcher.subscribers

    def stats(self) -> dict:
        stats = self._dispatcher.stats()
        stats["directories"] = len(self._tree.registered_paths())
        return stats

    # Channel routing (called by the service)

    def tracks(self, key: WatchKey) -> bool:
        return self._state is WatchState.ACTIVE and self._tree.tracks(key)

    def registered_paths(self) -> list[Path]:
        return self._tree.registered_paths()

    def handle_event(self, key: WatchKey, event: RawEvent) -> None:
        if self._state is not WatchState.ACTIVE:
            return
        self._tree.handle_event(key, event)

    def handle_key_invalidated(self, key: WatchKey) -> None:
        if self._state is not WatchState.ACTIVE:
            return
        self._tree.handle_key_invalidated(key)

    def close(self) -> None:
        """Release all registrations and subscribers. Idempotent."""
        with self._state_lock:
            if self._state is WatchState.CLOSED:
                return
            self._state = WatchState.CLOSED

        self._tree.close()
        self._dispatcher.clear()
        logger.debug(f"Closed watcher for {self._path}")

    def __repr__(self) -> str:
        return f"<DirectoryWatcher {self._path} ({self._state.value})>"
