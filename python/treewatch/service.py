"""
Watch services: factories for DirectoryWatcher instances.

Every watcher created by a service registers with the service's single
channel. Signalled channel keys are consumed in one of two ways:

- PollingWatchService: nothing happens until the caller invokes ``poll()``,
  which drains whatever is pending without blocking. Suited to hosts that
  drive their own loop.
- ThreadPoolWatchService: ``start(n)`` spawns n worker threads, each blocking
  on the channel. A signalled key goes to exactly one worker.

Backfill walks and subscriber callbacks run on the thread that took the key,
so a slow callback holds up that worker. Hand heavy work off yourself.

Typical usage:
--------------
    from treewatch import Subscriber, ThreadPoolWatchService

    with ThreadPoolWatchService() as service:
        watcher = service.new_watcher("/workspace")
        watcher.exclude("build/")
        watcher.subscribe(Subscriber.on_any(lambda w, p: print(p)))
        service.start(thread_count=2)
        ...
"""

import asyncio
import logging
import threading
from pathlib import Path
from typing import Iterable, Optional, Union

from treewatch.channel import ChannelClosed, ObserverWatchChannel, WatchChannel, WatchKey
from treewatch.config import WatchConfig
from treewatch.dispatcher import ErrorHandler
from treewatch.types import RawEventKind
from treewatch.watcher import DirectoryWatcher

logger = logging.getLogger(__name__)


class WatchServiceClosed(RuntimeError):
    """Raised when using a service after close()."""


class WatchService:
    """
    Base factory owning one channel and the watchers registered with it.

    Args:
        channel: Channel to use (default: a watchdog-backed channel built
            from ``config``). The service takes ownership and closes it.
        config: Backend and separator settings
    """

    def __init__(
        self,
        channel: Optional[WatchChannel] = None,
        config: Optional[WatchConfig] = None,
    ) -> None:
        self._config = config or WatchConfig()
        if channel is None:
            channel = ObserverWatchChannel(
                backend=self._config.backend,
                polling_interval=self._config.polling_interval,
            )
        self._channel = channel
        self._watchers: list[DirectoryWatcher] = []
        self._lock = threading.Lock()
        self._closed = False

    @property
    def channel(self) -> WatchChannel:
        return self._channel

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def watchers(self) -> list[DirectoryWatcher]:
        return list(self._watchers)

    def new_watcher(
        self,
        path: Union[str, Path],
        separator: Optional[str] = None,
        includes: Iterable[str] = (),
        excludes: Iterable[str] = (),
        error_handler: Optional[ErrorHandler] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> DirectoryWatcher:
        """
        Create a watcher for ``path`` and everything beneath it.

        Returns once the initial walk has registered the whole tree.

        Raises:
            WatchServiceClosed: If the service was closed
            FileNotFoundError: If path doesn't exist
            ValueError: If path is not a directory
        """
        if self._closed:
            raise WatchServiceClosed("watch service is closed")

        watcher = DirectoryWatcher(
            self._channel,
            path,
            separator=separator or self._config.separator,
            includes=includes,
            excludes=excludes,
            error_handler=error_handler,
            loop=loop,
        )
        with self._lock:
            if self._closed:
                watcher.close()
                raise WatchServiceClosed("watch service is closed")
            self._watchers = self._watchers + [watcher]

        logger.info(f"Created watcher for {watcher.path}")
        return watcher

    def remove_watcher(self, watcher: DirectoryWatcher) -> None:
        """Close a watcher and stop routing events to it."""
        with self._lock:
            self._watchers = [w for w in self._watchers if w is not watcher]
        watcher.close()

    def handle_key(self, key: WatchKey) -> None:
        """
        Process one signalled key: route its events, then re-arm it.

        Every watcher tracking the key sees its events. An event one watcher
        fails on is logged and the remaining events are still handled. Lost
        events (OVERFLOW) are not reconciled.
        """
        events = key.poll_events()
        targets = [w for w in self._watchers if w.tracks(key)]

        for event in events:
            if event.kind is RawEventKind.OVERFLOW:
                logger.warning(f"Events lost for {key.path} (channel overflow)")
                continue
            for watcher in targets:
                try:
                    watcher.handle_event(key, event)
                except ChannelClosed:
                    return
                except Exception as e:
                    # Log errors but keep the worker running
                    logger.error(
                        f"Error handling {event.kind.name} {event.context} in {key.path}: {e}",
                        exc_info=True,
                    )

        if key.reset():
            return
        for watcher in targets:
            try:
                watcher.handle_key_invalidated(key)
            except ChannelClosed:
                return
            except Exception as e:
                logger.error(f"Error releasing {key.path}: {e}", exc_info=True)

    def close(self) -> None:
        """Close the channel and every watcher. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            watchers, self._watchers = self._watchers, []

        self._channel.close()
        for watcher in watchers:
            watcher.close()
        logger.info(f"Watch service closed ({len(watchers)} watchers)")

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class PollingWatchService(WatchService):
    """Service whose events are only processed when the caller polls."""

    def poll(self) -> int:
        """
        Process every key signalled so far, without blocking.

        Returns:
            Number of keys processed
        """
        if self._closed:
            raise WatchServiceClosed("watch service is closed")

        handled = 0
        while True:
            try:
                key = self._channel.poll()
            except ChannelClosed:
                break
            if key is None:
                break
            self.handle_key(key)
            handled += 1
        return handled


class ThreadPoolWatchService(WatchService):
    """Service processing events on a pool of worker threads."""

    def __init__(
        self,
        channel: Optional[WatchChannel] = None,
        config: Optional[WatchConfig] = None,
    ) -> None:
        super().__init__(channel=channel, config=config)
        self._threads: list[threading.Thread] = []

    def start(self, thread_count: Optional[int] = None) -> None:
        """
        Start worker threads.

        Raises:
            RuntimeError: If already running
            WatchServiceClosed: If the service was closed
        """
        if self._closed:
            raise WatchServiceClosed("watch service is closed")
        if self.is_running():
            raise RuntimeError("ThreadPoolWatchService is already running")

        thread_count = thread_count or self._config.thread_count
        if thread_count < 1:
            raise ValueError("thread_count must be at least 1")

        self._threads = [
            threading.Thread(
                target=self._run_worker, daemon=True, name=f"treewatch-worker-{i}"
            )
            for i in range(thread_count)
        ]
        for thread in self._threads:
            thread.start()
        logger.info(f"Started {thread_count} watch worker threads")

    def is_running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def _run_worker(self) -> None:
        while True:
            try:
                key = self._channel.take()
            except ChannelClosed:
                logger.debug(f"{threading.current_thread().name} exiting: channel closed")
                return
            self.handle_key(key)

    def close(self, timeout: float = 5.0) -> None:
        """Close the service and wait for workers to finish in-flight work."""
        super().close()
        current = threading.current_thread()
        for thread in self._threads:
            if thread is not current:
                thread.join(timeout=timeout)


def create_service(config: Optional[WatchConfig] = None) -> WatchService:
    """
    Build a service for ``config`` (default: from the environment).

    Threaded services are started with ``config.thread_count`` workers.
    """
    config = config or WatchConfig.from_env()
    if config.mode == "polling":
        return PollingWatchService(config=config)

    service = ThreadPoolWatchService(config=config)
    service.start(config.thread_count)
    return service
