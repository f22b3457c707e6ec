"""
Watch channels: the native event source behind every watcher.

A channel hands out one WatchKey per registered directory. Events for a
directory accumulate on its key; the first pending event signals the key,
which queues it on the channel exactly once. A consumer takes the key,
drains its events with ``poll_events()`` and calls ``reset()`` to make it
eligible for signalling again. Because a key sits in the queue at most once,
only one worker at a time processes a given directory and its events stay
ordered.

``WatchChannel`` is a complete in-memory channel: events are injected with
``WatchKey.signal_event``. ``ObserverWatchChannel`` feeds the same machinery
from watchdog observers (inotify, FSEvents, ReadDirectoryChangesW, or
snapshot polling), one non-recursive watch per registered directory.
"""

import logging
import os
import queue
import threading
from pathlib import Path
from typing import Optional, Union

from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from treewatch.types import RawEvent, RawEventKind

logger = logging.getLogger(__name__)

# Pending events per key before further events collapse into OVERFLOW
MAX_PENDING_EVENTS = 512


class ChannelClosed(Exception):
    """Raised by take() and poll() once the channel has been closed."""


class WatchKey:
    """
    Registration token for one watched directory.

    Keys compare by identity. A key becomes invalid when the channel reports
    the directory gone, when it is cancelled, or when the channel closes.
    """

    def __init__(self, channel: "WatchChannel", path: Path) -> None:
        self._channel = channel
        self._path = path
        self._lock = threading.Lock()
        self._events: list[RawEvent] = []
        self._signalled = False
        self._valid = True
        self._refs = 0

    @property
    def path(self) -> Path:
        """Absolute path of the watched directory."""
        return self._path

    def is_valid(self) -> bool:
        return self._valid

    def signal_event(self, kind: RawEventKind, context: Optional[str] = None) -> None:
        """
        Record an event for this directory and signal the key.

        Identical consecutive events are coalesced into one with a higher
        count. Past MAX_PENDING_EVENTS, events are recorded as OVERFLOW.
        """
        with self._lock:
            if not self._valid:
                return

            if len(self._events) >= MAX_PENDING_EVENTS:
                kind, context = RawEventKind.OVERFLOW, None

            last = self._events[-1] if self._events else None
            if last is not None and last.kind == kind and last.context == context:
                last.count += 1
            else:
                self._events.append(RawEvent(kind, context))

            self._signal_locked()

    def invalidate(self) -> None:
        """Mark the key invalid and signal it so a consumer observes reset() == False."""
        with self._lock:
            if not self._valid:
                return
            self._valid = False
            self._signal_locked()

    def poll_events(self) -> list[RawEvent]:
        """Remove and return every pending event."""
        with self._lock:
            events, self._events = self._events, []
            return events

    def reset(self) -> bool:
        """
        Re-arm the key after its events were consumed.

        Returns:
            False if the key is no longer valid, True otherwise
        """
        with self._lock:
            if not self._valid:
                return False
            if self._signalled and self._events:
                # Events arrived while we were processing: stay signalled
                self._channel._enqueue(self)
            else:
                self._signalled = False
            return True

    def cancel(self) -> None:
        """Invalidate without signalling. Pending events are discarded."""
        with self._lock:
            self._valid = False
            self._events = []

    def _signal_locked(self) -> None:
        if not self._signalled:
            self._signalled = True
            self._channel._enqueue(self)

    def __repr__(self) -> str:
        state = "valid" if self._valid else "invalid"
        return f"<WatchKey {self._path} ({state})>"


class WatchChannel:
    """
    In-memory watch channel.

    Owned by one service and shared by all of its watchers. Registering the
    same directory twice returns the same key; the key is only cancelled once
    every registration has been released.
    """

    def __init__(self) -> None:
        self._queue: "queue.Queue[Optional[WatchKey]]" = queue.Queue()
        self._keys: dict[Path, WatchKey] = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def register(self, path: Union[str, Path]) -> WatchKey:
        """
        Watch a directory for entry creation, modification and deletion.

        Raises:
            ChannelClosed: If the channel was closed
            OSError: If the directory cannot be watched
        """
        path = Path(path)
        with self._lock:
            if self._closed:
                raise ChannelClosed("watch channel is closed")

            key = self._keys.get(path)
            if key is not None and not key.is_valid():
                # Directory was removed and recreated before its old key was released
                self._stop_watch(key)
                key = None
            if key is None:
                key = WatchKey(self, path)
                self._start_watch(key)
                self._keys[path] = key
            key._refs += 1
            return key

    def release(self, key: WatchKey) -> None:
        """Drop one registration of ``key``; the last release cancels it."""
        with self._lock:
            if self._closed:
                return
            key._refs -= 1
            if key._refs > 0:
                return
            if self._keys.get(key.path) is key:
                del self._keys[key.path]

        key.cancel()
        self._stop_watch(key)

    def key_for(self, path: Union[str, Path]) -> Optional[WatchKey]:
        """Return the live key for a registered directory, if any."""
        key = self._keys.get(Path(path))
        if key is not None and key.is_valid():
            return key
        return None

    def take(self, timeout: Optional[float] = None) -> WatchKey:
        """
        Block until a key is signalled.

        Raises:
            ChannelClosed: If the channel is (or becomes) closed
            queue.Empty: If ``timeout`` elapsed first
        """
        if self._closed:
            raise ChannelClosed("watch channel is closed")
        key = self._queue.get(timeout=timeout)
        if key is None:
            # Wake the next blocked consumer too
            self._queue.put(None)
            raise ChannelClosed("watch channel is closed")
        return key

    def poll(self) -> Optional[WatchKey]:
        """Return the next signalled key, or None if nothing is pending."""
        if self._closed:
            raise ChannelClosed("watch channel is closed")
        try:
            key = self._queue.get_nowait()
        except queue.Empty:
            return None
        if key is None:
            self._queue.put(None)
            raise ChannelClosed("watch channel is closed")
        return key

    def close(self) -> None:
        """Cancel every key and wake all blocked consumers. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            keys = list(self._keys.values())
            self._keys.clear()

        for key in keys:
            key.cancel()
            self._stop_watch(key)
        self._shutdown()
        self._queue.put(None)
        logger.debug(f"Watch channel closed ({len(keys)} keys cancelled)")

    def _enqueue(self, key: WatchKey) -> None:
        if not self._closed:
            self._queue.put(key)

    # Backend hooks, no-ops for the in-memory channel

    def _start_watch(self, key: WatchKey) -> None:
        pass

    def _stop_watch(self, key: WatchKey) -> None:
        pass

    def _shutdown(self) -> None:
        pass

    def __enter__(self) -> "WatchChannel":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class ObserverWatchChannel(WatchChannel):
    """
    Watch channel backed by a watchdog observer.

    Each registered directory gets its own non-recursive watch; recursion is
    the watch tree's job. With ``backend="polling"`` directories are scanned
    every ``polling_interval`` seconds instead of using OS notifications,
    which also works on network and WSL2 Windows mounts.
    """

    def __init__(self, backend: str = "native", polling_interval: float = 1.0) -> None:
        super().__init__()
        if backend == "polling":
            self._observer = PollingObserver(timeout=polling_interval)
        elif backend == "native":
            self._observer = Observer()
        else:
            raise ValueError(f"Unknown watch backend: {backend!r}")

        self._watches: dict[WatchKey, object] = {}
        self._watches_lock = threading.Lock()
        self._observer.start()
        logger.info(f"Started {type(self._observer).__name__} watch channel")

    def _start_watch(self, key: WatchKey) -> None:
        from treewatch.handlers import KeyEventHandler

        watch = self._observer.schedule(
            KeyEventHandler(key), os.fspath(key.path), recursive=False
        )
        with self._watches_lock:
            self._watches[key] = watch

    def _stop_watch(self, key: WatchKey) -> None:
        with self._watches_lock:
            watch = self._watches.pop(key, None)
        if watch is None:
            return
        try:
            self._observer.unschedule(watch)
        except KeyError:
            # Observer already dropped it (stopped emitter)
            pass

    def _shutdown(self) -> None:
        self._observer.stop()
        if threading.current_thread() is not self._observer:
            self._observer.join(timeout=5.0)
