"""
Subscriber fan-out for one watch root.

The dispatcher turns absolute paths into root-relative ones, applies the
root's filters and calls every matching subscriber callback in subscription
order. A failing subscriber never prevents delivery to the others and never
propagates into the worker that dispatched the event.
"""

import asyncio
import logging
import threading
from collections import Counter
from pathlib import Path
from typing import Any, Callable, Optional

from treewatch.patterns import FilterSet
from treewatch.subscriber import SubscriberLike
from treewatch.types import ChangeKind, Notification

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[SubscriberLike, BaseException], None]


class Dispatcher:
    """
    Subscriber collection and notification fan-out.

    Subscribing and unsubscribing are safe from any thread, including from
    inside a callback; each dispatch iterates a snapshot of the subscribers.

    Callbacks returning a coroutine are scheduled on ``loop`` when given,
    on the calling thread's running loop otherwise, or run to completion
    with ``asyncio.run`` as a last resort.
    """

    def __init__(
        self,
        watcher: Any,
        base_path: Path,
        filters: FilterSet,
        error_handler: Optional[ErrorHandler] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self._watcher = watcher
        self._base_path = base_path
        self._filters = filters
        self._error_handler = error_handler
        self._loop = loop
        self._subscribers: list[SubscriberLike] = []
        self._lock = threading.Lock()
        self._delivered: Counter = Counter()
        self._failures = 0

    def subscribe(self, subscriber: SubscriberLike) -> None:
        with self._lock:
            self._subscribers = self._subscribers + [subscriber]

    def unsubscribe(self, subscriber: SubscriberLike) -> None:
        """Remove a subscriber. Unknown subscribers are ignored."""
        with self._lock:
            self._subscribers = [s for s in self._subscribers if s is not subscriber]

    def clear(self) -> None:
        with self._lock:
            self._subscribers = []

    @property
    def subscribers(self) -> list[SubscriberLike]:
        return list(self._subscribers)

    def notify(self, kind: ChangeKind, path: Path) -> None:
        """
        Deliver a change to every interested subscriber.

        Args:
            kind: Type of change
            path: Absolute path of the changed entry
        """
        try:
            relative = Path(path).relative_to(self._base_path)
        except ValueError:
            logger.warning(f"Ignoring {kind.value} event outside {self._base_path}: {path}")
            return

        if not self._filters.is_empty() and not self._filters.should_track(relative):
            return

        self._deliver(Notification(kind, relative))

    def _deliver(self, notification: Notification) -> None:
        for subscriber in self._subscribers:
            callback = subscriber.callback_for(notification.kind)
            if callback is None:
                continue
            try:
                result = callback(self._watcher, notification.path)
                if asyncio.iscoroutine(result):
                    self._schedule(subscriber, result)
            except Exception as e:
                self._report(subscriber, e)
                continue

            with self._lock:
                self._delivered[notification.kind] += 1

    def _schedule(self, subscriber: SubscriberLike, coro) -> None:
        loop = self._loop
        if loop is not None and loop.is_running():
            future = asyncio.run_coroutine_threadsafe(coro, loop)
        else:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
            if loop is None:
                asyncio.run(coro)
                return
            future = loop.create_task(coro)

        def _done(fut) -> None:
            if fut.cancelled():
                return
            exc = fut.exception()
            if exc is not None:
                self._report(subscriber, exc)

        future.add_done_callback(_done)

    def _report(self, subscriber: SubscriberLike, exc: BaseException) -> None:
        with self._lock:
            self._failures += 1
        logger.error(f"Error in subscriber callback {subscriber!r}: {exc}", exc_info=exc)

        if self._error_handler is not None:
            try:
                self._error_handler(subscriber, exc)
            except Exception as e:
                logger.error(f"Error in subscriber error handler: {e}", exc_info=True)

    def stats(self) -> dict:
        """Delivered notifications per kind and subscriber failures."""
        with self._lock:
            return {
                "subscribers": len(self._subscribers),
                "created": self._delivered[ChangeKind.CREATED],
                "modified": self._delivered[ChangeKind.MODIFIED],
                "deleted": self._delivered[ChangeKind.DELETED],
                "failures": self._failures,
            }
