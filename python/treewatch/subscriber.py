"""
Subscriber definitions.

A Subscriber bundles up to three optional callbacks, one per change kind.
Each callback is called as ``callback(watcher, relative_path)`` and may be a
plain function or a coroutine function.

    from treewatch import Subscriber

    watcher.subscribe(Subscriber(on_create=lambda w, p: print("created", p)))
    watcher.subscribe(Subscriber.on_any(lambda w, p: print("changed", p)))

Subscribers can also be written as classes by overriding the hooks of
DirectoryWatcherSubscriber, or the single ``directory_changed`` hook of
DirectoryChangedSubscriber.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Union

from treewatch.types import ChangeKind

Callback = Callable[[Any, Path], Any]


@dataclass(eq=False)
class Subscriber:
    """Optional per-kind callbacks. Compared by identity for unsubscribe()."""

    on_create: Optional[Callback] = None
    on_modify: Optional[Callback] = None
    on_delete: Optional[Callback] = None

    @classmethod
    def on_any(cls, callback: Callback) -> "Subscriber":
        """Build a subscriber calling ``callback`` for every kind of change."""
        return cls(on_create=callback, on_modify=callback, on_delete=callback)

    def callback_for(self, kind: ChangeKind) -> Optional[Callback]:
        if kind is ChangeKind.CREATED:
            return self.on_create
        if kind is ChangeKind.MODIFIED:
            return self.on_modify
        if kind is ChangeKind.DELETED:
            return self.on_delete
        return None


class DirectoryWatcherSubscriber:
    """
    Base class for subscribers written as classes.

    Override any of the hooks; the defaults do nothing.
    """

    def entry_created(self, watcher, path: Path) -> Any:
        pass

    def entry_modified(self, watcher, path: Path) -> Any:
        pass

    def entry_deleted(self, watcher, path: Path) -> Any:
        pass

    def callback_for(self, kind: ChangeKind) -> Optional[Callback]:
        if kind is ChangeKind.CREATED:
            return self.entry_created
        if kind is ChangeKind.MODIFIED:
            return self.entry_modified
        if kind is ChangeKind.DELETED:
            return self.entry_deleted
        return None


class DirectoryChangedSubscriber(DirectoryWatcherSubscriber):
    """Base class routing every kind of change to ``directory_changed``."""

    def directory_changed(self, watcher, path: Path) -> Any:
        raise NotImplementedError

    def entry_created(self, watcher, path: Path) -> Any:
        return self.directory_changed(watcher, path)

    def entry_modified(self, watcher, path: Path) -> Any:
        return self.directory_changed(watcher, path)

    def entry_deleted(self, watcher, path: Path) -> Any:
        return self.directory_changed(watcher, path)


SubscriberLike = Union[Subscriber, DirectoryWatcherSubscriber]
