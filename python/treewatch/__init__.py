"""
Recursive, filtered directory watching.

treewatch reports file and directory creation, modification and deletion
under a directory tree to subscribers. Newly created subdirectories are
watched automatically, and include/exclude globs narrow what is reported.

Typical usage:
--------------
    from treewatch import Subscriber, ThreadPoolWatchService

    service = ThreadPoolWatchService()
    watcher = service.new_watcher("/workspace")
    watcher.include("src/**")
    watcher.exclude("**/*.pyc")

    def on_modify(watcher, path):
        print(f"{path} changed")

    watcher.subscribe(Subscriber(on_modify=on_modify))
    service.start(thread_count=2)
    # ... events arrive on worker threads ...
    service.close()

Single-threaded hosts use PollingWatchService and call ``poll()`` from
their own loop instead of ``start()``.

Paths passed to callbacks are always relative to the watcher's root.

LIMITATIONS
===========

- Delivery is best effort: when the OS event buffer overflows, events are
  lost and are not reconciled afterwards.
- Deleting a watched directory is reported once, for that directory; its
  contents are not listed individually once its watch is gone. When a tree
  is removed bottom-up, a subdirectory whose removal is processed before
  its parent's is reported on its own as well.
- Patterns added after a watcher was created filter notifications but never
  change which directories are registered.
- No ordering is guaranteed between different watch roots.
"""

from treewatch.channel import ChannelClosed, ObserverWatchChannel, WatchChannel, WatchKey
from treewatch.config import WatchConfig
from treewatch.patterns import FilterSet, PatternMatcher, compile_glob
from treewatch.service import (
    PollingWatchService,
    ThreadPoolWatchService,
    WatchService,
    WatchServiceClosed,
    create_service,
)
from treewatch.subscriber import (
    DirectoryChangedSubscriber,
    DirectoryWatcherSubscriber,
    Subscriber,
)
from treewatch.types import ChangeKind, Notification, RawEvent, RawEventKind, WatchState
from treewatch.watcher import DirectoryWatcher

__all__ = [
    "ChangeKind",
    "ChannelClosed",
    "DirectoryChangedSubscriber",
    "DirectoryWatcher",
    "DirectoryWatcherSubscriber",
    "FilterSet",
    "Notification",
    "ObserverWatchChannel",
    "PatternMatcher",
    "PollingWatchService",
    "RawEvent",
    "RawEventKind",
    "Subscriber",
    "ThreadPoolWatchService",
    "WatchChannel",
    "WatchConfig",
    "WatchKey",
    "WatchService",
    "WatchServiceClosed",
    "WatchState",
    "compile_glob",
    "create_service",
]
