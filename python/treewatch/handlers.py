"""
Internal event handler for watchdog file system monitoring.

This module provides the low-level handler that interfaces with the watchdog
library, translating its events for one watched directory into raw events on
that directory's WatchKey.
"""

import os

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)

from treewatch.channel import WatchKey
from treewatch.types import RawEventKind


class KeyEventHandler(FileSystemEventHandler):
    """
    Internal event handler for one non-recursive watchdog watch.

    Only events about direct children of the watched directory become raw
    events. Deletion of the watched directory itself invalidates the key.
    Moves are reported as a delete of the old name plus a create of the new
    name when it stays in this directory. Open/close events are dropped.
    """

    def __init__(self, key: WatchKey) -> None:
        """
        Initialize event handler.

        Args:
        -----
        key: WatchKey receiving this directory's events
        """
        self.key = key
        self._directory = os.fspath(key.path)

    def dispatch(self, event: FileSystemEvent) -> None:
        """Dispatch file system events to the key."""
        src_path = os.fsdecode(event.src_path)

        if event.event_type == EVENT_TYPE_DELETED and src_path == self._directory:
            self.key.invalidate()
            return

        if event.event_type == EVENT_TYPE_MOVED:
            name = self._child_name(src_path)
            if name is not None:
                self.key.signal_event(RawEventKind.DELETE, name)
            dest_name = self._child_name(os.fsdecode(getattr(event, "dest_path", "") or ""))
            if dest_name is not None:
                self.key.signal_event(RawEventKind.CREATE, dest_name)
            return

        kind = {
            EVENT_TYPE_CREATED: RawEventKind.CREATE,
            EVENT_TYPE_MODIFIED: RawEventKind.MODIFY,
            EVENT_TYPE_DELETED: RawEventKind.DELETE,
        }.get(event.event_type)
        if kind is None:
            return

        name = self._child_name(src_path)
        if name is not None:
            self.key.signal_event(kind, name)

    def _child_name(self, path: str):
        """Return the entry name if ``path`` is a direct child of the watched directory."""
        if not path:
            return None
        parent, name = os.path.split(path)
        if not name or parent != self._directory:
            return None
        return name
