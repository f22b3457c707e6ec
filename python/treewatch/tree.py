"""
Watch tree maintenance.

A WatchTree keeps the set of channel registrations for one watch root in
step with the directories on disk:

- the initial walk registers every directory under the root
- a created directory is walked again ("backfilled"): it and its contents may
  have been created before any watch existed on it, so every directory found
  is registered and every entry is reported as created
- a removed directory's registration (and those of its descendants) is
  released, reporting a single deletion for the removed directory only

Paths handed to the notify callback are absolute; the dispatcher makes them
relative to the root.
"""

import logging
import os
import threading
from pathlib import Path
from typing import Callable, Iterator, Optional

from treewatch.channel import WatchChannel, WatchKey
from treewatch.patterns import FilterSet
from treewatch.types import ChangeKind, RawEvent, RawEventKind

logger = logging.getLogger(__name__)

NotifyCallback = Callable[[ChangeKind, Path], None]

# Errors meaning the directory is gone rather than unreadable
VANISHED_ERRORS = (FileNotFoundError, NotADirectoryError)


class TreeWalk:
    """
    Lazy depth-first traversal yielding ``(path, is_dir)`` pairs.

    The root is yielded first and every directory is yielded before its
    contents. Symlinks are reported as files and never followed. Each
    iteration starts a fresh walk.

    Calling ``prune()`` straight after a directory was yielded skips its
    contents. A directory that cannot be listed is logged and its contents
    skipped; with ``strict`` set, a directory that no longer exists raises
    instead, so callers can stop walking a vanished subtree.
    """

    def __init__(self, root: Path, strict: bool = False) -> None:
        self.root = root
        self.strict = strict
        self._pruned = False

    def prune(self) -> None:
        self._pruned = True

    def __iter__(self) -> Iterator[tuple[Path, bool]]:
        stack = [self.root]
        while stack:
            directory = stack.pop()
            self._pruned = False
            yield directory, True
            if self._pruned:
                continue

            try:
                with os.scandir(directory) as it:
                    entries = sorted(it, key=lambda entry: entry.name)
            except VANISHED_ERRORS:
                if self.strict:
                    raise
                logger.debug(f"Directory {directory} vanished before it was listed")
                continue
            except OSError as e:
                logger.warning(f"Skipping unreadable directory {directory}: {e}")
                continue

            subdirs = []
            for entry in entries:
                try:
                    is_dir = entry.is_dir(follow_symlinks=False)
                except OSError:
                    is_dir = False
                if is_dir:
                    subdirs.append(Path(entry.path))
                else:
                    yield Path(entry.path), False

            stack.extend(reversed(subdirs))


class WatchTree:
    """
    Registrations of one watch root.

    Holds at most one live key per absolute directory path. Safe to drive
    from several worker threads; notifications are emitted outside the lock.
    """

    def __init__(
        self,
        base_path: Path,
        channel: WatchChannel,
        notify: NotifyCallback,
        filters: Optional[FilterSet] = None,
    ) -> None:
        self._base_path = base_path
        self._channel = channel
        self._notify = notify
        self._filters = filters or FilterSet()
        self._keys: dict[Path, WatchKey] = {}
        self._paths: dict[WatchKey, Path] = {}
        # Directories retired by key invalidation whose parent may still report them
        self._retired: set[Path] = set()
        self._lock = threading.RLock()

    @property
    def base_path(self) -> Path:
        return self._base_path

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def initialize(self) -> int:
        """
        Register every directory under the base path.

        A directory that cannot be registered (e.g. permission denied) is
        skipped together with its subtree; its siblings are still walked.

        Returns:
            Number of directories registered
        """
        walk = TreeWalk(self._base_path)
        for path, is_dir in walk:
            if not is_dir:
                continue
            if self._is_pruned(path):
                walk.prune()
                continue
            try:
                self.register(path)
            except OSError as e:
                if path == self._base_path:
                    raise
                logger.warning(f"Could not watch {path}, skipping subtree: {e}")
                walk.prune()

        count = len(self._keys)
        logger.info(f"Watching {count} directories under {self._base_path}")
        return count

    def register(self, path: Path) -> WatchKey:
        """Register a directory. Registering an already watched path returns its key."""
        with self._lock:
            key = self._claim(path)
            return key if key is not None else self._keys[path]

    def _claim(self, path: Path) -> Optional[WatchKey]:
        """Register ``path`` unless it already has a live key; None if it had one."""
        with self._lock:
            key = self._keys.get(path)
            if key is not None and key.is_valid():
                return None
            if key is not None:
                self._paths.pop(key, None)

            key = self._channel.register(path)
            self._keys[path] = key
            self._paths[key] = path
            self._retired.discard(path)
            return key

    def tracks(self, key: WatchKey) -> bool:
        return key in self._paths

    def path_for(self, key: WatchKey) -> Optional[Path]:
        return self._paths.get(key)

    def is_registered(self, path: Path) -> bool:
        return path in self._keys

    def registered_paths(self) -> list[Path]:
        with self._lock:
            return sorted(self._keys)

    def close(self) -> None:
        """Release every registration."""
        with self._lock:
            keys = list(self._paths)
            self._keys.clear()
            self._paths.clear()
            self._retired.clear()
        for key in keys:
            self._channel.release(key)

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def handle_event(self, key: WatchKey, event: RawEvent) -> None:
        """Translate one raw event on ``key`` into notifications."""
        directory = self.path_for(key)
        if directory is None or event.kind is RawEventKind.OVERFLOW:
            return

        path = directory / event.context if event.context else directory

        if event.kind is RawEventKind.CREATE:
            if path.is_dir() and not path.is_symlink():
                self.handle_directory_created(key, path)
            else:
                with self._lock:
                    self._retired.discard(path)
                self._notify(ChangeKind.CREATED, path)
        elif event.kind is RawEventKind.MODIFY:
            self.handle_file_event(key, ChangeKind.MODIFIED, event.context)
        elif event.kind is RawEventKind.DELETE:
            self.handle_file_event(key, ChangeKind.DELETED, event.context)

    def handle_directory_created(self, key: WatchKey, created_path: Path) -> None:
        """
        Backfill a newly created directory.

        Registers the directory and every directory below it, reporting each
        directory and file found as created. A directory another walk already
        registered is skipped with its contents, so concurrent walks never
        report an entry twice. A directory that cannot be watched is reported
        but its contents are skipped; its siblings are still walked. If the
        subtree disappears during the walk, the walk stops there without
        reporting what it never reached.
        """
        if not self.tracks(key):
            return

        walk = TreeWalk(created_path, strict=True)
        try:
            for path, is_dir in walk:
                if is_dir and self._is_pruned(path):
                    walk.prune()
                elif is_dir:
                    try:
                        claimed = self._claim(path)
                    except VANISHED_ERRORS:
                        raise
                    except OSError as e:
                        logger.warning(f"Could not watch {path}, skipping subtree: {e}")
                        walk.prune()
                    else:
                        if claimed is None:
                            # Reached by another backfill walk
                            walk.prune()
                            continue
                self._notify(ChangeKind.CREATED, path)
        except VANISHED_ERRORS as e:
            logger.debug(f"Backfill of {created_path} stopped: {e}")

    def handle_file_event(self, key: WatchKey, kind: ChangeKind, name: Optional[str]) -> None:
        """
        Report a modification or deletion of an entry of a watched directory.

        Directory modifications are ignored. Deleting a registered directory
        retires its registration instead, reporting it once.
        """
        directory = self.path_for(key)
        if directory is None or not name:
            return
        path = directory / name

        if kind is ChangeKind.MODIFIED:
            if self.is_registered(path) or path.is_dir():
                return
            self._notify(ChangeKind.MODIFIED, path)
        elif kind is ChangeKind.DELETED:
            with self._lock:
                if path in self._retired:
                    # Already reported when its own key was invalidated
                    self._retired.discard(path)
                    return
                registered = self.is_registered(path)
            if registered:
                self._retire(path)
            else:
                self._notify(ChangeKind.DELETED, path)

    def handle_key_invalidated(self, key: WatchKey) -> None:
        """
        Handle a key the channel reports as no longer valid.

        Reports exactly one deletion for the directory; registrations of its
        descendants are released without further notifications. Keys that
        were already released are ignored.
        """
        path = self.path_for(key)
        if path is None:
            return
        self._retire(path, invalidated=True)

    def _retire(self, path: Path, invalidated: bool = False) -> None:
        with self._lock:
            key = self._keys.pop(path, None)
            if key is None:
                return
            self._paths.pop(key, None)
            released = [key]
            for child in [p for p in self._keys if path in p.parents]:
                child_key = self._keys.pop(child)
                self._paths.pop(child_key, None)
                released.append(child_key)
            # Nothing below a removed directory is reported by its parent any more
            self._retired = {p for p in self._retired if path not in p.parents}
            if invalidated and path != self._base_path:
                self._retired.add(path)

        for released_key in released:
            self._channel.release(released_key)
        logger.debug(f"Directory {path} removed ({len(released)} registrations released)")
        self._notify(ChangeKind.DELETED, path)

    def _is_pruned(self, path: Path) -> bool:
        if path == self._base_path:
            return False
        return self._filters.prunes(path.relative_to(self._base_path))
