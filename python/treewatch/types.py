"""
Watch type definitions.

This module defines the core value types shared by the watch engine:
- ChangeKind enum: semantic notification kinds delivered to subscribers
- RawEventKind enum: low-level kinds reported by a watch channel
- RawEvent: one pending event on a watch key
- WatchState enum: lifecycle of a watched directory tree
- Notification: a (kind, relative path) pair
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional


class ChangeKind(Enum):
    """Semantic change kinds delivered to subscribers."""

    CREATED = "created"  # New file or directory appeared under the root
    MODIFIED = "modified"  # Existing file content changed
    DELETED = "deleted"  # File or directory removed


class RawEventKind(Enum):
    """Event kinds reported by a watch channel for one registered directory."""

    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"
    OVERFLOW = "overflow"  # Events were lost, no context


@dataclass
class RawEvent:
    """
    A pending channel event for one watch key.

    ``context`` is the name of the affected entry relative to the watched
    directory (None for OVERFLOW). ``count`` is greater than one when
    identical consecutive events were coalesced.
    """

    kind: RawEventKind
    context: Optional[str]
    count: int = 1


class WatchState(Enum):
    """Lifecycle of a DirectoryWatcher. There is no transition back from CLOSED."""

    INIT = "init"
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass(frozen=True)
class Notification:
    """A change delivered to subscribers, path relative to the watch root."""

    kind: ChangeKind
    path: Path
