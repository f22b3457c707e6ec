"""
Glob pattern compilation and include/exclude filtering.

Globs use ``/`` or ``\\`` as segment separators and support three wildcards:

- ``*``  any run of characters within one path segment
- ``?``  any single character
- ``**`` (as a whole segment) zero or more segments

A trailing separator is shorthand for "this directory and everything
beneath it" (``foo/`` is ``foo/**``). Every pattern must match the whole
relative path, and matching is case-sensitive.

Gitignore-style ignore files are also supported as an extra exclusion source,
matched with pathspec the same way the rest of the ecosystem reads them.
"""

import logging
import os
import re
import threading
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Optional, Union

from pathspec import PathSpec

logger = logging.getLogger(__name__)

PathLike = Union[str, PurePath]

_SEGMENT_SPLIT = re.compile(r"[/\\]")
_GLOBSTAR = "**"


@dataclass(frozen=True)
class PatternMatcher:
    """Immutable compiled form of one glob. Safe to share between threads."""

    glob: str
    separator: str
    regex: "re.Pattern[str]"

    def matches(self, path: str) -> bool:
        """Return True if ``path`` (already using ``separator``) matches entirely."""
        return self.regex.fullmatch(path) is not None


def compile_glob(glob: str, separator: Optional[str] = None) -> PatternMatcher:
    """
    Compile a glob string into a PatternMatcher.

    Args:
        glob: Pattern using ``/`` or ``\\`` between segments
        separator: Path separator of the probed paths (default: os.sep)

    Returns:
        PatternMatcher anchored to the whole path
    """
    separator = separator or os.sep
    return PatternMatcher(
        glob=glob,
        separator=separator,
        regex=re.compile(_translate(_expand_trailing(glob), separator)),
    )


def _expand_trailing(glob: str) -> str:
    if glob.endswith(("/", "\\")):
        return glob + _GLOBSTAR
    return glob


def _translate(glob: str, separator: str) -> str:
    sep = re.escape(separator)
    parts: list[str] = []
    append_separator = False

    for segment in _SEGMENT_SPLIT.split(glob):
        if append_separator:
            parts.append(sep)
        else:
            append_separator = True

        if segment == _GLOBSTAR:
            # Spans segments itself, so no separator is forced after it
            parts.append(".*?")
            append_separator = False
        else:
            parts.append(_translate_segment(segment, sep))

    return "".join(parts)


def _translate_segment(segment: str, sep: str) -> str:
    out = []
    for char in segment:
        if char == "*":
            out.append(f"[^{sep}]*?")
        elif char == "?":
            out.append(".")
        else:
            out.append(re.escape(char))
    return "".join(out)


class FilterSet:
    """
    Include/exclude pattern sets for one watch root.

    ``should_track(path)`` is True when there are no includes or at least one
    include matches, and no exclude (or ignore-file pattern) matches.

    Patterns may be added at any time, including while events are being
    dispatched on worker threads. Adding a pattern never adds or removes
    native registrations retroactively; see ``prunes``.
    """

    def __init__(self, separator: Optional[str] = None) -> None:
        self._separator = separator or os.sep
        self._includes: list[PatternMatcher] = []
        self._excludes: list[PatternMatcher] = []
        # Stems of "<stem>/**" excludes: a directory matching a stem has its
        # whole subtree excluded
        self._subtree_excludes: list[PatternMatcher] = []
        self._ignore_specs: list[PathSpec] = []
        self._lock = threading.Lock()

    @property
    def separator(self) -> str:
        return self._separator

    def include(self, glob: str) -> PatternMatcher:
        matcher = compile_glob(glob, self._separator)
        with self._lock:
            self._includes = self._includes + [matcher]
        logger.debug(f"Include pattern added: {glob!r}")
        return matcher

    def exclude(self, glob: str) -> PatternMatcher:
        matcher = compile_glob(glob, self._separator)
        stem = _subtree_stem(glob)
        with self._lock:
            self._excludes = self._excludes + [matcher]
            if stem is not None:
                self._subtree_excludes = self._subtree_excludes + [
                    compile_glob(stem, self._separator)
                ]
        logger.debug(f"Exclude pattern added: {glob!r}")
        return matcher

    def exclude_ignore_file(self, ignore_file: Path) -> int:
        """
        Exclude everything matched by a gitignore-style file.

        Blank lines and ``#`` comments are skipped. An unreadable file is
        logged and contributes no patterns.

        Returns:
            Number of patterns loaded
        """
        try:
            lines = Path(ignore_file).read_text(encoding="utf-8").splitlines()
        except OSError as e:
            logger.warning(f"Could not read ignore file {ignore_file}: {e}")
            return 0

        patterns = [
            line for line in lines if line.strip() and not line.strip().startswith("#")
        ]
        if not patterns:
            return 0

        spec = PathSpec.from_lines("gitwildmatch", patterns)
        with self._lock:
            self._ignore_specs = self._ignore_specs + [spec]

        logger.info(f"Loaded {len(patterns)} ignore patterns from {ignore_file}")
        return len(patterns)

    def should_track(self, path: PathLike) -> bool:
        """Check a path relative to the watch root against every pattern."""
        probe = self._normalise(path)
        includes, excludes, specs = self._includes, self._excludes, self._ignore_specs

        if includes and not any(m.matches(probe) for m in includes):
            return False
        if any(m.matches(probe) for m in excludes):
            return False
        if specs:
            posix = PurePath(path).as_posix()
            if any(spec.match_file(posix) for spec in specs):
                return False
        return True

    def prunes(self, relative_dir: PathLike) -> bool:
        """
        Check whether everything beneath ``relative_dir`` is excluded.

        Only then may the directory's contents go unregistered: an include
        such as ``**/*.json`` can match at any depth, so includes never prune.
        """
        relative_dir = PurePath(relative_dir)
        if relative_dir == PurePath("."):
            return False

        probe = self._normalise(relative_dir)
        if any(m.matches(probe) for m in self._subtree_excludes):
            return True
        specs = self._ignore_specs
        if specs:
            posix = relative_dir.as_posix() + "/"
            return any(spec.match_file(posix) for spec in specs)
        return False

    def is_empty(self) -> bool:
        return not (self._includes or self._excludes or self._ignore_specs)

    def _normalise(self, path: PathLike) -> str:
        probe = str(PurePath(path))
        if self._separator != os.sep:
            probe = probe.replace(os.sep, self._separator)
        return probe


def _subtree_stem(glob: str) -> Optional[str]:
    """Return ``stem`` for globs of the form ``stem/**`` (or the bare ``**``)."""
    glob = _expand_trailing(glob)
    if glob == _GLOBSTAR:
        return _GLOBSTAR
    if len(glob) > 3 and glob[-3] in "/\\" and glob.endswith(_GLOBSTAR):
        return glob[:-3]
    return None
