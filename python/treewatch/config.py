"""
Watch service configuration.

Settings can be passed explicitly or read from the environment:

    TREEWATCH_MODE           "threaded" (worker pool) or "polling" (caller drives)
    TREEWATCH_THREADS        worker threads for threaded mode (default: 1)
    TREEWATCH_BACKEND        "native" OS notifications or "polling" snapshots
    TREEWATCH_POLL_INTERVAL  seconds between snapshots for the polling backend
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

MODES = ("threaded", "polling")
BACKENDS = ("native", "polling")


@dataclass
class WatchConfig:
    mode: str = "threaded"
    thread_count: int = 1
    backend: str = "native"
    polling_interval: float = 1.0
    separator: Optional[str] = None

    def __post_init__(self) -> None:
        if self.mode not in MODES:
            raise ValueError(f"mode must be one of {MODES}, got {self.mode!r}")
        if self.backend not in BACKENDS:
            raise ValueError(f"backend must be one of {BACKENDS}, got {self.backend!r}")
        if self.thread_count < 1:
            raise ValueError("thread_count must be at least 1")
        if self.polling_interval <= 0:
            raise ValueError("polling_interval must be positive")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "WatchConfig":
        """Build a config from TREEWATCH_* variables, defaults for the rest."""
        env = os.environ if environ is None else environ
        defaults = cls()
        try:
            return cls(
                mode=env.get("TREEWATCH_MODE", defaults.mode),
                thread_count=int(env.get("TREEWATCH_THREADS", defaults.thread_count)),
                backend=env.get("TREEWATCH_BACKEND", defaults.backend),
                polling_interval=float(
                    env.get("TREEWATCH_POLL_INTERVAL", defaults.polling_interval)
                ),
            )
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid treewatch environment configuration: {e}") from e
