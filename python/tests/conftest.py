"""
Pytest configuration and fixtures for treewatch tests.

Specialized fixtures are organized in the fixtures/ directory:
- fixtures.watcher: watch trees, recorders, channels and services
"""

import logging

import pytest

# Load fixture modules
pytest_plugins = [
    "tests.fixtures.watcher",
]


@pytest.fixture(autouse=True)
def treewatch_debug_logging(caplog):
    """Capture treewatch debug logs so failures show what the engine saw."""
    caplog.set_level(logging.DEBUG, logger="treewatch")
    yield
