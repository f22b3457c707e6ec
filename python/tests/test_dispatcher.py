"""
Tests for the subscriber dispatcher.

These tests focus on:
1. Root-relative paths and filter application
2. Subscription order and unsubscribe
3. Failure isolation and error handlers
4. Coroutine callbacks
"""

import asyncio
from pathlib import Path

import pytest

from treewatch.dispatcher import Dispatcher
from treewatch.patterns import FilterSet
from treewatch.subscriber import (
    DirectoryChangedSubscriber,
    DirectoryWatcherSubscriber,
    Subscriber,
)
from treewatch.types import ChangeKind

ROOT = Path("/watched/root")


@pytest.fixture
def filters():
    return FilterSet("/")


@pytest.fixture
def dispatcher(filters):
    return Dispatcher("watcher", ROOT, filters)


def collecting(log, label="s"):
    return Subscriber.on_any(lambda watcher, path: log.append((label, watcher, path)))


# ============================================================================
# DELIVERY TESTS
# ============================================================================


def test_paths_are_relative_to_root(dispatcher):
    log = []
    dispatcher.subscribe(collecting(log))

    dispatcher.notify(ChangeKind.CREATED, ROOT / "level1" / "file")

    assert log == [("s", "watcher", Path("level1/file"))]


def test_paths_outside_root_are_dropped(dispatcher, caplog):
    log = []
    dispatcher.subscribe(collecting(log))

    dispatcher.notify(ChangeKind.CREATED, Path("/elsewhere/file"))

    assert log == []
    assert "outside" in caplog.text


def test_only_matching_kind_is_called(dispatcher):
    calls = []
    dispatcher.subscribe(Subscriber(on_delete=lambda w, p: calls.append(p)))

    dispatcher.notify(ChangeKind.CREATED, ROOT / "a")
    dispatcher.notify(ChangeKind.MODIFIED, ROOT / "a")
    dispatcher.notify(ChangeKind.DELETED, ROOT / "a")

    assert calls == [Path("a")]


def test_filters_apply_to_relative_path(dispatcher, filters):
    log = []
    dispatcher.subscribe(collecting(log))
    filters.include("**/*.json")
    filters.exclude("build/**")

    dispatcher.notify(ChangeKind.MODIFIED, ROOT / "file")
    dispatcher.notify(ChangeKind.MODIFIED, ROOT / "data" / "file.json")
    dispatcher.notify(ChangeKind.MODIFIED, ROOT / "build" / "file.json")

    assert [path for _, _, path in log] == [Path("data/file.json")]


def test_empty_filters_skip_matching(dispatcher, filters, monkeypatch):
    log = []
    dispatcher.subscribe(collecting(log))

    def should_not_match(path):
        raise AssertionError(f"matched {path} against an empty filter set")

    monkeypatch.setattr(filters, "should_track", should_not_match)
    dispatcher.notify(ChangeKind.MODIFIED, ROOT / "any" / "file")

    assert [path for _, _, path in log] == [Path("any/file")]


def test_subscribers_called_in_subscription_order(dispatcher):
    log = []
    for label in ("first", "second", "third"):
        dispatcher.subscribe(collecting(log, label))

    dispatcher.notify(ChangeKind.CREATED, ROOT / "x")

    assert [label for label, _, _ in log] == ["first", "second", "third"]


def test_unsubscribe_by_identity(dispatcher):
    log = []
    first = collecting(log, "first")
    second = collecting(log, "second")
    dispatcher.subscribe(first)
    dispatcher.subscribe(second)

    dispatcher.unsubscribe(first)
    dispatcher.unsubscribe(Subscriber())  # Unknown: ignored
    dispatcher.notify(ChangeKind.CREATED, ROOT / "x")

    assert [label for label, _, _ in log] == ["second"]
    assert dispatcher.subscribers == [second]


def test_unsubscribe_from_inside_callback(dispatcher):
    """Test: the current dispatch still completes over its snapshot."""
    log = []
    late = collecting(log, "late")

    def leave(watcher, path):
        dispatcher.unsubscribe(late)

    dispatcher.subscribe(Subscriber(on_create=leave))
    dispatcher.subscribe(late)

    dispatcher.notify(ChangeKind.CREATED, ROOT / "x")
    dispatcher.notify(ChangeKind.CREATED, ROOT / "y")

    assert [path for _, _, path in log] == [Path("x")]


def test_clear_removes_everyone(dispatcher):
    dispatcher.subscribe(Subscriber())
    dispatcher.clear()
    assert dispatcher.subscribers == []


# ============================================================================
# CLASS-BASED SUBSCRIBER TESTS
# ============================================================================


def test_class_subscriber_hooks_default_to_noop(dispatcher):
    class CreatedOnly(DirectoryWatcherSubscriber):
        def __init__(self):
            self.created = []

        def entry_created(self, watcher, path):
            self.created.append(path)

    subscriber = CreatedOnly()
    dispatcher.subscribe(subscriber)

    dispatcher.notify(ChangeKind.CREATED, ROOT / "a")
    dispatcher.notify(ChangeKind.MODIFIED, ROOT / "a")
    dispatcher.notify(ChangeKind.DELETED, ROOT / "a")

    assert subscriber.created == [Path("a")]


def test_directory_changed_subscriber_receives_every_kind(dispatcher):
    class Changes(DirectoryChangedSubscriber):
        def __init__(self):
            self.changes = []

        def directory_changed(self, watcher, path):
            self.changes.append((watcher, path))

    subscriber = Changes()
    dispatcher.subscribe(subscriber)

    for kind in ChangeKind:
        dispatcher.notify(kind, ROOT / "x")

    assert subscriber.changes == [("watcher", Path("x"))] * 3


def test_unimplemented_directory_changed_is_isolated(dispatcher):
    log = []
    dispatcher.subscribe(DirectoryChangedSubscriber())
    dispatcher.subscribe(collecting(log))

    dispatcher.notify(ChangeKind.CREATED, ROOT / "x")

    assert len(log) == 1
    assert dispatcher.stats()["failures"] == 1


# ============================================================================
# FAILURE ISOLATION TESTS
# ============================================================================


def test_failing_subscriber_does_not_block_others(dispatcher, caplog):
    log = []

    def explode(watcher, path):
        raise RuntimeError("boom")

    dispatcher.subscribe(Subscriber.on_any(explode))
    dispatcher.subscribe(collecting(log))

    dispatcher.notify(ChangeKind.MODIFIED, ROOT / "file")

    assert [path for _, _, path in log] == [Path("file")]
    assert "boom" in caplog.text


def test_error_handler_receives_subscriber_and_exception(filters):
    errors = []
    dispatcher = Dispatcher(
        "watcher", ROOT, filters, error_handler=lambda s, e: errors.append((s, e))
    )
    failing = Subscriber(on_create=lambda w, p: 1 / 0)
    dispatcher.subscribe(failing)

    dispatcher.notify(ChangeKind.CREATED, ROOT / "x")

    assert len(errors) == 1
    assert errors[0][0] is failing
    assert isinstance(errors[0][1], ZeroDivisionError)


def test_failing_error_handler_is_contained(filters, caplog):
    def bad_handler(subscriber, exc):
        raise ValueError("handler broke")

    dispatcher = Dispatcher("watcher", ROOT, filters, error_handler=bad_handler)
    dispatcher.subscribe(Subscriber(on_create=lambda w, p: 1 / 0))

    dispatcher.notify(ChangeKind.CREATED, ROOT / "x")  # Should not raise

    assert "handler broke" in caplog.text


def test_stats_count_deliveries_and_failures(dispatcher):
    dispatcher.subscribe(Subscriber.on_any(lambda w, p: None))
    dispatcher.subscribe(Subscriber(on_delete=lambda w, p: 1 / 0))

    dispatcher.notify(ChangeKind.CREATED, ROOT / "a")
    dispatcher.notify(ChangeKind.MODIFIED, ROOT / "a")
    dispatcher.notify(ChangeKind.DELETED, ROOT / "a")

    assert dispatcher.stats() == {
        "subscribers": 2,
        "created": 1,
        "modified": 1,
        "deleted": 1,
        "failures": 1,
    }


# ============================================================================
# COROUTINE CALLBACK TESTS
# ============================================================================


def test_coroutine_callback_without_loop_runs_to_completion(dispatcher):
    seen = []

    async def on_create(watcher, path):
        await asyncio.sleep(0)
        seen.append(path)

    dispatcher.subscribe(Subscriber(on_create=on_create))
    dispatcher.notify(ChangeKind.CREATED, ROOT / "x")

    assert seen == [Path("x")]


def test_failing_coroutine_without_loop_is_reported(filters):
    errors = []

    async def on_create(watcher, path):
        raise RuntimeError("async boom")

    dispatcher = Dispatcher("w", ROOT, filters, error_handler=lambda s, e: errors.append(e))
    dispatcher.subscribe(Subscriber(on_create=on_create))
    dispatcher.notify(ChangeKind.CREATED, ROOT / "x")

    assert [str(e) for e in errors] == ["async boom"]


@pytest.mark.asyncio
async def test_coroutine_callback_scheduled_on_given_loop(filters):
    """Test: worker-thread notifications run coroutine callbacks on the app loop."""
    loop = asyncio.get_running_loop()
    done = asyncio.Event()
    seen = []

    async def on_modify(watcher, path):
        seen.append((path, asyncio.get_running_loop()))
        done.set()

    dispatcher = Dispatcher("w", ROOT, filters, loop=loop)
    dispatcher.subscribe(Subscriber(on_modify=on_modify))

    await asyncio.to_thread(dispatcher.notify, ChangeKind.MODIFIED, ROOT / "file")
    await asyncio.wait_for(done.wait(), timeout=2.0)

    assert seen == [(Path("file"), loop)]


@pytest.mark.asyncio
async def test_failing_coroutine_on_loop_is_reported(filters):
    reported = asyncio.Event()
    errors = []

    def handler(subscriber, exc):
        errors.append(exc)
        loop.call_soon_threadsafe(reported.set)

    async def on_create(watcher, path):
        raise RuntimeError("late failure")

    loop = asyncio.get_running_loop()
    dispatcher = Dispatcher("w", ROOT, filters, error_handler=handler, loop=loop)
    dispatcher.subscribe(Subscriber(on_create=on_create))

    await asyncio.to_thread(dispatcher.notify, ChangeKind.CREATED, ROOT / "x")
    await asyncio.wait_for(reported.wait(), timeout=2.0)

    assert [str(e) for e in errors] == ["late failure"]
