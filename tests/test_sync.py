"""Tests for sync module."""

import time
from unittest.mock import MagicMock

import pytest

from squad_memory.indexer.models import SyncResult, SyncStats
from squad_memory.sync import SyncManager


def wait_for_condition(condition_fn, timeout: float = 3.0, interval: float = 0.1) -> bool:
    """Wait for a condition to become true, polling at interval.

    Returns:
        True if condition was met, False if timeout was reached.
    """
    deadline = time.time() + timeout
    while time.time() < deadline:
        if condition_fn():
            return True
        time.sleep(interval)
    return False


def make_registry(*names: str, changed: int = 0) -> MagicMock:
    registry = MagicMock()
    registry.names.return_value = list(names)
    registry.get.return_value.index.return_value = SyncResult(
        stats=SyncStats(files_changed=changed)
    )
    return registry


class TestSyncManager:
    """Tests for SyncManager class."""

    def test_init_requires_positive_interval(self):
        registry = make_registry()
        with pytest.raises(ValueError, match="Sync interval must be positive"):
            SyncManager(registry, 0)
        with pytest.raises(ValueError, match="Sync interval must be positive"):
            SyncManager(registry, -1)

    def test_start_creates_daemon_thread(self):
        manager = SyncManager(make_registry(), 1)

        manager.start()
        try:
            assert manager.running
            assert manager._thread.daemon is True
            assert manager._thread.name == "squad-memory-sync"
        finally:
            manager.stop()

    def test_stop_terminates_thread(self):
        manager = SyncManager(make_registry(), 1)
        manager.start()
        manager.stop()
        assert not manager.running

    def test_stop_without_start(self):
        SyncManager(make_registry(), 1).stop()

    def test_start_twice_warns(self, caplog):
        manager = SyncManager(make_registry(), 1)
        manager.start()
        try:
            manager.start()
            assert "already running" in caplog.text
        finally:
            manager.stop()

    def test_indexes_every_project(self):
        registry = make_registry("api", "web", changed=1)
        manager = SyncManager(registry, 1)

        manager.start()
        try:
            assert wait_for_condition(lambda: registry.get.call_count >= 2)
        finally:
            manager.stop()

        called = [c.args[0] for c in registry.get.call_args_list]
        assert "api" in called and "web" in called

    def test_errors_do_not_stop_other_projects(self, caplog):
        registry = MagicMock()
        registry.names.return_value = ["broken", "ok"]
        ok_handle = MagicMock()
        ok_handle.index.return_value = SyncResult()
        broken_handle = MagicMock()
        broken_handle.index.side_effect = RuntimeError("disk full")
        registry.get.side_effect = lambda name: broken_handle if name == "broken" else ok_handle

        SyncManager(registry, 1).sync_once()

        ok_handle.index.assert_called_once()
        assert "Error during auto-sync of broken" in caplog.text

    def test_loop_survives_errors(self):
        registry = make_registry("api")
        registry.get.return_value.index.side_effect = RuntimeError("boom")
        manager = SyncManager(registry, 1)

        manager.start()
        try:
            assert wait_for_condition(lambda: registry.get.call_count >= 2, timeout=4.0)
            assert manager.running
        finally:
            manager.stop()
