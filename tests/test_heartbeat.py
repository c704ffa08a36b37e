"""
Tests for the in-process collection scheduler.
"""

import time
from unittest.mock import MagicMock, patch

import pytest

from gymtrack.core import heartbeat
from gymtrack.core.heartbeat import (
    get_status,
    register_task,
    run_task,
    should_run_task,
    start,
    stop,
)


@pytest.fixture(autouse=True)
def reset_heartbeat():
    """Reset heartbeat state between tests."""
    heartbeat.tasks.clear()
    heartbeat.running = False
    heartbeat.shutdown_event = None


class TestHeartbeatRegistration:
    """Test task registration functionality."""

    def test_register_task_valid(self):
        """Test registering a valid task."""
        register_task("gym_history", 300, lambda: None)

        assert list(heartbeat.tasks) == ["gym_history"]

    def test_register_task_invalid_func(self):
        """Test registering with non-callable function."""
        with pytest.raises(ValueError, match="Task function must be callable"):
            register_task("bad_task", 30, "not_callable")

    def test_register_task_invalid_interval(self):
        """Test registering with invalid interval."""
        with pytest.raises(ValueError, match="Interval must be >= 1 second"):
            register_task("bad_task", 0, lambda: None)

    def test_register_duplicate_task(self):
        """Test registering task with existing name replaces it."""
        register_task("duplicate", 30, lambda: None)
        register_task("duplicate", 60, lambda: None)

        assert len(heartbeat.tasks) == 1
        assert heartbeat.tasks["duplicate"]["interval"] == 60


class TestHeartbeatScheduling:
    """Test task scheduling logic."""

    def test_should_run_first_time(self):
        """Task should run immediately when never run before."""
        task_info = {"last_run": None, "interval": 30}
        assert should_run_task("test", task_info) is True

    def test_should_run_when_due(self):
        """Task should run when interval has elapsed."""
        task_info = {"last_run": time.monotonic() - 35, "interval": 30}
        assert should_run_task("test", task_info) is True

    def test_should_not_run_too_soon(self):
        """Task should not run before interval elapsed."""
        task_info = {"last_run": time.monotonic() - 10, "interval": 30}
        assert should_run_task("test", task_info) is False


class TestHeartbeatExecution:
    """Test task execution and heartbeat loop."""

    def test_run_task_success(self):
        """Test successful task execution."""
        mock_func = MagicMock()
        task_info = {"func": mock_func, "interval": 30, "last_run": None, "failures": 0}

        run_task("test_task", task_info)

        mock_func.assert_called_once()
        assert task_info["last_run"] is not None
        assert task_info["failures"] == 0

    def test_run_task_failure(self):
        """A failed run raises, counts as a run and bumps the failure counter."""
        mock_func = MagicMock(side_effect=ValueError("database is locked"))
        task_info = {"func": mock_func, "interval": 30, "last_run": None, "failures": 0}

        with pytest.raises(RuntimeError, match="Task 'failing_task' failed"):
            run_task("failing_task", task_info)

        assert task_info["last_run"] is not None
        assert task_info["failures"] == 1

    def test_start_runs_due_tasks(self):
        """The loop runs a never-run task on its first cycle."""
        mock_func = MagicMock()
        register_task("gym_history", 300, mock_func)

        start(poll_interval=0, max_cycles=2)

        mock_func.assert_called_once()
        assert heartbeat.running is False

    def test_start_isolates_task_errors(self):
        """A failing task does not stop the loop."""
        failing = MagicMock(side_effect=RuntimeError("collector failed"))
        healthy = MagicMock()
        register_task("failing", 1, failing)
        register_task("healthy", 1, healthy)

        start(poll_interval=0, max_cycles=1)

        failing.assert_called_once()
        healthy.assert_called_once()
        assert heartbeat.tasks["failing"]["failures"] == 1

    @patch('gymtrack.core.heartbeat.running', True)
    def test_start_already_running(self):
        """Test starting when already running raises error."""
        with pytest.raises(RuntimeError, match="already running"):
            start()

    def test_stop_running_heartbeat(self):
        """Stopping sets the shutdown event."""
        heartbeat.running = True
        heartbeat.shutdown_event = MagicMock()

        stop()

        assert heartbeat.running is False
        heartbeat.shutdown_event.set.assert_called_once()

    def test_stop_not_running_heartbeat(self):
        """Test stopping heartbeat that isn't running."""
        with patch('gymtrack.core.heartbeat.logger') as mock_logger:
            stop()
        mock_logger.info.assert_called_with("Heartbeat not running")


class TestHeartbeatStatus:
    """Test heartbeat status and monitoring."""

    def test_get_status_stopped(self):
        """Test status when heartbeat is stopped."""
        status = get_status()
        assert status["status"] == "stopped"
        assert status["tasks"] == {}

    def test_get_status_running(self):
        """Test status when heartbeat is running."""
        with patch('gymtrack.core.heartbeat.running', True):
            register_task("gym_history", 60, lambda: None)
            status = get_status()

        assert status["status"] == "running"
        assert status["tasks"]["gym_history"]["interval_sec"] == 60
        assert status["tasks"]["gym_history"]["next_run"] is None
