"""
Cooperative scheduling loop for running the collector in-process at a fixed interval.

Tasks run one at a time on the loop thread, so a slow collection delays the
next one instead of overlapping it.
"""

import threading
import time
from typing import Callable, Dict

from ..util.logging import logger


tasks: Dict[str, Dict] = {}  # task_name -> {func, interval, last_run, failures}
running = False
shutdown_event = None


def register_task(name: str, interval_sec: int, func: Callable):
    """
    Register a task to be executed periodically.

    Args:
        name: Unique task identifier
        interval_sec: How often to run this task in seconds
        func: Function to call
    """
    if not callable(func):
        raise ValueError(f"Task function must be callable: {func}")

    if interval_sec < 1:
        raise ValueError(f"Interval must be >= 1 second: {interval_sec}")

    tasks[name] = {
        "func": func,
        "interval": interval_sec,
        "last_run": None,
        "failures": 0
    }

    logger.info(f"Registered heartbeat task '{name}' (every {interval_sec}s)")


def should_run_task(name: str, task_info: Dict) -> bool:
    """Check if a task should run this cycle."""
    if task_info["last_run"] is None:
        return True  # Run immediately if never run

    elapsed = time.monotonic() - task_info["last_run"]
    return elapsed >= task_info["interval"]


def run_task(name: str, task_info: Dict):
    """Execute a task and record timing; a failed run still counts as a run."""
    start_time = time.monotonic()

    try:
        task_info["func"]()
    except Exception as e:
        end_time = time.monotonic()
        task_info["last_run"] = end_time
        task_info["failures"] = task_info.get("failures", 0) + 1
        logger.log_heartbeat_task(name, start_time, end_time, status="failed", details={"error": str(e)[:200]})
        raise RuntimeError(f"Task '{name}' failed after {end_time - start_time:.2f}s: {e}") from e

    end_time = time.monotonic()
    task_info["last_run"] = end_time
    logger.log_heartbeat_task(name, start_time, end_time)


def start(poll_interval: float = 0.5, max_cycles: int = None):
    """
    Start the heartbeat loop.

    Checks task intervals and executes due tasks until stop() is called.

    Args:
        poll_interval: Seconds to sleep between checks
        max_cycles: Stop after this many loop iterations (None runs until stopped)
    """
    global running, shutdown_event

    if running:
        raise RuntimeError("Heartbeat already running")

    running = True
    shutdown_event = threading.Event()
    cycles = 0

    logger.info(f"Starting heartbeat loop with tasks: {list(tasks.keys())}")

    try:
        while running and not shutdown_event.is_set():
            for name, task_info in list(tasks.items()):
                if should_run_task(name, task_info):
                    try:
                        run_task(name, task_info)
                    except RuntimeError as e:
                        # Error isolation: the next due cycle retries
                        logger.error(str(e))

            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break

            shutdown_event.wait(poll_interval)

    except KeyboardInterrupt:
        logger.info("Heartbeat interrupted by user")
    finally:
        running = False
        logger.info("Heartbeat loop stopped")


def stop():
    """Stop the heartbeat loop gracefully."""
    global running

    if not running:
        logger.info("Heartbeat not running")
        return

    running = False

    if shutdown_event:
        shutdown_event.set()


def get_status():
    """Return current heartbeat status for monitoring."""
    return {
        "status": "running" if running else "stopped",
        "tasks": {
            name: {
                "interval_sec": info["interval"],
                "last_run": info["last_run"],
                "next_run": info["last_run"] + info["interval"] if info["last_run"] else None,
                "failures": info.get("failures", 0)
            }
            for name, info in tasks.items()
        }
    }
