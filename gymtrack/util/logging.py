"""Structured logging for the gym history collector and query layer."""

import logging
from typing import Any, Dict, Optional


class StructuredLogger:
    """Structured logger for collection runs, ownership changes and query failures."""

    def __init__(self, name: str = "gymtrack"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def set_debug(self, enabled: bool = True):
        """Switch the logger between DEBUG and INFO."""
        self.logger.setLevel(logging.DEBUG if enabled else logging.INFO)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_collection(self, status: str, details: Dict[str, Any] = None):
        """Log the outcome of one collector run."""
        level = logging.INFO if status == "success" else logging.ERROR
        self.log_operation("collector.snapshot", status, details, level=level)

    def log_team_change(self, gym_id: str, old_team: Optional[int], new_team: Optional[int], changed_at: int):
        """Log a recorded ownership change (or first observation)."""
        details = {
            "gym_id": gym_id,
            "old_team": old_team,
            "new_team": new_team,
            "changed_at": changed_at,
            "first_observation": old_team is None
        }
        self.log_operation("collector.team_change", "recorded", details, level=logging.DEBUG)

    def log_retention_sweep(self, retention_sec: int, history_deleted: int, changes_deleted: int):
        """Log rows removed by the retention sweep."""
        details = {
            "retention_sec": retention_sec,
            "history_deleted": history_deleted,
            "changes_deleted": changes_deleted
        }
        self.log_operation("collector.retention", "swept", details)

    def log_query_failure(self, query: str, error: Exception):
        """Log a read-side failure that was absorbed into an empty response."""
        details = {
            "error_type": type(error).__name__,
            "error": str(error)[:200]
        }
        self.log_operation(f"query.{query}", "failed", details, level=logging.ERROR)

    def log_payload_warning(self, gym_id: Optional[str], reason: str):
        """Log a malformed defender payload that was skipped."""
        details = {"gym_id": gym_id, "reason": reason[:100]}
        self.log_operation("payload.defenders", "skipped", details, level=logging.WARNING)

    def log_heartbeat_task(self, task_name: str, start_time: float, end_time: float, status: str = "success", details: Dict[str, Any] = None):
        """Log heartbeat task execution."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"duration_ms": duration_ms}
        if details:
            log_details.update(details)
        elif status == "success":
            log_details["message"] = f"Heartbeat task '{task_name}' completed in {duration_ms}ms"
        elif status == "failed":
            log_details["message"] = f"Heartbeat task '{task_name}' failed after {duration_ms}ms"

        level = logging.INFO if status == "success" else logging.ERROR
        self.log_operation(f"heartbeat.{task_name}", status, log_details, level=level)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()
