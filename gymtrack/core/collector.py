"""
Periodic gym snapshot collector.

One call of collect_snapshot appends a history sample, records team change
events and sweeps expired rows, all inside a single transaction. The call is
not idempotent: running it twice appends two samples. Invocations must not
overlap (single-instance scheduler); SQLite's BEGIN IMMEDIATE serialises two
runs that do overlap on the same database file.
"""

import sqlite3
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from . import config, dao
from .db import GymStore
from .schema import TeamCounts
from ..util.logging import logger


@dataclass
class CollectionReport:
    """Outcome of one collector run."""
    timestamp: int
    counts: TeamCounts = field(default_factory=TeamCounts)
    changes_recorded: int = 0
    first_observations: int = 0
    history_rows_purged: int = 0
    change_rows_purged: int = 0
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary for serialization."""
        return {
            "timestamp": self.timestamp,
            "collected_at": datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat(),
            "counts": self.counts.to_dict(),
            "changes_recorded": self.changes_recorded,
            "first_observations": self.first_observations,
            "history_rows_purged": self.history_rows_purged,
            "change_rows_purged": self.change_rows_purged,
            "duration_ms": self.duration_ms,
        }


def track_team_changes(conn: sqlite3.Connection, store: GymStore, now: int, states=None) -> Dict[str, int]:
    """
    Diff current gym ownership against the last recorded change of each gym.

    A gym with no change rows gets a first-observation row (old team NULL),
    even when it has no owner. A gym whose team differs from its last
    recorded team gets one transition row. Unchanged gyms get nothing.

    Returns:
        {"changes": rows inserted, "first_observations": rows with old team NULL}
    """
    if states is None:
        states = dao.fetch_region_team_states(conn, store)

    last_state = dao.get_last_known_teams(conn)
    changes = 0
    first_observations = 0

    for gym_id, current_team in states:
        if gym_id not in last_state:
            dao.insert_team_change(conn, gym_id, None, current_team, now)
            logger.log_team_change(gym_id, None, current_team, now)
            first_observations += 1
        elif last_state[gym_id] != current_team:
            dao.insert_team_change(conn, gym_id, last_state[gym_id], current_team, now)
            logger.log_team_change(gym_id, last_state[gym_id], current_team, now)
        else:
            continue

        last_state[gym_id] = current_team
        changes += 1

    return {"changes": changes, "first_observations": first_observations}


def collect_snapshot(store: GymStore, now: Optional[int] = None, retention_sec: Optional[int] = None) -> CollectionReport:
    """
    Collect one snapshot of gym control in the configured region.

    Args:
        store: Store client (region settings included)
        now: Collection time in unix seconds; defaults to the wall clock
        retention_sec: Retention window; defaults to GYM_HISTORY_RETENTION_DAYS

    Returns:
        CollectionReport for the committed run

    Raises:
        ConfigurationError, StoreError, RegionError: the run was rolled back
    """
    started = time.monotonic()
    store.ensure_configured()

    if now is None:
        now = int(time.time())
    if retention_sec is None:
        retention_sec = config.get_retention_seconds()

    report = CollectionReport(timestamp=now)

    try:
        with store.transaction() as conn:
            dao.ensure_geofence(conn, store)

            states = dao.fetch_region_team_states(conn, store)
            report.counts = dao.count_teams(states)
            dao.insert_history_sample(conn, now, report.counts)

            result = track_team_changes(conn, store, now, states=states)
            report.changes_recorded = result["changes"]
            report.first_observations = result["first_observations"]

            history_deleted, changes_deleted = dao.purge_expired(conn, now, retention_sec)
            report.history_rows_purged = history_deleted
            report.change_rows_purged = changes_deleted
    except Exception as e:
        logger.log_collection("failed", {
            "timestamp": now,
            "error_type": type(e).__name__,
            "error": str(e)[:200]
        })
        raise

    logger.log_retention_sweep(retention_sec, report.history_rows_purged, report.change_rows_purged)

    report.duration_ms = round((time.monotonic() - started) * 1000, 2)
    logger.log_collection("success", report.to_dict())
    return report
