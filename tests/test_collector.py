"""
Tests for the snapshot collector: history samples, ownership change events and retention.
"""

import sqlite3
from unittest.mock import patch

import pytest

from gymtrack.core.collector import CollectionReport, collect_snapshot, track_team_changes
from gymtrack.core.config import ConfigurationError
from gymtrack.core.db import GymStore, StoreError
from gymtrack.core.schema import TeamCounts

NOW = 1_700_000_000
DAY = 24 * 60 * 60


def history_rows(query):
    return query("SELECT * FROM gym_history ORDER BY id")


def change_rows(query, gym_id=None):
    if gym_id is None:
        return query("SELECT gym_id, old_team_id, new_team_id, changed_at FROM gym_team_changes ORDER BY id")
    return query(
        "SELECT gym_id, old_team_id, new_team_id, changed_at FROM gym_team_changes WHERE gym_id = ? ORDER BY id",
        (gym_id,)
    )


class TestHistorySample:
    """One history sample per run, counting only enabled gyms inside the region."""

    def test_counts_match_region_state(self, store, add_gym, query):
        """Faction counts and total reflect in-region enabled gyms only."""
        add_gym("m1", 1)
        add_gym("m2", 1)
        add_gym("v1", 2)
        add_gym("i1", 3)
        add_gym("n0", 0)
        add_gym("nn", None)
        add_gym("outside", 1, lat=20.0, lon=20.0)
        add_gym("disabled", 2, enabled=0)

        report = collect_snapshot(store, now=NOW)

        rows = history_rows(query)
        assert len(rows) == 1
        assert rows[0]["timestamp"] == NOW
        assert rows[0]["team_mystic"] == 2
        assert rows[0]["team_valor"] == 1
        assert rows[0]["team_instinct"] == 1
        assert rows[0]["total_gyms"] == 6
        assert report.counts == TeamCounts(mystic=2, valor=1, instinct=1, total=6)

    def test_empty_region_still_writes_sample(self, store, query):
        """A run with no gyms records an all-zero sample and no change events."""
        report = collect_snapshot(store, now=NOW)

        rows = history_rows(query)
        assert len(rows) == 1
        assert rows[0]["total_gyms"] == 0
        assert report.changes_recorded == 0
        assert change_rows(query) == []

    def test_repeated_runs_append_samples(self, store, add_gym, query):
        """Collection is not idempotent: each run appends a sample."""
        add_gym("g1", 1)
        collect_snapshot(store, now=NOW)
        collect_snapshot(store, now=NOW)

        assert len(history_rows(query)) == 2


class TestChangeTracking:
    """Ownership diff against the last recorded change of each gym."""

    def test_first_observation(self, store, add_gym, query):
        """A gym never seen before gets exactly one row with a NULL old team."""
        add_gym("g1", 2)

        report = collect_snapshot(store, now=NOW)

        assert change_rows(query, "g1") == [
            {"gym_id": "g1", "old_team_id": None, "new_team_id": 2, "changed_at": NOW}
        ]
        assert report.first_observations == 1
        assert report.changes_recorded == 1

    def test_first_observation_of_unowned_gym(self, store, add_gym, query):
        """Unowned gyms are still observed for the first time."""
        add_gym("g1", 0)

        collect_snapshot(store, now=NOW)

        rows = change_rows(query, "g1")
        assert len(rows) == 1
        assert rows[0]["old_team_id"] is None
        assert rows[0]["new_team_id"] == 0

    def test_unchanged_owner_creates_no_rows(self, store, add_gym, query):
        """Two runs with the same owner produce no second row."""
        add_gym("g1", 1)

        collect_snapshot(store, now=NOW)
        report = collect_snapshot(store, now=NOW + 300)

        assert len(change_rows(query, "g1")) == 1
        assert report.changes_recorded == 0

    def test_flip_detected(self, store, add_gym, set_team, query):
        """Owner A to B between runs yields exactly one {A, B} row."""
        add_gym("g1", 1)
        collect_snapshot(store, now=NOW)

        set_team("g1", 2)
        report = collect_snapshot(store, now=NOW + 300)

        rows = change_rows(query, "g1")
        assert len(rows) == 2
        assert rows[1] == {"gym_id": "g1", "old_team_id": 1, "new_team_id": 2, "changed_at": NOW + 300}
        assert report.changes_recorded == 1
        assert report.first_observations == 0

    def test_three_run_sequence(self, store, add_gym, set_team, query):
        """Owner sequence A, A, B over three runs gives {null, A} then {A, B} and three samples."""
        add_gym("f", 1)
        collect_snapshot(store, now=NOW)
        collect_snapshot(store, now=NOW + 300)
        set_team("f", 2)
        collect_snapshot(store, now=NOW + 600)

        rows = change_rows(query, "f")
        assert [(r["old_team_id"], r["new_team_id"]) for r in rows] == [(None, 1), (1, 2)]
        assert len(history_rows(query)) == 3

    def test_losing_owner_is_a_change(self, store, add_gym, set_team, query):
        """Going from a faction to no owner is recorded."""
        add_gym("g1", 3)
        collect_snapshot(store, now=NOW)

        set_team("g1", 0)
        collect_snapshot(store, now=NOW + 300)

        rows = change_rows(query, "g1")
        assert (rows[-1]["old_team_id"], rows[-1]["new_team_id"]) == (3, 0)

    def test_latest_change_wins_on_equal_timestamps(self, store, add_gym, add_change, query):
        """With two rows at the same changed_at the higher id is the last known owner."""
        add_gym("g1", 2)
        add_change("g1", None, 1, NOW - 60)
        add_change("g1", 1, 2, NOW - 60)

        with store.transaction() as conn:
            result = track_team_changes(conn, store, NOW)

        assert result == {"changes": 0, "first_observations": 0}

    def test_gym_outside_region_not_tracked(self, store, add_gym, query):
        """Only gyms inside the geofence get change rows."""
        add_gym("far", 1, lat=-5.0, lon=-5.0)

        collect_snapshot(store, now=NOW)

        assert change_rows(query) == []


class TestRetention:
    """Expired history and change rows are swept in the same run."""

    def test_expired_sample_removed_recent_kept(self, store, add_sample, query):
        """A sample older than the window is gone after the next run; one inside survives."""
        add_sample(NOW - 8 * DAY, mystic=1, total=1)
        add_sample(NOW - 1 * DAY, valor=1, total=1)

        report = collect_snapshot(store, now=NOW, retention_sec=7 * DAY)

        timestamps = [row["timestamp"] for row in history_rows(query)]
        assert timestamps == [NOW - 1 * DAY, NOW]
        assert report.history_rows_purged == 1

    def test_expired_changes_removed(self, store, add_gym, add_change, query):
        """Change rows older than the window are deleted."""
        add_gym("g1", 1)
        add_change("g1", None, 1, NOW - 10 * DAY)
        add_change("g1", 1, 2, NOW - 1 * DAY)

        report = collect_snapshot(store, now=NOW, retention_sec=7 * DAY)

        rows = change_rows(query, "g1")
        assert all(row["changed_at"] >= NOW - 7 * DAY for row in rows)
        assert report.change_rows_purged == 1

    def test_boundary_sample_survives(self, store, add_sample, query):
        """A sample exactly at the cutoff is kept (strictly older rows are removed)."""
        add_sample(NOW - 7 * DAY)

        collect_snapshot(store, now=NOW, retention_sec=7 * DAY)

        assert len(history_rows(query)) == 2

    def test_default_retention_from_config(self, store, add_sample, query):
        """Without an explicit window the configured retention applies."""
        add_sample(NOW - 30 * DAY)

        with patch('gymtrack.core.config.GYM_HISTORY_RETENTION_DAYS', 7):
            collect_snapshot(store, now=NOW)

        assert [row["timestamp"] for row in history_rows(query)] == [NOW]


class TestAtomicity:
    """A failure anywhere in the run leaves no partial state."""

    def test_failed_sweep_rolls_back_sample_and_changes(self, store, add_gym, query):
        """An error in the retention step undoes the sample and change rows."""
        add_gym("g1", 1)

        with patch('gymtrack.core.dao.purge_expired', side_effect=sqlite3.OperationalError("disk I/O error")):
            with pytest.raises(StoreError, match="rolled back"):
                collect_snapshot(store, now=NOW)

        assert history_rows(query) == []
        assert change_rows(query) == []

    def test_non_store_error_propagates_unchanged(self, store, add_gym, query):
        """Errors that are not SQLite errors are re-raised as-is after rollback."""
        add_gym("g1", 1)

        with patch('gymtrack.core.dao.purge_expired', side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError, match="boom"):
                collect_snapshot(store, now=NOW)

        assert history_rows(query) == []

    def test_missing_geofence_fails_run(self, store, add_gym, query):
        """An unknown geofence id is a configuration error and writes nothing."""
        add_gym("g1", 1)
        other = GymStore(db_path=store.db_path, geofence_id="nowhere")

        with pytest.raises(ConfigurationError, match="nowhere"):
            collect_snapshot(other, now=NOW)

        assert history_rows(query) == []

    def test_unconfigured_region_fails_before_writing(self, store, query):
        """No geofence id at all fails the invocation."""
        other = GymStore(db_path=store.db_path, geofence_id=None)

        with pytest.raises(ConfigurationError, match="GEOFENCE_ID"):
            collect_snapshot(other, now=NOW)

        assert history_rows(query) == []


class TestCollectionReport:
    """Report serialization."""

    def test_report_to_dict(self):
        """to_dict exposes counts and an ISO collection time."""
        report = CollectionReport(timestamp=0, counts=TeamCounts(mystic=1, total=2), changes_recorded=3)

        data = report.to_dict()
        assert data["counts"] == {"mystic": 1, "valor": 0, "instinct": 0, "total": 2}
        assert data["changes_recorded"] == 3
        assert data["collected_at"].startswith("1970-01-01T00:00:00")
