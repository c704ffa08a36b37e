"""Shared fixtures: a temporary gym database with one square geofence."""

import json

import pytest

from gymtrack.core.db import GymStore

GEOFENCE_ID = "downtown"

# lon/lat square from (0, 0) to (10, 10)
SQUARE = {
    "type": "Polygon",
    "coordinates": [[[0, 0], [10, 0], [10, 10], [0, 10], [0, 0]]]
}


@pytest.fixture
def store(tmp_path):
    """Initialized store with the 'downtown' geofence."""
    gym_store = GymStore(db_path=str(tmp_path / "gyms.db"), geofence_id=GEOFENCE_ID, timeout_sec=2.0)
    gym_store.init_db()
    with gym_store.transaction() as conn:
        conn.execute(
            "INSERT INTO geofence (id, name, geometry) VALUES (?, ?, ?)",
            (GEOFENCE_ID, "Downtown", json.dumps(SQUARE))
        )
    return gym_store


@pytest.fixture
def add_gym(store):
    """Insert or replace a gym row; defaults place it inside the geofence."""
    def _add_gym(gym_id, team_id, lat=5.0, lon=5.0, updated=0, enabled=1, defenders=None,
                 name=None, total_cp=None, slots=None):
        if defenders is not None and not isinstance(defenders, str):
            defenders = json.dumps(defenders)
        with store.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO gym
                    (id, name, team_id, lat, lon, url, updated, enabled, defenders, total_cp, available_slots)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (gym_id, name or f"Gym {gym_id}", team_id, lat, lon, f"https://img/{gym_id}.png",
                 updated, enabled, defenders, total_cp, slots)
            )
    return _add_gym


@pytest.fixture
def set_team(store):
    """Change the owner of an existing gym."""
    def _set_team(gym_id, team_id):
        with store.transaction() as conn:
            conn.execute("UPDATE gym SET team_id = ? WHERE id = ?", (team_id, gym_id))
    return _set_team


@pytest.fixture
def add_sample(store):
    """Insert a raw history sample."""
    def _add_sample(timestamp, mystic=0, valor=0, instinct=0, total=0):
        with store.transaction() as conn:
            conn.execute(
                """
                INSERT INTO gym_history (timestamp, team_mystic, team_valor, team_instinct, total_gyms)
                VALUES (?, ?, ?, ?, ?)
                """,
                (timestamp, mystic, valor, instinct, total)
            )
    return _add_sample


@pytest.fixture
def add_change(store):
    """Insert a raw change row; the gym must already exist."""
    def _add_change(gym_id, old_team, new_team, changed_at):
        with store.transaction() as conn:
            conn.execute(
                """
                INSERT INTO gym_team_changes (gym_id, old_team_id, new_team_id, changed_at)
                VALUES (?, ?, ?, ?)
                """,
                (gym_id, old_team, new_team, changed_at)
            )
    return _add_change


def fetch_all(store, sql, params=()):
    with store.connect() as conn:
        return [dict(row) for row in conn.execute(sql, params).fetchall()]


@pytest.fixture
def query(store):
    """Run a read query against the store and return rows as dicts."""
    def _query(sql, params=()):
        return fetch_all(store, sql, params)
    return _query
