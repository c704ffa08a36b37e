"""
Data access for gym history samples and team change events.

Every function takes an open connection so callers decide the transaction
boundary; region filters bind the store's geofence id.
"""

import sqlite3
from typing import Dict, Iterable, List, Optional, Tuple

from .config import ConfigurationError
from .db import GymStore
from .schema import ChangeEvent, GymRow, HistorySample, TeamCounts, TEAM_MYSTIC, TEAM_VALOR, TEAM_INSTINCT


def ensure_geofence(conn: sqlite3.Connection, store: GymStore):
    """Raise ConfigurationError when the configured geofence row does not exist."""
    row = conn.execute(
        f"SELECT 1 FROM {store.geofence_table} WHERE id = ?",
        (store.geofence_id,)
    ).fetchone()
    if row is None:
        raise ConfigurationError(f"Geofence '{store.geofence_id}' not found in {store.geofence_table}")


def fetch_region_team_states(conn: sqlite3.Connection, store: GymStore) -> List[Tuple[str, Optional[int]]]:
    """Current (gym_id, team_id) of every enabled gym inside the region."""
    rows = conn.execute(
        f"""
        SELECT id, team_id
        FROM gym
        WHERE enabled = 1
          AND {store.region_sql('lon', 'lat')}
        """,
        (store.geofence_id,)
    ).fetchall()
    return [(row["id"], row["team_id"]) for row in rows]


def count_teams(states: Iterable[Tuple[str, Optional[int]]]) -> TeamCounts:
    """Faction counts plus total; gyms without an owner count toward total only."""
    counts = TeamCounts()
    for _, team_id in states:
        counts.total += 1
        if team_id == TEAM_MYSTIC:
            counts.mystic += 1
        elif team_id == TEAM_VALOR:
            counts.valor += 1
        elif team_id == TEAM_INSTINCT:
            counts.instinct += 1
    return counts


def insert_history_sample(conn: sqlite3.Connection, timestamp: int, counts: TeamCounts) -> int:
    """Append one aggregated sample; returns its row id."""
    cursor = conn.execute(
        """
        INSERT INTO gym_history (timestamp, team_mystic, team_valor, team_instinct, total_gyms)
        VALUES (?, ?, ?, ?, ?)
        """,
        (timestamp, counts.mystic, counts.valor, counts.instinct, counts.total)
    )
    return cursor.lastrowid


def get_last_known_teams(conn: sqlite3.Connection) -> Dict[str, Optional[int]]:
    """new_team_id of each gym's latest change row (latest changed_at, then highest id)."""
    rows = conn.execute(
        """
        SELECT gtc.gym_id, gtc.new_team_id
        FROM gym_team_changes gtc
        JOIN (
            SELECT gym_id, MAX(changed_at) AS last_changed
            FROM gym_team_changes
            GROUP BY gym_id
        ) latest ON latest.gym_id = gtc.gym_id AND latest.last_changed = gtc.changed_at
        ORDER BY gtc.id ASC
        """
    ).fetchall()

    last_state = {}
    for row in rows:
        last_state[row["gym_id"]] = row["new_team_id"]
    return last_state


def insert_team_change(conn: sqlite3.Connection, gym_id: str, old_team: Optional[int],
                       new_team: Optional[int], changed_at: int) -> int:
    cursor = conn.execute(
        """
        INSERT INTO gym_team_changes (gym_id, old_team_id, new_team_id, changed_at)
        VALUES (?, ?, ?, ?)
        """,
        (gym_id, old_team, new_team, changed_at)
    )
    return cursor.lastrowid


def purge_expired(conn: sqlite3.Connection, now: int, retention_sec: int) -> Tuple[int, int]:
    """Delete history and change rows older than the retention window."""
    cutoff = now - retention_sec
    history_deleted = conn.execute(
        "DELETE FROM gym_history WHERE timestamp < ?", (cutoff,)
    ).rowcount
    changes_deleted = conn.execute(
        "DELETE FROM gym_team_changes WHERE changed_at < ?", (cutoff,)
    ).rowcount
    return history_deleted, changes_deleted


def get_latest_sample(conn: sqlite3.Connection) -> Optional[HistorySample]:
    """Most recent history row overall, regardless of any period."""
    row = conn.execute(
        """
        SELECT id, timestamp, team_mystic, team_valor, team_instinct, total_gyms
        FROM gym_history
        ORDER BY timestamp DESC, id DESC
        LIMIT 1
        """
    ).fetchone()
    return HistorySample(**dict(row)) if row else None


def get_bucketed_history(conn: sqlite3.Connection, since: int, bucket_sec: int) -> List[sqlite3.Row]:
    """Per-bucket averages of samples at or after `since`; empty buckets produce no row."""
    return conn.execute(
        """
        SELECT
            (timestamp / ?) * ? AS bucket,
            AVG(team_mystic) AS mystic,
            AVG(team_valor) AS valor,
            AVG(team_instinct) AS instinct,
            AVG(total_gyms) AS total
        FROM gym_history
        WHERE timestamp >= ?
        GROUP BY bucket
        ORDER BY bucket ASC
        """,
        (bucket_sec, bucket_sec, since)
    ).fetchall()


def get_contested_gyms(conn: sqlite3.Connection, store: GymStore, since: int, limit: int = 20) -> List[sqlite3.Row]:
    """Gyms ranked by change rows in the window, ties broken by most recent change."""
    return conn.execute(
        f"""
        SELECT
            gtc.gym_id,
            g.name,
            g.lat,
            g.lon,
            g.url,
            g.team_id AS current_team,
            COUNT(gtc.id) AS change_count,
            MAX(gtc.changed_at) AS last_changed
        FROM gym_team_changes gtc
        JOIN gym g ON gtc.gym_id = g.id
        WHERE gtc.changed_at >= ?
          AND {store.region_sql('g.lon', 'g.lat')}
        GROUP BY gtc.gym_id, g.name, g.lat, g.lon, g.url, g.team_id
        ORDER BY change_count DESC, last_changed DESC
        LIMIT ?
        """,
        (since, store.geofence_id, limit)
    ).fetchall()


def list_changes_for_gyms(conn: sqlite3.Connection, gym_ids: List[str]) -> List[ChangeEvent]:
    """All change rows of the given gyms, newest first."""
    if not gym_ids:
        return []

    placeholders = ",".join("?" for _ in gym_ids)
    rows = conn.execute(
        f"""
        SELECT id, gym_id, old_team_id, new_team_id, changed_at
        FROM gym_team_changes
        WHERE gym_id IN ({placeholders})
        ORDER BY changed_at DESC, id DESC
        """,
        gym_ids
    ).fetchall()
    return [ChangeEvent(**dict(row)) for row in rows]


def fetch_recent_gyms(conn: sqlite3.Connection, store: GymStore, updated_since: int) -> List[GymRow]:
    """Enabled in-region gyms seen by the scanner since `updated_since`, newest first."""
    rows = conn.execute(
        f"""
        SELECT
            g.id, g.name, g.team_id, g.lat, g.lon, g.url, g.description,
            g.available_slots, g.guarding_pokemon_id, g.updated,
            g.defenders, g.total_cp
        FROM gym g
        WHERE g.updated > ?
          AND g.enabled = 1
          AND {store.region_sql('g.lon', 'g.lat')}
        ORDER BY g.updated DESC
        """,
        (updated_since, store.geofence_id)
    ).fetchall()
    return [GymRow(**dict(row)) for row in rows]


def fetch_faction_defenders(conn: sqlite3.Connection, store: GymStore) -> List[sqlite3.Row]:
    """(id, team_id, defenders) of enabled in-region gyms held by a faction."""
    return conn.execute(
        f"""
        SELECT g.id, g.team_id, g.defenders
        FROM gym g
        WHERE g.enabled = 1
          AND g.team_id IN (1, 2, 3)
          AND {store.region_sql('g.lon', 'g.lat')}
        """,
        (store.geofence_id,)
    ).fetchall()
