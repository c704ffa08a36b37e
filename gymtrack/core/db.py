"""
SQLite store client shared by the collector (write path) and the query layer (read path).

A GymStore is constructed explicitly by each process entry point and passed to
both subsystems; there is no module-level connection.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator, Optional

from . import config
from .config import ensure, ensure_identifier
from .region import RegionOracle

REQUIRED_TABLES = ("gym", "gym_history", "gym_team_changes")


class StoreError(Exception):
    """Store access failed (connection, lock timeout, SQL error)."""
    pass


class GymStore:
    """Connection factory and schema owner for the gym history database."""

    def __init__(self, db_path: str, geofence_id: Optional[str], geofence_db_path: Optional[str] = None,
                 geofence_db_name: str = "main", timeout_sec: float = 10.0,
                 oracle: Optional[RegionOracle] = None):
        self.db_path = db_path
        self.geofence_id = geofence_id
        self.geofence_db_path = geofence_db_path
        self.geofence_db_name = geofence_db_name
        self.timeout_sec = timeout_sec
        self.oracle = oracle or RegionOracle()

    @classmethod
    def from_config(cls) -> "GymStore":
        """Build a store from environment configuration."""
        config.ensure_db_directory()
        return cls(
            db_path=config.DB_PATH,
            geofence_id=config.GEOFENCE_ID,
            geofence_db_path=config.GEOFENCE_DB_PATH,
            geofence_db_name=config.GEOFENCE_DB_NAME,
            timeout_sec=config.DB_TIMEOUT_SEC,
        )

    def ensure_configured(self):
        """Raise ConfigurationError unless the region settings are usable."""
        ensure(self.db_path, "DB_PATH")
        ensure(self.geofence_id, "GEOFENCE_ID")
        ensure_identifier(self.geofence_db_name, "GEOFENCE_DB_NAME")

    @property
    def geofence_table(self) -> str:
        schema = ensure_identifier(self.geofence_db_name, "GEOFENCE_DB_NAME")
        return f"{schema}.geofence"

    def region_sql(self, lon_column: str = "lon", lat_column: str = "lat") -> str:
        """SQL predicate for "point is inside the configured region"; binds one parameter (geofence id)."""
        return (
            f"region_contains((SELECT geometry FROM {self.geofence_table} WHERE id = ?), "
            f"{lon_column}, {lat_column}) = 1"
        )

    @contextmanager
    def connect(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a SQLite connection with bounded lock waits and the region function registered."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout_sec, isolation_level=None)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to open database {self.db_path}: {e}") from e

        try:
            conn.row_factory = sqlite3.Row
            conn.execute(f"PRAGMA busy_timeout = {int(self.timeout_sec * 1000)}")
            conn.execute("PRAGMA foreign_keys = ON")
            conn.create_function("region_contains", 3, self.oracle.sql_function)

            if self.geofence_db_path and self.geofence_db_name != "main":
                schema = ensure_identifier(self.geofence_db_name, "GEOFENCE_DB_NAME")
                conn.execute(f"ATTACH DATABASE ? AS {schema}", (self.geofence_db_path,))

            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """All-or-nothing unit of work; BEGIN IMMEDIATE also serialises concurrent writers."""
        with self.connect() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StoreError(f"Could not start transaction: {e}") from e

            try:
                yield conn
            except sqlite3.Error as e:
                conn.rollback()
                raise StoreError(f"Transaction rolled back: {e}") from e
            except BaseException:
                conn.rollback()
                raise
            else:
                conn.commit()

    def init_db(self):
        """Initialize the database with required tables."""
        with self.transaction() as conn:
            # Upstream scanner tables; created only when this database does not already have them
            conn.execute('''
                CREATE TABLE IF NOT EXISTS gym (
                    id TEXT PRIMARY KEY,
                    name TEXT,
                    team_id INTEGER,
                    lat REAL NOT NULL,
                    lon REAL NOT NULL,
                    url TEXT,
                    description TEXT,
                    available_slots INTEGER,
                    guarding_pokemon_id INTEGER,
                    updated INTEGER NOT NULL DEFAULT 0,
                    enabled INTEGER NOT NULL DEFAULT 1,
                    defenders TEXT,
                    total_cp INTEGER
                )
            ''')

            if self.geofence_db_name == "main":
                conn.execute('''
                    CREATE TABLE IF NOT EXISTS geofence (
                        id TEXT PRIMARY KEY,
                        name TEXT,
                        geometry TEXT NOT NULL
                    )
                ''')

            conn.execute('''
                CREATE TABLE IF NOT EXISTS gym_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp INTEGER NOT NULL,
                    team_mystic INTEGER NOT NULL DEFAULT 0,
                    team_valor INTEGER NOT NULL DEFAULT 0,
                    team_instinct INTEGER NOT NULL DEFAULT 0,
                    total_gyms INTEGER NOT NULL DEFAULT 0
                )
            ''')

            conn.execute('''
                CREATE TABLE IF NOT EXISTS gym_team_changes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    gym_id TEXT NOT NULL REFERENCES gym (id) ON DELETE CASCADE,
                    old_team_id INTEGER,  -- NULL on the first observation of a gym
                    new_team_id INTEGER,
                    changed_at INTEGER NOT NULL
                )
            ''')

            conn.execute('CREATE INDEX IF NOT EXISTS idx_gym_history_timestamp ON gym_history(timestamp)')
            conn.execute('CREATE INDEX IF NOT EXISTS idx_gym_team_changes_gym_id ON gym_team_changes(gym_id)')
            conn.execute('CREATE INDEX IF NOT EXISTS idx_gym_team_changes_changed_at ON gym_team_changes(changed_at)')

            # Inspection view over the last 24 hours of change rows, not read by the query layer
            conn.execute('DROP VIEW IF EXISTS contested_gyms_24h')
            conn.execute('''
                CREATE VIEW contested_gyms_24h AS
                SELECT
                    gtc.gym_id,
                    g.name AS gym_name,
                    g.lat,
                    g.lon,
                    g.url,
                    COUNT(gtc.id) AS change_count,
                    MAX(gtc.changed_at) AS last_changed
                FROM gym_team_changes gtc
                JOIN gym g ON gtc.gym_id = g.id
                WHERE gtc.changed_at > CAST(strftime('%s', 'now') AS INTEGER) - 86400
                GROUP BY gtc.gym_id, g.name, g.lat, g.lon, g.url
                ORDER BY change_count DESC
            ''')

    def health_check(self) -> bool:
        """Check database health."""
        try:
            with self.connect() as conn:
                rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
                table_names = {row[0] for row in rows}
                return all(table in table_names for table in REQUIRED_TABLES)
        except Exception:
            return False
