"""
Environment configuration for the gym history collector and query layer.

Values are read once at import time after the .env files are loaded; tests
reload this module (importlib.reload) after changing the environment.
"""

import os
import re
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv


class ConfigurationError(Exception):
    """Missing or invalid configuration value."""
    pass


def load_env_files(base_dir: Optional[str] = None):
    """Load .env, .env.<mode>, then .env.local and .env.<mode>.local (which override)."""
    root = Path(base_dir or os.getcwd())
    mode = os.getenv("APP_ENV", "development")

    for name in (".env", f".env.{mode}"):
        path = root / name
        if path.exists():
            load_dotenv(path, override=False)

    for name in (".env.local", f".env.{mode}.local"):
        path = root / name
        if path.exists():
            load_dotenv(path, override=True)


load_env_files()

# Store
DB_PATH = os.getenv("DB_PATH", "./data/gyms.db")
DB_TIMEOUT_SEC = float(os.getenv("DB_TIMEOUT_SEC", "10"))

# Region
GEOFENCE_ID = os.getenv("GEOFENCE_ID")
GEOFENCE_DB_PATH = os.getenv("GEOFENCE_DB_PATH")
GEOFENCE_DB_NAME = os.getenv("GEOFENCE_DB_NAME", "geofence" if GEOFENCE_DB_PATH else "main")

# Collector
GYM_HISTORY_RETENTION_DAYS = float(os.getenv("GYM_HISTORY_RETENTION_DAYS", "7"))
COLLECT_INTERVAL_SEC = int(os.getenv("COLLECT_INTERVAL_SEC", "300"))

# Query layer
GYM_TIME_WINDOW = int(os.getenv("GYM_TIME_WINDOW", "3600"))

# API
INTERNAL_API_SECRET = os.getenv("INTERNAL_API_SECRET")
ACCESS_TOKEN_TTL_SEC = 60

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

VERSION = "1.0.0"

_IDENTIFIER_RE = re.compile(r"^\w+$")


def ensure(value, name: str):
    """Return value, raising ConfigurationError when it is empty."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ConfigurationError(f"{name} is not configured")
    return value


def ensure_identifier(value, name: str) -> str:
    """Return value when it is safe to splice into SQL as an identifier."""
    identifier = ensure(value, name)
    if not _IDENTIFIER_RE.match(identifier):
        raise ConfigurationError(f"{name} contains unsupported characters")
    return identifier


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    path = db_path or DB_PATH
    if path == ":memory:":
        return
    Path(path).parent.mkdir(parents=True, exist_ok=True)


def get_retention_seconds(days: float = None) -> int:
    """Retention window in whole seconds, never below one second."""
    if days is None:
        days = GYM_HISTORY_RETENTION_DAYS
    return max(int(days * 24 * 60 * 60), 1)


def get_collect_interval():
    """Get loop-mode collection interval in seconds."""
    return COLLECT_INTERVAL_SEC


def validate_collector_config() -> List[str]:
    """Validate collector configuration and return any issues."""
    issues = []

    if not GEOFENCE_ID or not GEOFENCE_ID.strip():
        issues.append("GEOFENCE_ID is not configured")

    if not GEOFENCE_DB_NAME or not _IDENTIFIER_RE.match(GEOFENCE_DB_NAME):
        issues.append(f"Invalid GEOFENCE_DB_NAME: {GEOFENCE_DB_NAME}")

    if GYM_HISTORY_RETENTION_DAYS <= 0:
        issues.append("GYM_HISTORY_RETENTION_DAYS must be > 0")

    if DB_TIMEOUT_SEC <= 0:
        issues.append("DB_TIMEOUT_SEC must be > 0")

    if COLLECT_INTERVAL_SEC < 1:
        issues.append("COLLECT_INTERVAL_SEC must be >= 1")

    return issues
