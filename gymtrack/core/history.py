"""
Read-side reconstruction of gym control history.

fetch_gym_history never raises: any configuration or store failure is logged
and answered with the empty response for the requested period.
"""

import time
from typing import Dict, List, Optional

from . import dao
from .db import GymStore
from .schema import ChangeEvent, EPOCH_ISO, iso_from_unix, round_half_up
from ..api.schemas import (
    ChartDataPoint,
    ContestedGym,
    ContestedGymChange,
    CurrentCounts,
    GymHistoryResponse,
)
from ..util.logging import logger

DEFAULT_PERIOD = "24h"

# period -> (duration seconds, bucket seconds)
PERIOD_CONFIG = {
    "6h": (6 * 60 * 60, 5 * 60),
    "12h": (12 * 60 * 60, 5 * 60),
    "24h": (24 * 60 * 60, 5 * 60),
    "48h": (48 * 60 * 60, 15 * 60),
    "7d": (7 * 24 * 60 * 60, 60 * 60),
}

CONTESTED_LIMIT = 20
RECENT_CHANGES_LIMIT = 5


def resolve_period(period: Optional[str]) -> str:
    """Return the period key, falling back to 24h for anything unrecognised."""
    return period if isinstance(period, str) and period in PERIOD_CONFIG else DEFAULT_PERIOD


def empty_history(period: str) -> GymHistoryResponse:
    return GymHistoryResponse(
        period=period,
        chart_data=[],
        contested_gyms=[],
        current_counts=CurrentCounts(),
        last_updated=EPOCH_ISO,
    )


def build_chart_data(rows) -> List[ChartDataPoint]:
    """Turn per-bucket averages into chart points; total never drops below the faction sum."""
    points = []
    for row in rows:
        mystic = round_half_up(row["mystic"])
        valor = round_half_up(row["valor"])
        instinct = round_half_up(row["instinct"])
        recorded_total = round_half_up(row["total"])

        points.append(ChartDataPoint(
            time=int(row["bucket"]) * 1000,
            mystic=mystic,
            valor=valor,
            instinct=instinct,
            total=max(recorded_total, mystic + valor + instinct),
        ))
    return points


def normalize_team_id(team_id: Optional[int]) -> Optional[int]:
    """Treat 0 and NULL alike as "no owner"."""
    if team_id is None or team_id == 0:
        return None
    return team_id


def map_recent_changes(events: List[ChangeEvent], limit: int = RECENT_CHANGES_LIMIT) -> Dict[str, List[ContestedGymChange]]:
    """
    Group newest-first change rows per gym, keeping at most `limit` real transitions.

    Rows whose old and new team are equal once 0/NULL are normalised are skipped,
    which hides first observations of gyms that had no owner.
    """
    grouped: Dict[str, List[ContestedGymChange]] = {}

    for event in events:
        from_team = normalize_team_id(event.old_team_id)
        to_team = normalize_team_id(event.new_team_id)

        if from_team == to_team:
            continue

        changes = grouped.setdefault(event.gym_id, [])
        if len(changes) < limit:
            changes.append(ContestedGymChange(
                from_team=from_team,
                to_team=to_team,
                timestamp=event.changed_at * 1000,
            ))

    return grouped


def fetch_gym_history(store: GymStore, period: Optional[str] = DEFAULT_PERIOD, now: Optional[int] = None) -> GymHistoryResponse:
    """
    Chart series, current counts and contested gyms for a period.

    Args:
        store: Store client
        period: One of PERIOD_CONFIG keys; unknown values mean 24h
        now: Reference time in unix seconds; defaults to the wall clock

    Returns:
        GymHistoryResponse (empty shape on any failure)
    """
    key = resolve_period(period)

    try:
        store.ensure_configured()
    except Exception as e:
        logger.log_query_failure("gym_history.config", e)
        return empty_history(key)

    duration, bucket = PERIOD_CONFIG[key]
    if now is None:
        now = int(time.time())
    since = now - duration

    try:
        with store.connect() as conn:
            chart_data = build_chart_data(dao.get_bucketed_history(conn, since, bucket))

            # Current counts come from the newest sample overall, not from the period window
            latest = dao.get_latest_sample(conn)
            if latest:
                current_counts = CurrentCounts(
                    mystic=latest.team_mystic,
                    valor=latest.team_valor,
                    instinct=latest.team_instinct,
                    total=latest.effective_total,
                )
                last_updated = iso_from_unix(latest.timestamp)
            else:
                current_counts = CurrentCounts()
                last_updated = EPOCH_ISO

            # change_count includes first-observation rows; see DESIGN.md
            contested_rows = dao.get_contested_gyms(conn, store, since, limit=CONTESTED_LIMIT)
            gym_ids = [row["gym_id"] for row in contested_rows]
            recent_changes = map_recent_changes(dao.list_changes_for_gyms(conn, gym_ids))

        contested = [
            ContestedGym(
                gym_id=row["gym_id"],
                name=row["name"],
                lat=row["lat"],
                lon=row["lon"],
                url=row["url"],
                current_team=row["current_team"] or 0,
                change_count=row["change_count"],
                last_changed=row["last_changed"] * 1000,
                recent_changes=recent_changes.get(row["gym_id"], []),
            )
            for row in contested_rows
        ]

        return GymHistoryResponse(
            period=key,
            chart_data=chart_data,
            contested_gyms=contested,
            current_counts=current_counts,
            last_updated=last_updated,
        )
    except Exception as e:
        logger.log_query_failure("gym_history", e)
        return empty_history(key)
