"""
Live gym snapshot and defender composition per faction.

Both reads share the defender payload policy: a gym whose defenders column
is not a JSON list is logged and contributes nothing, it never fails the call.
"""

import json
import time
from typing import Any, Dict, List, Optional, Tuple

from . import config, dao
from .db import GymStore
from .schema import FACTION_TEAMS, TEAM_KEYS, TEAM_NAMES, iso_from_unix, round_half_up
from ..api.schemas import (
    DefenderStats,
    FactionCounts,
    Gym,
    GymSnapshotResponse,
    StatsData,
    StatsOverall,
    TeamStats,
)
from ..util.logging import logger

TOP_DEFENDERS_LIMIT = 10


class MalformedPayload(ValueError):
    """Defender payload is not a JSON list."""
    pass


def parse_defenders(raw: Optional[str]) -> List[Dict[str, Any]]:
    """Decode a defenders column; empty or NULL means no defenders."""
    if not raw:
        return []
    try:
        defenders = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedPayload(f"invalid JSON: {e}")
    if not isinstance(defenders, list):
        raise MalformedPayload(f"expected a list, got {type(defenders).__name__}")
    return defenders


def to_number(value: Any, fallback: float = 0):
    """Coerce numbers and numeric strings; anything else gives the fallback."""
    if isinstance(value, bool):
        return fallback
    if isinstance(value, (int, float)):
        number = value
    elif isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return fallback
    else:
        return fallback

    if number != number or number in (float("inf"), float("-inf")):
        return fallback
    if isinstance(number, float) and number.is_integer():
        return int(number)
    return number


def time_since_update(updated: int, now: int) -> str:
    diff = now - updated
    if diff < 60:
        return f"{diff}s ago"
    if diff < 3600:
        return f"{diff // 60}m ago"
    if diff < 86400:
        return f"{diff // 3600}h ago"
    return f"{diff // 86400}d ago"


def fetch_gym_snapshot(store: GymStore, now: Optional[int] = None, time_window: Optional[int] = None) -> GymSnapshotResponse:
    """Recently scanned in-region gyms grouped by controlling faction."""
    try:
        store.ensure_configured()
    except Exception as e:
        logger.log_query_failure("gym_snapshot.config", e)
        return GymSnapshotResponse()

    if now is None:
        now = int(time.time())
    if time_window is None:
        time_window = config.GYM_TIME_WINDOW

    try:
        with store.connect() as conn:
            rows = dao.fetch_recent_gyms(conn, store, now - time_window)

        result = GymSnapshotResponse()
        for row in rows:
            team_key = TEAM_KEYS.get(row.team_id)
            if team_key is None:
                continue

            try:
                defenders = parse_defenders(row.defenders)
            except MalformedPayload as e:
                logger.log_payload_warning(row.id, str(e))
                defenders = []

            gym = Gym(
                id=row.id,
                name=row.name,
                team_id=row.team_id,
                lat=row.lat,
                lon=row.lon,
                url=row.url,
                description=row.description,
                slots=row.available_slots,
                guarding_pokemon_id=row.guarding_pokemon_id,
                updated=row.updated,
                defenders=defenders,
                total_cp=row.total_cp,
                last_updated=time_since_update(row.updated, now),
            )
            getattr(result, team_key).append(gym)
            setattr(result.counts, team_key, getattr(result.counts, team_key) + 1)

        return result
    except Exception as e:
        logger.log_query_failure("gym_snapshot", e)
        return GymSnapshotResponse()


def _empty_stats(now: int) -> StatsData:
    return StatsData(teams=[], overall=StatsOverall(total_defenders_all_teams=0, timestamp=iso_from_unix(now)))


def _is_id(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def defender_entries(defenders: List[Any]) -> List[Tuple[Tuple[int, int, int], Dict[str, Any]]]:
    """
    Key each defender by (pokemon_id, form or 0, costume or 0).

    Entries that are not objects or carry no pokemon_id are skipped. An entry
    with a non-integer pokemon_id, form or costume makes the whole payload
    malformed.
    """
    entries = []
    for defender in defenders:
        if not isinstance(defender, dict) or not defender.get("pokemon_id"):
            continue

        pokemon_id = defender["pokemon_id"]
        form = defender.get("form")
        costume = defender.get("costume")
        if not _is_id(pokemon_id):
            raise MalformedPayload(f"pokemon_id must be an integer, got {pokemon_id!r}")
        for name, value in (("form", form), ("costume", costume)):
            if value is not None and not _is_id(value):
                raise MalformedPayload(f"{name} must be an integer, got {value!r}")

        entries.append(((pokemon_id, form or 0, costume or 0), defender))
    return entries


def aggregate_defenders(rows) -> Dict[int, Dict[str, Any]]:
    """
    Fold defender payloads into per-team aggregates.

    A gym whose payload is malformed contributes nothing; other gyms are unaffected.

    Args:
        rows: Iterable of mappings with id, team_id and defenders (JSON text)

    Returns:
        team_id -> {"defenders": {(pokemon_id, form, costume): DefenderStats}, "total_defenders", "total_cp"}
    """
    teams = {
        team_id: {"defenders": {}, "total_defenders": 0, "total_cp": 0}
        for team_id in FACTION_TEAMS
    }

    for row in rows:
        team = teams.get(row["team_id"])
        if team is None or not row["defenders"]:
            continue

        try:
            entries = defender_entries(parse_defenders(row["defenders"]))
        except MalformedPayload as e:
            logger.log_payload_warning(row["id"], str(e))
            continue

        for key, defender in entries:
            cp = to_number(defender.get("cp_when_deployed"))

            existing = team["defenders"].get(key)
            if existing is not None:
                existing.count += 1
                existing.total_cp += cp
                existing.avg_cp = round_half_up(existing.total_cp / max(existing.count, 1))
            else:
                team["defenders"][key] = DefenderStats(
                    pokemon_id=key[0],
                    form=defender.get("form"),
                    costume=defender.get("costume"),
                    count=1,
                    total_cp=cp,
                    avg_cp=round_half_up(cp),
                )

            team["total_defenders"] += 1
            team["total_cp"] += cp

    return teams


def fetch_defender_stats(store: GymStore, now: Optional[int] = None) -> StatsData:
    """Defender composition per faction: unique species, totals, average CP and top 10."""
    if now is None:
        now = int(time.time())

    try:
        store.ensure_configured()
    except Exception as e:
        logger.log_query_failure("defender_stats.config", e)
        return _empty_stats(now)

    try:
        with store.connect() as conn:
            rows = dao.fetch_faction_defenders(conn, store)

        aggregates = aggregate_defenders(rows)

        teams = []
        for team_id in FACTION_TEAMS:
            team = aggregates[team_id]
            # sorted() is stable, so equal counts keep first-seen order
            defenders = sorted(team["defenders"].values(), key=lambda d: d.count, reverse=True)
            total_defenders = team["total_defenders"]

            teams.append(TeamStats(
                team_name=TEAM_NAMES.get(team_id, "Unknown"),
                team_id=team_id,
                total_defenders=total_defenders,
                unique_species=len(defenders),
                top_defenders=defenders[:TOP_DEFENDERS_LIMIT],
                total_cp=team["total_cp"],
                avg_cp_per_defender=round_half_up(team["total_cp"] / total_defenders) if total_defenders else 0,
            ))

        return StatsData(
            teams=teams,
            overall=StatsOverall(
                total_defenders_all_teams=sum(team.total_defenders for team in teams),
                timestamp=iso_from_unix(now),
            ),
        )
    except Exception as e:
        logger.log_query_failure("defender_stats", e)
        return _empty_stats(now)
