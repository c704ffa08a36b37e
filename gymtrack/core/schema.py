"""
Record types shared by the collector and the query layer.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


TEAM_NONE = 0
TEAM_MYSTIC = 1
TEAM_VALOR = 2
TEAM_INSTINCT = 3

FACTION_TEAMS = (TEAM_MYSTIC, TEAM_VALOR, TEAM_INSTINCT)

TEAM_NAMES = {
    TEAM_NONE: "Uncontested",
    TEAM_MYSTIC: "Mystic",
    TEAM_VALOR: "Valor",
    TEAM_INSTINCT: "Instinct",
}

TEAM_KEYS = {
    TEAM_MYSTIC: "mystic",
    TEAM_VALOR: "valor",
    TEAM_INSTINCT: "instinct",
}


def iso_from_unix(seconds: float) -> str:
    """UTC ISO-8601 with millisecond precision and a Z suffix, e.g. 1970-01-01T00:00:00.000Z."""
    moment = datetime.fromtimestamp(seconds, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


EPOCH_ISO = iso_from_unix(0)


def round_half_up(value: Optional[float]) -> int:
    """Round halves toward positive infinity; None counts as 0."""
    if value is None:
        return 0
    return int(math.floor(value + 0.5))


@dataclass
class TeamCounts:
    mystic: int = 0
    valor: int = 0
    instinct: int = 0
    total: int = 0

    def to_dict(self):
        return {
            "mystic": self.mystic,
            "valor": self.valor,
            "instinct": self.instinct,
            "total": self.total,
        }


@dataclass
class HistorySample:
    id: int
    timestamp: int
    team_mystic: int
    team_valor: int
    team_instinct: int
    total_gyms: int

    @property
    def effective_total(self) -> int:
        """Recorded total, never below the sum of faction counts (older rows may undercount)."""
        return max(self.total_gyms, self.team_mystic + self.team_valor + self.team_instinct)


@dataclass
class ChangeEvent:
    id: int
    gym_id: str
    old_team_id: Optional[int]
    new_team_id: Optional[int]
    changed_at: int


@dataclass
class GymRow:
    """A gym as read from the upstream scanner table."""
    id: str
    name: Optional[str]
    team_id: Optional[int]
    lat: float
    lon: float
    url: Optional[str]
    description: Optional[str]
    available_slots: Optional[int]
    guarding_pokemon_id: Optional[int]
    updated: int
    defenders: Optional[str]
    total_cp: Optional[int]
