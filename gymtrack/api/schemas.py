"""
Response models for the gym dashboard API.

Field names follow the dashboard contract; camelCase keys are pydantic
aliases so Python code keeps snake_case attributes.
"""

from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..core.schema import EPOCH_ISO


class ChartDataPoint(BaseModel):
    time: int  # bucket start, milliseconds
    mystic: int
    valor: int
    instinct: int
    total: int


class ContestedGymChange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_team: Optional[int] = Field(default=None, alias="from")
    to_team: Optional[int] = Field(default=None, alias="to")
    timestamp: int  # milliseconds


class ContestedGym(BaseModel):
    gym_id: str
    name: Optional[str] = None
    lat: float
    lon: float
    url: Optional[str] = None
    current_team: int
    change_count: int
    last_changed: int  # milliseconds
    recent_changes: List[ContestedGymChange] = Field(default_factory=list)


class CurrentCounts(BaseModel):
    mystic: int = 0
    valor: int = 0
    instinct: int = 0
    total: int = 0


class GymHistoryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    period: str
    chart_data: List[ChartDataPoint] = Field(default_factory=list, alias="chartData")
    contested_gyms: List[ContestedGym] = Field(default_factory=list, alias="contestedGyms")
    current_counts: CurrentCounts = Field(default_factory=CurrentCounts, alias="currentCounts")
    last_updated: str = Field(default=EPOCH_ISO, alias="lastUpdated")


class Gym(BaseModel):
    id: str
    name: Optional[str] = None
    team_id: Optional[int] = None
    lat: float
    lon: float
    url: Optional[str] = None
    description: Optional[str] = None
    slots: Optional[int] = None
    guarding_pokemon_id: Optional[int] = None
    updated: int
    defenders: List[Any] = Field(default_factory=list)
    total_cp: Optional[int] = None
    last_updated: Optional[str] = None  # "5m ago"


class FactionCounts(BaseModel):
    mystic: int = 0
    valor: int = 0
    instinct: int = 0


class GymSnapshotResponse(BaseModel):
    mystic: List[Gym] = Field(default_factory=list)
    valor: List[Gym] = Field(default_factory=list)
    instinct: List[Gym] = Field(default_factory=list)
    counts: FactionCounts = Field(default_factory=FactionCounts)


class DefenderStats(BaseModel):
    pokemon_id: int
    form: Optional[int] = None
    costume: Optional[int] = None
    count: int
    total_cp: Union[int, float]
    avg_cp: int


class TeamStats(BaseModel):
    team_name: str
    team_id: int
    total_defenders: int
    unique_species: int
    top_defenders: List[DefenderStats] = Field(default_factory=list)
    total_cp: Union[int, float]
    avg_cp_per_defender: int


class StatsOverall(BaseModel):
    total_defenders_all_teams: int = 0
    timestamp: str


class StatsData(BaseModel):
    teams: List[TeamStats] = Field(default_factory=list)
    overall: StatsOverall


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool


class AccessTokenResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: str
    expires_in: int = Field(alias="expiresIn")
