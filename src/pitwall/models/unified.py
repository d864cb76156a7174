"""Canonical, provider-independent race models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class FlagStatus(str, Enum):
    """Flag shown when a lap was completed."""

    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"
    CHECKERED = "checkered"
    UNKNOWN = "unknown"


class Sources(BaseModel):
    """Which providers contributed to a record."""

    model_config = ConfigDict(frozen=True)

    redmist: bool = False
    racemonitor: bool = False

    def __or__(self, other: Sources) -> Sources:
        return Sources(
            redmist=self.redmist or other.redmist,
            racemonitor=self.racemonitor or other.racemonitor,
        )


class UnifiedLap(BaseModel):
    """One completed lap. Times are integer milliseconds, 0 when unknown."""

    model_config = ConfigDict(frozen=True)

    transponder: str | None = None
    car_number: str | None = None
    lap_number: int | None = None
    lap_time: int = 0
    position: int | None = None
    flag_status: FlagStatus = FlagStatus.UNKNOWN
    total_time: int = 0
    source: str = "merged"


class UnifiedCompetitor(BaseModel):
    """One physical car, merged from every provider that has seen it."""

    model_config = ConfigDict(frozen=True)

    transponder: str | None = None
    car_number: str | None = None
    driver_name: str | None = None
    team_name: str | None = None
    class_name: str | None = None
    position: int | None = None
    class_position: int | None = None
    laps: int = 0
    last_lap_time: int | None = None
    best_lap_time: int | None = None
    total_time: int | None = None
    pit_count: int | None = None
    last_pit_lap: int | None = None
    in_pit: bool | None = None
    flag_status: str | None = None
    lap_history: tuple[UnifiedLap, ...] = ()
    sources: Sources = Sources()
    # Arrival order of the latest record from each provider, 0 when unset
    redmist_seq: int = 0
    racemonitor_seq: int = 0

    @property
    def key(self) -> str | None:
        """Correlation key: transponder when known, otherwise car number."""
        return self.transponder or self.car_number


class TransponderMapping(BaseModel):
    """Durable transponder -> car identity record."""

    model_config = ConfigDict(frozen=True)

    transponder: str
    car_number: str | None = None
    driver_name: str | None = None
    team_name: str | None = None
    class_name: str | None = None
    redmist_event_id: int | None = None
    racemonitor_race_id: int | None = None


class RaceExport(BaseModel):
    """Archived race: merged competitors plus the mappings that linked them."""

    model_config = ConfigDict(frozen=True)

    export_date: str
    redmist_event_id: int | None = None
    racemonitor_race_id: int | None = None
    event_name: str | None = None
    track_name: str | None = None
    session_name: str | None = None
    competitors: tuple[UnifiedCompetitor, ...] = ()
    transponder_mappings: tuple[TransponderMapping, ...] = ()
