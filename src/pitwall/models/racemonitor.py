"""Race-Monitor API models.

Race-Monitor sends PascalCase keys and most numbers as strings. Numeric
strings stay strings here; conversion to integers and milliseconds happens
during reconciliation.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

_RM_CONFIG = ConfigDict(
    frozen=True, populate_by_name=True, extra="ignore", coerce_numbers_to_str=True,
)


class RMRace(BaseModel):
    """A race (event) on the Race-Monitor account or public listing."""

    model_config = _RM_CONFIG

    id: int | None = Field(default=None, alias="ID")
    name: str | None = Field(default=None, alias="Name")
    track_name: str | None = Field(default=None, alias="TrackName")
    start_date: str | None = Field(default=None, alias="StartDate")
    end_date: str | None = Field(default=None, alias="EndDate")
    series_name: str | None = Field(default=None, alias="SeriesName")
    is_live: bool | None = Field(default=None, alias="IsLive")
    live_timing_available: bool | None = Field(default=None, alias="LiveTimingAvailable")


class RMRaceDetails(RMRace):
    track_length: str | None = Field(default=None, alias="TrackLength")
    description: str | None = Field(default=None, alias="Description")


class RMCategory(BaseModel):
    model_config = _RM_CONFIG

    id: str | None = Field(default=None, alias="ID")
    name: str | None = Field(default=None, alias="Name")


class RMLapTime(BaseModel):
    """One completed lap, including the flag shown when it was completed."""

    model_config = _RM_CONFIG

    lap: str | None = Field(default=None, alias="Lap")
    lap_time: str | None = Field(default=None, alias="LapTime")
    position: str | None = Field(default=None, alias="Position")
    flag_status: str | None = Field(default=None, alias="FlagStatus")
    total_time: str | None = Field(default=None, alias="TotalTime")


class _RMCompetitorBase(BaseModel):
    model_config = _RM_CONFIG

    number: str | None = Field(default=None, alias="Number")
    transponder: str | None = Field(default=None, alias="Transponder")
    first_name: str | None = Field(default=None, alias="FirstName")
    last_name: str | None = Field(default=None, alias="LastName")
    nationality: str | None = Field(default=None, alias="Nationality")
    additional_data: str | None = Field(default=None, alias="AdditionalData")
    class_id: str | None = Field(default=None, alias="ClassID")
    position: str | None = Field(default=None, alias="Position")
    laps: str | None = Field(default=None, alias="Laps")
    last_lap_time: str | None = Field(default=None, alias="LastLapTime")
    best_position: str | None = Field(default=None, alias="BestPosition")
    best_lap: str | None = Field(default=None, alias="BestLap")
    best_lap_time: str | None = Field(default=None, alias="BestLapTime")
    total_time: str | None = Field(default=None, alias="TotalTime")

    @property
    def driver_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class RMCompetitor(_RMCompetitorBase):
    """A competitor in a session result."""

    id: int | None = Field(default=None, alias="ID")
    session_id: int | None = Field(default=None, alias="SessionID")
    race_id: int | None = Field(default=None, alias="RaceID")
    category: str | None = Field(default=None, alias="Category")
    lap_times: list[RMLapTime] | None = Field(default=None, alias="LapTimes")


class RMLiveCompetitor(_RMCompetitorBase):
    """A competitor in the live session view."""

    racer_id: str | None = Field(default=None, alias="RacerID")


class RMCompetitorDetails(BaseModel):
    model_config = _RM_CONFIG

    competitor: RMCompetitor | None = Field(default=None, alias="Competitor")
    laps: list[RMLapTime] | None = Field(default=None, alias="Laps")


class RMSession(BaseModel):
    model_config = _RM_CONFIG

    id: int | None = Field(default=None, alias="ID")
    race_id: int | None = Field(default=None, alias="RaceID")
    name: str | None = Field(default=None, alias="Name")
    session_date: str | None = Field(default=None, alias="SessionDate")
    session_time: str | None = Field(default=None, alias="SessionTime")
    sort_mode: str | None = Field(default=None, alias="SortMode")


class RMSessionDetails(RMSession):
    sorted_competitors: list[RMCompetitor] | None = Field(default=None, alias="SortedCompetitors")
    categories: dict[str, RMCategory] | None = Field(default=None, alias="Categories")


class RMLiveSession(BaseModel):
    """Current state of a live session."""

    model_config = _RM_CONFIG

    run_number: str | None = Field(default=None, alias="RunNumber")
    session_name: str | None = Field(default=None, alias="SessionName")
    track_name: str | None = Field(default=None, alias="TrackName")
    time_to_go: str | None = Field(default=None, alias="TimeToGo")
    laps_to_go: str | None = Field(default=None, alias="LapsToGo")
    flag_status: str | None = Field(default=None, alias="FlagStatus")
    sort_mode: str | None = Field(default=None, alias="SortMode")
    classes: dict[str, RMCategory] | None = Field(default=None, alias="Classes")
    competitors: dict[str, RMLiveCompetitor] | None = Field(default=None, alias="Competitors")


class RMStreamingConnection(BaseModel):
    """Connection details for the live command socket."""

    model_config = _RM_CONFIG

    websocket_url: str | None = Field(default=None, alias="WebsocketURL")
    ws: str | None = Field(default=None, alias="WS")
    wss: str | None = Field(default=None, alias="WSS")
    instance: str | None = Field(default=None, alias="Instance")
    live_timing_token: str | None = Field(default=None, alias="LiveTimingToken")

    @property
    def url(self) -> str | None:
        return self.websocket_url or self.wss
