"""RedMist status API models.

The status service abbreviates most field names (``n`` for car number,
``ltm`` for last lap time, ...). Attributes carry readable names and the
wire code as their alias; both spellings are accepted on input.
"""

from __future__ import annotations

from enum import IntEnum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Flag(IntEnum):
    """Track flag codes used by the status service."""

    NONE = 0
    GREEN = 1
    YELLOW = 2
    RED = 3
    WHITE = 4
    CHECKERED = 5
    BLACK = 6
    BLUE = 7


class TokenResponse(BaseModel):
    """Identity provider client-credentials response."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    access_token: str
    expires_in: int
    token_type: str | None = None
    scope: str | None = None


class EventListSummary(BaseModel):
    """Row of the live / recent event lists."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    event_id: int | None = Field(default=None, alias="eid")
    organization_id: int | None = Field(default=None, alias="oid")
    organization_name: str | None = Field(default=None, alias="on")
    event_name: str | None = Field(default=None, alias="en")
    event_date: str | None = Field(default=None, alias="ed")
    is_live: bool | None = Field(default=None, alias="l")
    track: str | None = Field(default=None, alias="t")


class Session(BaseModel):
    """A session (practice, qualifying, race) within an event."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    session_id: int | None = Field(default=None, alias="sid")
    event_id: int | None = Field(default=None, alias="eid")
    name: str | None = Field(default=None, alias="n")
    start_time: str | None = Field(default=None, alias="st")
    end_time: str | None = Field(default=None, alias="et")
    is_live: bool | None = Field(default=None, alias="il")
    is_practice_qualifying: bool | None = Field(default=None, alias="pq")


class Event(BaseModel):
    """Event detail."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    event_id: int | None = Field(default=None, alias="e")
    name: str | None = Field(default=None, alias="n")
    date: str | None = Field(default=None, alias="d")
    sessions: list[Session] | None = Field(default=None, alias="s")
    organization_name: str | None = Field(default=None, alias="on")
    track: str | None = Field(default=None, alias="t")
    has_control_log: bool | None = Field(default=None, alias="hc")
    is_live: bool | None = Field(default=None, alias="il")


class EventEntry(BaseModel):
    """Entry list row: car number, driver, team and class."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    number: str | None = Field(default=None, alias="no")
    name: str | None = Field(default=None, alias="nm")
    team: str | None = Field(default=None, alias="t")
    class_name: str | None = Field(default=None, alias="c")


class CarPosition(BaseModel):
    """Per-car timing snapshot; also the shape of one completed lap record."""

    model_config = ConfigDict(
        frozen=True, populate_by_name=True, extra="ignore", coerce_numbers_to_str=True,
    )

    event_id: str | None = Field(default=None, alias="eid")
    session_id: str | None = Field(default=None, alias="sid")
    number: str | None = Field(default=None, alias="n")
    transponder: int | None = Field(default=None, alias="tp")
    class_full: str | None = Field(default=None, alias="class")
    class_name: str | None = Field(default=None, alias="c")
    best_time: str | None = Field(default=None, alias="bt")
    best_lap: int | None = Field(default=None, alias="bl")
    last_time: str | None = Field(default=None, alias="ltm")
    overall_gap: str | None = Field(default=None, alias="og")
    gap_to_leader: str | None = Field(default=None, alias="gl")
    overall_position: int | None = Field(default=None, alias="ovp")
    class_position_full: int | None = Field(default=None, alias="clp")
    position: int | None = Field(default=None, alias="p")
    class_position: int | None = Field(default=None, alias="cp")
    laps: int | None = Field(default=None, alias="l")
    lap_number: str | None = Field(default=None, alias="ln")
    pit_count: int | None = Field(default=None, alias="pc")
    pit_lap: int | None = Field(default=None, alias="pl")
    in_pit: bool | None = Field(default=None, alias="ip")
    last_in_pit: bool | None = Field(default=None, alias="lip")
    last_lap_overall_position: int | None = Field(default=None, alias="llo")
    last_lap_position: int | None = Field(default=None, alias="llp")
    flag: int | None = Field(default=None, alias="flg")
    driver_name: str | None = Field(default=None, alias="dn")
    last_lap_ms: int | None = Field(default=None, alias="lastLapMs")
    best_lap_ms: int | None = Field(default=None, alias="bestLapMs")

    @property
    def resolved_position(self) -> int | None:
        """Overall position from whichever of ``p`` / ``ovp`` is present."""
        return self.position if self.position is not None else self.overall_position

    @property
    def resolved_class_position(self) -> int | None:
        if self.class_position is not None:
            return self.class_position
        return self.class_position_full

    @property
    def resolved_class(self) -> str | None:
        return self.class_name or self.class_full

    @property
    def resolved_laps(self) -> int | None:
        """Lap count from ``l``, falling back to the ``ln`` string."""
        if self.laps is not None:
            return self.laps
        if self.lap_number and self.lap_number.strip().isdigit():
            return int(self.lap_number)
        return None


class FlagDuration(BaseModel):
    """A flag period within a session."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    flag: int | None = Field(default=None, alias="f")
    start: str | None = Field(default=None, alias="s")
    end: str | None = Field(default=None, alias="e")


class SessionState(BaseModel):
    """Full session state as pushed by the hub or returned by the snapshot endpoint."""

    model_config = ConfigDict(
        frozen=True, populate_by_name=True, extra="ignore", alias_generator=to_camel,
    )

    event_id: int | None = None
    event_name: str | None = None
    session_id: int | None = None
    session_name: str | None = None
    laps_to_go: int | None = None
    time_to_go: str | None = None
    running_race_time: str | None = None
    is_practice_qualifying: bool | None = None
    is_live: bool | None = None
    event_entries: list[EventEntry] | None = None
    car_positions: list[CarPosition] | None = None
    current_flag: int | None = None
    flag_durations: list[FlagDuration] | None = None
    green_laps: int | None = None
    yellow_laps: int | None = None
    number_of_yellows: int | None = None
    last_updated: str | None = None

    def team_for(self, car_number: str | None) -> str | None:
        """Look up a car's team in the entry list."""
        if not car_number or not self.event_entries:
            return None
        for entry in self.event_entries:
            if entry.number == car_number and entry.team:
                return entry.team
        return None


class ControlLogEntry(BaseModel):
    """Race control decision, penalty or incident report."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    order: int | None = Field(default=None, alias="o")
    time: str | None = Field(default=None, alias="t")
    corner: str | None = Field(default=None, alias="cor")
    car1: str | None = Field(default=None, alias="c1")
    car2: str | None = Field(default=None, alias="c2")
    note: str | None = Field(default=None, alias="n")
    status: str | None = Field(default=None, alias="s")
    action: str | None = Field(default=None, alias="a")
    official: str | None = Field(default=None, alias="on")


class CarControlLogs(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    car_number: str | None = Field(default=None, alias="cn")
    entries: list[ControlLogEntry] | None = None


class CompetitorMetadata(BaseModel):
    """Driver and car details for one entry."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    event_id: int | None = Field(default=None, alias="e")
    number: str | None = Field(default=None, alias="n")
    transponder: int | None = Field(default=None, alias="t")
    transponder2: int | None = Field(default=None, alias="t2")
    class_name: str | None = Field(default=None, alias="cl")
    first_name: str | None = Field(default=None, alias="fn")
    last_name: str | None = Field(default=None, alias="ln")
    sponsor: str | None = Field(default=None, alias="s")
    make: str | None = Field(default=None, alias="mk")
    model: str | None = Field(default=None, alias="mo")
    country: str | None = Field(default=None, alias="c")


class CarStatus(BaseModel):
    """A nearby car in the in-car payload."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    number: str | None = Field(default=None, alias="n")
    class_name: str | None = Field(default=None, alias="c")
    team: str | None = Field(default=None, alias="t")
    lap: str | None = Field(default=None, alias="l")
    gap_to_leader: str | None = Field(default=None, alias="gl")
    gap: str | None = Field(default=None, alias="g")
    delta: str | None = Field(default=None, alias="d")


class InCarPayload(BaseModel):
    """Data tailored for an in-car driver display."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    number: str | None = Field(default=None, alias="n")
    position: str | None = Field(default=None, alias="p")
    overall: str | None = Field(default=None, alias="o")
    flag: int | None = Field(default=None, alias="f")
    cars: list[CarStatus] | None = Field(default=None, alias="c")
