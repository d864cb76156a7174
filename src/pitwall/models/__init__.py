"""pitwall data models."""

from pitwall.models.racemonitor import (
    RMCategory,
    RMCompetitor,
    RMCompetitorDetails,
    RMLapTime,
    RMLiveCompetitor,
    RMLiveSession,
    RMRace,
    RMRaceDetails,
    RMSession,
    RMSessionDetails,
    RMStreamingConnection,
)
from pitwall.models.redmist import (
    CarControlLogs,
    CarPosition,
    CompetitorMetadata,
    ControlLogEntry,
    Event,
    EventEntry,
    EventListSummary,
    Flag,
    FlagDuration,
    InCarPayload,
    Session,
    SessionState,
    TokenResponse,
)
from pitwall.models.replay import ReplayRow, ReplaySnapshot
from pitwall.models.unified import (
    FlagStatus,
    RaceExport,
    Sources,
    TransponderMapping,
    UnifiedCompetitor,
    UnifiedLap,
)

__all__ = [
    "CarControlLogs",
    "CarPosition",
    "CompetitorMetadata",
    "ControlLogEntry",
    "Event",
    "EventEntry",
    "EventListSummary",
    "Flag",
    "FlagDuration",
    "FlagStatus",
    "InCarPayload",
    "RMCategory",
    "RMCompetitor",
    "RMCompetitorDetails",
    "RMLapTime",
    "RMLiveCompetitor",
    "RMLiveSession",
    "RMRace",
    "RMRaceDetails",
    "RMSession",
    "RMSessionDetails",
    "RMStreamingConnection",
    "RaceExport",
    "ReplayRow",
    "ReplaySnapshot",
    "Session",
    "SessionState",
    "Sources",
    "TokenResponse",
    "TransponderMapping",
    "UnifiedCompetitor",
    "UnifiedLap",
]
