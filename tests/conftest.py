"""Shared test fixtures and sample API responses."""

from __future__ import annotations

import logging

import pytest

from pitwall.models.unified import FlagStatus, UnifiedLap

REDMIST_URL = "https://api.redmist.racing/status"
AUTH_URL = "https://auth.redmist.racing/realms/redmist/protocol/openid-connect/token"
RACEMONITOR_URL = "https://api.race-monitor.com/v2"


SAMPLE_TOKEN = {
    "access_token": "tok-1",
    "expires_in": 300,
    "token_type": "Bearer",
    "scope": "profile",
}

SAMPLE_CAR = {
    "eid": 1234,
    "sid": 2,
    "n": "42",
    "tp": 7654321,
    "c": "GT3",
    "bt": "1:31.204",
    "bl": 7,
    "ltm": "1:32.881",
    "ovp": 3,
    "p": 3,
    "cp": 1,
    "l": 18,
    "pc": 1,
    "ip": False,
    "flg": 1,
    "dn": "Ana Rossi",
    "og": "4.512",
}

SAMPLE_SESSION_STATE = {
    "eventId": 1234,
    "eventName": "Spring Enduro",
    "sessionId": 2,
    "sessionName": "Race",
    "lapsToGo": 12,
    "isLive": True,
    "currentFlag": 1,
    "eventEntries": [
        {"no": "42", "nm": "Ana Rossi", "t": "Rossi Racing", "c": "GT3"},
        {"no": "7", "nm": "Ben Ode", "t": "Ode Motorsport", "c": "GT4"},
    ],
    "carPositions": [SAMPLE_CAR],
}

SAMPLE_EVENT_SUMMARY = {
    "eid": 1234,
    "oid": 9,
    "on": "Club Racing",
    "en": "Spring Enduro",
    "ed": "2024-04-13",
    "l": True,
    "t": "Thunderhill",
}

SAMPLE_CONTROL_LOG = [
    {"o": 1, "t": "10:02:11", "cor": "T3", "c1": "42", "c2": "7", "n": "Contact", "s": "Reviewed", "a": "Warning"},
]

SAMPLE_RM_LAPS = [
    {"Lap": "1", "LapTime": "01:35.100", "Position": "4", "FlagStatus": "Green", "TotalTime": "00:01:35.100"},
    {"Lap": "2", "LapTime": "01:31.900", "Position": "3", "FlagStatus": "Green", "TotalTime": "00:03:07.000"},
    {"Lap": "3", "LapTime": "02:20.000", "Position": "3", "FlagStatus": "Yellow", "TotalTime": "00:05:27.000"},
]

SAMPLE_RM_COMPETITOR = {
    "ID": 555,
    "Number": "42",
    "Transponder": "7654321",
    "FirstName": "Ana",
    "LastName": "Rossi",
    "Nationality": "ITA",
    "AdditionalData": "Team: Rossi Racing",
    "ClassID": "3",
    "Category": "GT3",
    "Position": "2",
    "Laps": "19",
    "LastLapTime": "01:32.500",
    "BestLapTime": "01:31.050",
    "TotalTime": "00:29:40.250",
}

SAMPLE_RM_LIVE_SESSION = {
    "RunNumber": "5",
    "SessionName": "Race",
    "TrackName": "Thunderhill",
    "FlagStatus": "Green",
    "Competitors": {
        "1001": {**SAMPLE_RM_COMPETITOR, "RacerID": "1001"},
    },
}


def make_lap(
    lap_number: int | None,
    lap_time: int = 90_000,
    flag: FlagStatus = FlagStatus.GREEN,
    position: int | None = None,
) -> UnifiedLap:
    return UnifiedLap(
        lap_number=lap_number,
        lap_time=lap_time,
        flag_status=flag,
        position=position,
    )


def _drop_handlers(logger: logging.Logger) -> None:
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)


@pytest.fixture(autouse=True)
def _isolated_logs(tmp_path):
    """Send the call log to tmp_path and start each test with a fresh logger."""
    import pitwall._logging as mod

    named_logger = logging.getLogger(mod.LOGGER_NAME)
    saved_dir = mod._LOG_DIR
    _drop_handlers(named_logger)
    mod._logger = None
    mod._LOG_DIR = str(tmp_path / "logs")

    yield tmp_path

    _drop_handlers(named_logger)
    mod._logger = None
    mod._LOG_DIR = saved_dir
