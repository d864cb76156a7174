"""Tests for provider and canonical models."""

from __future__ import annotations

import pydantic
import pytest

from pitwall.models import (
    CarPosition,
    RMCompetitor,
    RMStreamingConnection,
    SessionState,
    Sources,
    UnifiedCompetitor,
)
from tests.conftest import SAMPLE_CAR, SAMPLE_RM_COMPETITOR, SAMPLE_SESSION_STATE


class TestCarPosition:
    def test_wire_aliases(self) -> None:
        car = CarPosition.model_validate(SAMPLE_CAR)
        assert car.number == "42"
        assert car.transponder == 7654321
        assert car.last_time == "1:32.881"
        assert car.driver_name == "Ana Rossi"

    def test_numbers_coerced_to_strings(self) -> None:
        car = CarPosition.model_validate({"n": 42, "eid": 1234})
        assert car.number == "42"
        assert car.event_id == "1234"

    def test_position_fallbacks(self) -> None:
        car = CarPosition.model_validate({"ovp": 5, "clp": 2, "class": "GT4", "ln": " 12 "})
        assert car.resolved_position == 5
        assert car.resolved_class_position == 2
        assert car.resolved_class == "GT4"
        assert car.resolved_laps == 12

    def test_unparseable_lap_number(self) -> None:
        assert CarPosition.model_validate({"ln": "abc"}).resolved_laps is None

    def test_frozen(self) -> None:
        car = CarPosition.model_validate(SAMPLE_CAR)
        with pytest.raises(pydantic.ValidationError):
            car.number = "7"  # type: ignore[misc]


class TestSessionState:
    def test_camel_case_keys(self) -> None:
        state = SessionState.model_validate(SAMPLE_SESSION_STATE)
        assert state.event_id == 1234
        assert state.laps_to_go == 12
        assert len(state.car_positions or []) == 1

    def test_team_lookup(self) -> None:
        state = SessionState.model_validate(SAMPLE_SESSION_STATE)
        assert state.team_for("7") == "Ode Motorsport"
        assert state.team_for("99") is None
        assert state.team_for(None) is None


class TestRaceMonitorModels:
    def test_competitor_driver_name(self) -> None:
        competitor = RMCompetitor.model_validate(SAMPLE_RM_COMPETITOR)
        assert competitor.driver_name == "Ana Rossi"
        assert competitor.position == "2"

    def test_streaming_url_prefers_websocket_url(self) -> None:
        conn = RMStreamingConnection.model_validate({"WebsocketURL": "wss://a", "WSS": "wss://b"})
        assert conn.url == "wss://a"
        assert RMStreamingConnection.model_validate({"WSS": "wss://b"}).url == "wss://b"


class TestUnified:
    def test_sources_union(self) -> None:
        merged = Sources(redmist=True) | Sources(racemonitor=True)
        assert merged == Sources(redmist=True, racemonitor=True)

    def test_key_prefers_transponder(self) -> None:
        assert UnifiedCompetitor(transponder="123", car_number="42").key == "123"
        assert UnifiedCompetitor(car_number="42").key == "42"
        assert UnifiedCompetitor().key is None
