"""Async client for the Race-Monitor REST API (v2).

Every Race-Monitor call is a form-encoded POST carrying ``apiToken`` in the
body. The free tier allows about 6 requests per minute; HTTP 429 surfaces as
:class:`~pitwall.exceptions.RateLimitError`, which callers should treat as a
signal to back off rather than retry immediately.
"""

from __future__ import annotations

from typing import Any

from pydantic import TypeAdapter

from pitwall._http import AsyncTransport
from pitwall.config import get_settings
from pitwall.exceptions import APIError, AuthError, ValidationError
from pitwall.models.racemonitor import (
    RMCompetitor,
    RMCompetitorDetails,
    RMLiveSession,
    RMRace,
    RMRaceDetails,
    RMSession,
    RMSessionDetails,
    RMStreamingConnection,
)


def _validate(model_type: Any, data: Any, name: str) -> Any:
    try:
        return TypeAdapter(model_type).validate_python(data)
    except Exception as exc:
        raise ValidationError(f"Failed to validate {name} response: {exc}") from exc


class RaceMonitorClient:
    """Asynchronous client for the Race-Monitor API.

    Usage:
        async with RaceMonitorClient(api_token="...") as rm:
            races = await rm.current_races()
            live = await rm.live_session(race_id=races[0].id)
    """

    def __init__(
        self,
        api_token: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self._api_token = api_token if api_token is not None else settings.racemonitor_token
        self._transport = AsyncTransport(
            base_url=base_url or settings.racemonitor_api_url,
            timeout=timeout or settings.timeout,
        )

    async def __aenter__(self) -> RaceMonitorClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP connection."""
        await self._transport.close()

    @property
    def api_token(self) -> str | None:
        return self._api_token or None

    def set_api_token(self, token: str) -> None:
        self._api_token = token

    async def _post(self, endpoint: str, **params: Any) -> dict[str, Any]:
        if not self._api_token:
            raise AuthError("Race-Monitor API token not configured")
        body = {"apiToken": self._api_token}
        for key, value in params.items():
            if value is None:
                continue
            if isinstance(value, bool):
                value = "true" if value else "false"
            body[key] = str(value)
        data = await self._transport.post_form(endpoint, body)
        if data is None:
            return {}
        if isinstance(data, dict) and data.get("Successful") is False:
            raise APIError(
                status_code=200,
                message=data.get("ErrorMessage") or "Race-Monitor API request failed",
            )
        return data

    async def _races(self, endpoint: str) -> list[RMRace]:
        data = await self._post(endpoint)
        return _validate(list[RMRace], data.get("Races") or [], "RMRace")

    # ── Account races ──────────────────────────────────────────

    async def all_races(self) -> list[RMRace]:
        return await self._races("/Account/AllRaces")

    async def current_races(self) -> list[RMRace]:
        """Get currently live races on the account."""
        return await self._races("/Account/CurrentRaces")

    async def past_races(self) -> list[RMRace]:
        return await self._races("/Account/PastRaces")

    async def upcoming_races(self) -> list[RMRace]:
        return await self._races("/Account/UpcomingRaces")

    # ── Public races ───────────────────────────────────────────

    async def public_current_races(self) -> list[RMRace]:
        return await self._races("/Common/CurrentRaces")

    async def public_past_races(self) -> list[RMRace]:
        return await self._races("/Common/PastRaces")

    async def public_upcoming_races(self) -> list[RMRace]:
        return await self._races("/Common/UpcomingRaces")

    # ── Race ───────────────────────────────────────────────────

    async def is_race_live(self, race_id: int) -> bool:
        data = await self._post("/Race/IsLive", raceID=race_id)
        return bool(data.get("IsLive"))

    async def race_details(self, race_id: int) -> RMRaceDetails | None:
        data = await self._post("/Race/RaceDetails", raceID=race_id)
        race = data.get("Race")
        return _validate(RMRaceDetails, race, "RMRaceDetails") if race else None

    # ── Live ───────────────────────────────────────────────────

    async def live_session(self, race_id: int) -> RMLiveSession | None:
        """Get the current live session, including every competitor."""
        data = await self._post("/Live/GetSession", raceID=race_id)
        session = data.get("Session")
        return _validate(RMLiveSession, session, "RMLiveSession") if session else None

    async def live_racer(self, race_id: int, racer_id: str) -> RMCompetitorDetails | None:
        """Get one live racer with every lap time (including per-lap flag)."""
        data = await self._post("/Live/GetRacer", raceID=race_id, racerID=racer_id)
        details = data.get("Details")
        return _validate(RMCompetitorDetails, details, "RMCompetitorDetails") if details else None

    async def live_racer_count(self, race_id: int) -> int:
        data = await self._post("/Live/GetRacerCount", raceID=race_id)
        return int(data.get("Count") or 0)

    async def streaming_connection(self, race_id: int) -> RMStreamingConnection:
        data = await self._post("/Live/GetStreamingConnection", raceID=race_id)
        return _validate(RMStreamingConnection, data, "RMStreamingConnection")

    # ── Results ────────────────────────────────────────────────

    async def sessions_for_race(self, race_id: int) -> list[RMSession]:
        data = await self._post("/Results/SessionsForRace", raceID=race_id)
        return _validate(list[RMSession], data.get("Sessions") or [], "RMSession")

    async def session_details(
        self, session_id: int, include_lap_times: bool = False,
    ) -> RMSessionDetails | None:
        """Get session results; lap times make the response very large."""
        data = await self._post(
            "/Results/SessionDetails", sessionID=session_id, includeLapTimes=include_lap_times,
        )
        session = data.get("Session")
        return _validate(RMSessionDetails, session, "RMSessionDetails") if session else None

    async def competitor_details(
        self, session_id: int, competitor_id: int,
    ) -> RMCompetitorDetails | None:
        data = await self._post(
            "/Results/CompetitorDetails", sessionID=session_id, competitorID=competitor_id,
        )
        competitor = data.get("Competitor")
        if not competitor:
            return None
        return _validate(RMCompetitorDetails, competitor, "RMCompetitorDetails")

    async def search_results(self, search_term: str) -> list[RMCompetitor]:
        data = await self._post("/Results/SearchResults", searchTerm=search_term)
        return _validate(list[RMCompetitor], data.get("Results") or [], "RMCompetitor")

    async def races_with_transponder(self, transponder: str) -> list[RMRace]:
        data = await self._post("/Results/RacesWithTransponder", transponder=transponder)
        return _validate(list[RMRace], data.get("Races") or [], "RMRace")

    async def competitors_with_transponder(self, transponder: str) -> list[RMCompetitor]:
        data = await self._post("/Results/CompetitorsWithTransponder", transponder=transponder)
        return _validate(list[RMCompetitor], data.get("Competitors") or [], "RMCompetitor")
