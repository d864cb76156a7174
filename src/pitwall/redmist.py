"""Async client for the RedMist status REST API (v2)."""

from __future__ import annotations

from typing import Any, TypeVar

from pydantic import TypeAdapter

from pitwall._http import AsyncTransport
from pitwall.auth import TokenManager
from pitwall.config import get_settings
from pitwall.exceptions import ValidationError
from pitwall.models.redmist import (
    CarControlLogs,
    CarPosition,
    CompetitorMetadata,
    ControlLogEntry,
    Event,
    EventListSummary,
    FlagDuration,
    InCarPayload,
    Session,
    SessionState,
)


T = TypeVar("T")


def _validate(model_type: Any, data: Any, name: str) -> Any:
    """Validate decoded data against a model or container type."""
    try:
        return TypeAdapter(model_type).validate_python(data)
    except Exception as exc:
        raise ValidationError(f"Failed to validate {name} response: {exc}") from exc


class RedMistClient:
    """Asynchronous client for the RedMist status service.

    Endpoints that tolerate absence (an event without laps yet, an empty
    control log) return ``None`` or an empty list instead of raising.

    Usage:
        async with RedMistClient(tokens) as rm:
            events = await rm.live_events()
            state = await rm.current_session_state(event_id=42)
    """

    def __init__(
        self,
        tokens: TokenManager,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self._tokens = tokens
        self._transport = AsyncTransport(
            base_url=base_url or settings.redmist_api_url,
            timeout=timeout or settings.timeout,
        )

    async def __aenter__(self) -> RedMistClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP connection."""
        await self._transport.close()

    async def _request(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        requires_auth: bool = True,
        binary: bool = False,
    ) -> Any:
        headers: dict[str, str] = {}
        if requires_auth:
            headers["Authorization"] = f"Bearer {await self._tokens.get_token()}"
        return await self._transport.get(endpoint, params=params, headers=headers, binary=binary)

    async def _get_list(self, endpoint: str, model: type[T], **kwargs: Any) -> list[T]:
        data = await self._request(endpoint, **kwargs)
        if data is None:
            return []
        return _validate(list[model], data, model.__name__)  # type: ignore[valid-type]

    async def _get_one(self, endpoint: str, model: type[T], **kwargs: Any) -> T | None:
        data = await self._request(endpoint, **kwargs)
        if data is None:
            return None
        return _validate(model, data, model.__name__)

    # ── Events ─────────────────────────────────────────────────

    async def live_events(self) -> list[EventListSummary]:
        """Get all currently live events (public)."""
        return await self._get_list(
            "/v2/Events/LoadLiveEvents", EventListSummary, requires_auth=False,
        )

    async def live_and_recent_events(self) -> list[EventListSummary]:
        """Get live events plus the most recent non-live ones (public)."""
        return await self._get_list(
            "/v2/Events/LoadLiveAndRecentEvents", EventListSummary, requires_auth=False,
        )

    async def events(self, start_date_utc: str | None = None) -> list[Event]:
        """Get all events starting from an ISO date."""
        params = {"startDateUtc": start_date_utc} if start_date_utc else None
        return await self._get_list("/v2/Events/LoadEvents", Event, params=params)

    async def event(self, event_id: int) -> Event | None:
        return await self._get_one("/v2/Events/LoadEvent", Event, params={"eventId": event_id})

    async def sessions(self, event_id: int) -> list[Session]:
        return await self._get_list(
            "/v2/Events/LoadSessions", Session, params={"eventId": event_id},
        )

    async def session_results(self, event_id: int, session_id: int) -> SessionState | None:
        return await self._get_one(
            "/v2/Events/LoadSessionResults",
            SessionState,
            params={"eventId": event_id, "sessionId": session_id},
        )

    async def current_session_state(self, event_id: int) -> SessionState | None:
        """Get the live session snapshot (msgpack-encoded on the wire)."""
        return await self._get_one(
            "/v2/Events/GetCurrentSessionState",
            SessionState,
            params={"eventId": event_id},
            binary=True,
        )

    # ── Cars ───────────────────────────────────────────────────

    async def car_laps(self, event_id: int, session_id: int, car_number: str) -> list[CarPosition]:
        """Get completed lap records for one car, in completion order."""
        return await self._get_list(
            "/v2/Events/LoadCarLaps",
            CarPosition,
            params={"eventId": event_id, "sessionId": session_id, "carNumber": car_number},
        )

    async def competitor_metadata(self, event_id: int, car_number: str) -> CompetitorMetadata | None:
        return await self._get_one(
            "/v2/Events/LoadCompetitorMetadata",
            CompetitorMetadata,
            params={"eventId": event_id, "car": car_number},
        )

    async def in_car_payload(self, event_id: int, car_number: str) -> InCarPayload | None:
        return await self._get_one(
            "/v2/Events/LoadInCarPayload",
            InCarPayload,
            params={"eventId": event_id, "car": car_number},
        )

    # ── Control log and flags ──────────────────────────────────

    async def control_log(self, event_id: int) -> list[ControlLogEntry]:
        """Get race control decisions, penalties and incident reports."""
        return await self._get_list(
            "/v2/Events/LoadControlLog", ControlLogEntry, params={"eventId": event_id},
        )

    async def car_control_logs(self, event_id: int, car_number: str) -> CarControlLogs | None:
        return await self._get_one(
            "/v2/Events/LoadCarControlLogs",
            CarControlLogs,
            params={"eventId": event_id, "car": car_number},
        )

    async def flags(self, event_id: int, session_id: int) -> list[FlagDuration]:
        return await self._get_list(
            "/v2/Events/LoadFlags",
            FlagDuration,
            params={"eventId": event_id, "sessionId": session_id},
        )
