"""Race-Monitor live command stream.

The socket delivers newline-separated command lines such as::

    $F,14,"00:12:45","13:42:10","00:47:15","Green "
    $RMHL,"1234",12,3,"01:31.456","Green","00:18:22.104"

``parse_line`` splits a line on commas outside double quotes and
``parse_command`` turns the fields into a typed command record.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, ClassVar

import aiohttp

from pitwall.exceptions import ConnectionFailedError, DecodeError
from pitwall.models.racemonitor import RMStreamingConnection

_LOGGER = logging.getLogger(__name__)


# ── Commands ───────────────────────────────────────────────────


@dataclass(frozen=True)
class RacerInfo:
    tag: ClassVar[str] = "$A"
    racer_id: str
    number: str
    transponder: str
    first_name: str
    last_name: str
    nationality: str
    class_id: int


@dataclass(frozen=True)
class RunInfo:
    tag: ClassVar[str] = "$B"
    run_id: int
    session_name: str


@dataclass(frozen=True)
class ClassInfo:
    tag: ClassVar[str] = "$C"
    class_id: int
    description: str


@dataclass(frozen=True)
class CompetitorInfo:
    tag: ClassVar[str] = "$COMP"
    racer_id: str
    number: str
    class_id: int
    first_name: str
    last_name: str
    nationality: str
    additional_data: str


@dataclass(frozen=True)
class TrackSetting:
    """``TRACKNAME`` or ``TRACKLENGTH``."""

    tag: ClassVar[str] = "$E"
    setting: str
    value: str


@dataclass(frozen=True)
class Heartbeat:
    tag: ClassVar[str] = "$F"
    laps_to_go: int
    time_to_go: str
    time_of_day: str
    race_time: str
    flag_status: str


@dataclass(frozen=True)
class RacePosition:
    tag: ClassVar[str] = "$G"
    position: int
    racer_id: str
    laps: int
    total_time: str


@dataclass(frozen=True)
class QualifyingPosition:
    tag: ClassVar[str] = "$H"
    position: int
    racer_id: str
    best_lap: int
    best_lap_time: str


@dataclass(frozen=True)
class InitRecord:
    tag: ClassVar[str] = "$I"
    time_of_day: str | None
    date: str | None


@dataclass(frozen=True)
class PassingInfo:
    tag: ClassVar[str] = "$J"
    racer_id: str
    lap_time: str
    total_time: str


@dataclass(frozen=True)
class SortMode:
    tag: ClassVar[str] = "$RMS"
    mode: str


@dataclass(frozen=True)
class LastPassing:
    tag: ClassVar[str] = "$RMLT"
    racer_id: str
    time_of_last_passing: int


@dataclass(frozen=True)
class RelayTime:
    tag: ClassVar[str] = "$RMCA"
    relay_server_time: int


@dataclass(frozen=True)
class LapHistory:
    """One historical lap, sent in reply to ``$GET``."""

    tag: ClassVar[str] = "$RMHL"
    racer_id: str
    lap_number: int
    position: int
    lap_time: str
    flag_status: str
    total_time: str


StreamCommand = (
    RacerInfo | RunInfo | ClassInfo | CompetitorInfo | TrackSetting | Heartbeat
    | RacePosition | QualifyingPosition | InitRecord | PassingInfo | SortMode
    | LastPassing | RelayTime | LapHistory
)

StreamCallback = Callable[[StreamCommand], None]


# ── Parsing ────────────────────────────────────────────────────


def parse_line(line: str) -> list[str]:
    """Split *line* on commas, keeping commas inside double quotes."""
    parts: list[str] = []
    current: list[str] = []
    in_quotes = False
    for char in line:
        if char == '"':
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(char)
    parts.append("".join(current).strip())
    return parts


def _int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return 0


def _field(parts: list[str], i: int) -> str:
    return parts[i] if i < len(parts) else ""


def _build_racer(p: list[str]) -> RacerInfo:
    number, transponder, first, last, nationality, class_id = (_field(p, i) for i in range(2, 8))
    return RacerInfo(p[1], number, transponder, first, last, nationality, _int(class_id))


def _build_competitor(p: list[str]) -> CompetitorInfo:
    number, class_id, first, last, nationality, extra = (_field(p, i) for i in range(2, 8))
    return CompetitorInfo(p[1], number, _int(class_id), first, last, nationality, extra)


def _build_lap_history(p: list[str]) -> LapHistory:
    return LapHistory(p[1], _int(p[2]), _int(p[3]), p[4], _field(p, 5), _field(p, 6))


# tag -> (minimum field count including the tag, builder)
_COMMANDS: dict[str, tuple[int, Callable[[list[str]], StreamCommand]]] = {
    "$A": (3, _build_racer),
    "$B": (2, lambda p: RunInfo(_int(p[1]), _field(p, 2))),
    "$C": (2, lambda p: ClassInfo(_int(p[1]), _field(p, 2))),
    "$COMP": (3, _build_competitor),
    "$E": (3, lambda p: TrackSetting(p[1], p[2])),
    "$F": (6, lambda p: Heartbeat(_int(p[1]), p[2], p[3], p[4], p[5])),
    "$G": (4, lambda p: RacePosition(_int(p[1]), p[2], _int(p[3]), _field(p, 4))),
    "$H": (4, lambda p: QualifyingPosition(_int(p[1]), p[2], _int(p[3]), _field(p, 4))),
    "$I": (1, lambda p: InitRecord(_field(p, 1) or None, _field(p, 2) or None)),
    "$J": (3, lambda p: PassingInfo(p[1], p[2], _field(p, 3))),
    "$RMS": (2, lambda p: SortMode(p[1] or "race")),
    "$RMLT": (3, lambda p: LastPassing(p[1], _int(p[2]))),
    "$RMCA": (2, lambda p: RelayTime(_int(p[1]))),
    "$RMHL": (5, _build_lap_history),
}


def parse_command(line: str) -> StreamCommand | None:
    """Decode one command line.

    Returns None for blank lines and unknown tags. Raises
    :class:`~pitwall.exceptions.DecodeError` when a known tag carries too
    few fields.
    """
    if not line.strip():
        return None
    parts = parse_line(line.strip())
    tag = parts[0]
    if tag not in _COMMANDS:
        _LOGGER.debug("Ignoring unknown stream command %r", tag)
        return None
    min_fields, build = _COMMANDS[tag]
    if len(parts) < min_fields:
        raise DecodeError(f"Malformed {tag} command: {line!r}")
    return build(parts)


# ── Client ─────────────────────────────────────────────────────


class RaceMonitorStream:
    """WebSocket client for the Race-Monitor command stream.

    An unexpected close triggers up to ``max_reconnect_attempts`` reconnects,
    waiting ``reconnect_delay * attempt`` seconds before each one.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession | None = None,
        max_reconnect_attempts: int = 5,
        reconnect_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._session = session
        self._owns_session = session is None
        self._max_attempts = max_reconnect_attempts
        self._delay = reconnect_delay
        self._sleep = sleep
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader: asyncio.Task[None] | None = None
        self._connection: RMStreamingConnection | None = None
        self._callbacks: list[StreamCallback] = []
        self._attempts = 0

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    def subscribe(self, callback: StreamCallback) -> Callable[[], None]:
        """Register *callback* for every decoded command; returns an unsubscriber."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._callbacks.remove(callback)

        return unsubscribe

    async def connect(self, connection: RMStreamingConnection) -> None:
        url = connection.url
        if not url:
            raise ConnectionFailedError("Streaming connection has no websocket URL")
        self._connection = connection
        await self._open(url)
        self._attempts = 0

    async def _open(self, url: str) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        _LOGGER.info("Connecting to Race-Monitor stream %s", url)
        try:
            self._ws = await self._session.ws_connect(url, heartbeat=30)
        except (aiohttp.ClientError, OSError) as exc:
            raise ConnectionFailedError(f"Failed to connect to {url}: {exc}") from exc
        self._reader = asyncio.create_task(self._read_loop(self._ws))

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                self.handle_message(msg.data)
            elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                break
        _LOGGER.info("Race-Monitor stream closed (code=%s)", ws.close_code)
        if self._connection is not None:
            await self._reconnect()

    async def _reconnect(self) -> None:
        while self._connection is not None and self._attempts < self._max_attempts:
            self._attempts += 1
            delay = self._delay * self._attempts
            _LOGGER.info("Reconnecting in %.1fs (attempt %d)", delay, self._attempts)
            await self._sleep(delay)
            if self._connection is None or not self._connection.url:
                return
            try:
                await self._open(self._connection.url)
            except ConnectionFailedError as exc:
                _LOGGER.warning("Reconnect attempt %d failed: %s", self._attempts, exc)
                continue
            self._attempts = 0
            return
        if self._connection is not None:
            _LOGGER.error("Giving up on Race-Monitor stream after %d attempts", self._attempts)

    def handle_message(self, data: str) -> None:
        """Decode every line in *data* and fan the commands out to subscribers."""
        for line in data.split("\n"):
            try:
                command = parse_command(line)
            except DecodeError as exc:
                _LOGGER.warning("Dropping stream line: %s", exc)
                continue
            if command is None:
                continue
            for callback in list(self._callbacks):
                try:
                    callback(command)
                except Exception:
                    _LOGGER.exception("Stream callback failed for %s", command.tag)

    async def request_racer_history(self, racer_id: str) -> bool:
        """Ask the server for a racer's lap history; False when not connected."""
        if not self.connected:
            return False
        await self._ws.send_str(f"$GET,{racer_id}")
        return True

    async def disconnect(self) -> None:
        self._connection = None
        self._callbacks.clear()
        if self._reader is not None and self._reader is not asyncio.current_task():
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader
        self._reader = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
