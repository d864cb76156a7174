"""Live connection to the RedMist status hub.

:class:`LiveConnection` owns the subscription set and the connection state
machine::

    disconnected -> connecting -> connected <-> reconnecting -> disconnected

The wire is abstracted behind :class:`HubTransport`; the shipped
:class:`SignalRTransport` speaks the SignalR JSON hub protocol over an
``aiohttp`` websocket.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable

import aiohttp
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from pitwall.codec import decode_envelope
from pitwall.config import get_settings
from pitwall.exceptions import (
    ConnectionFailedError,
    DecodeError,
    PitwallError,
    RequestTimeoutError,
    TransportError,
)
from pitwall.models.redmist import CarControlLogs, CarPosition, ControlLogEntry, InCarPayload, SessionState

_LOGGER = logging.getLogger(__name__)

BACKOFF_SCHEDULE: tuple[float, ...] = (0.0, 2.0, 10.0, 30.0)


def reconnect_delay(attempt: int) -> float:
    """Seconds to wait before reconnect *attempt* (0-based); 30 s after the fourth."""
    return BACKOFF_SCHEDULE[min(max(attempt, 0), len(BACKOFF_SCHEDULE) - 1)]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class SubscriptionKind(str, Enum):
    EVENT = "event"
    CONTROL_LOG = "control_log"
    CAR_CONTROL_LOG = "car_control_log"
    IN_CAR = "in_car"


# kind -> (subscribe method, unsubscribe method)
_HUB_METHODS: dict[SubscriptionKind, tuple[str, str]] = {
    SubscriptionKind.EVENT: ("SubscribeToEventV2", "UnsubscribeFromEventV2"),
    SubscriptionKind.CONTROL_LOG: ("SubscribeToControlLogs", "UnsubscribeFromControlLogs"),
    SubscriptionKind.CAR_CONTROL_LOG: ("SubscribeToCarControlLogs", "UnsubscribeFromCarControlLogs"),
    SubscriptionKind.IN_CAR: ("SubscribeToInCarDriverEvent", "UnsubscribeFromInCarDriverEvent"),
}


@dataclass(frozen=True)
class Subscription:
    kind: SubscriptionKind
    event_id: int
    car_number: str | None = None

    @property
    def args(self) -> tuple[Any, ...]:
        if self.car_number is None:
            return (self.event_id,)
        return (self.event_id, self.car_number)

    @property
    def subscribe_method(self) -> str:
        return _HUB_METHODS[self.kind][0]

    @property
    def unsubscribe_method(self) -> str:
        return _HUB_METHODS[self.kind][1]


class MessageKind(str, Enum):
    SESSION = "session"
    PATCH = "patch"
    CAR_POSITIONS = "car_positions"
    CONTROL_LOG = "control_log"
    IN_CAR = "in_car"


_TARGET_KINDS: dict[str, MessageKind] = {
    "ReceiveSessionPatch": MessageKind.PATCH,
    "ReceiveCarPatches": MessageKind.CAR_POSITIONS,
    "ReceiveControlLog": MessageKind.CONTROL_LOG,
    "ReceiveInCarPayload": MessageKind.IN_CAR,
}


def classify(message: Any) -> MessageKind | None:
    """Identify a decoded ``ReceiveMessage`` envelope by its discriminant keys."""
    if not isinstance(message, dict):
        return None
    if message.get("t") == "patch":
        return MessageKind.PATCH
    if "eventId" in message or "sessionId" in message:
        return MessageKind.SESSION
    if message.get("cps") or message.get("carPositions"):
        return MessageKind.CAR_POSITIONS
    return None


_CAR_POSITIONS = TypeAdapter(list[CarPosition])
_CONTROL_LOG = TypeAdapter(list[ControlLogEntry])


def to_typed(kind: MessageKind, data: Any) -> Any:
    """Validate a payload into its model type; patches stay as raw dicts."""
    try:
        if kind is MessageKind.SESSION:
            return SessionState.model_validate(data)
        if kind is MessageKind.CAR_POSITIONS:
            if isinstance(data, dict):
                data = data.get("cps") or data.get("carPositions") or []
            return _CAR_POSITIONS.validate_python(data)
        if kind is MessageKind.CONTROL_LOG:
            if isinstance(data, dict):
                return CarControlLogs.model_validate(data)
            return _CONTROL_LOG.validate_python(data)
        if kind is MessageKind.IN_CAR:
            return InCarPayload.model_validate(data)
    except PydanticValidationError as exc:
        raise DecodeError(f"Invalid {kind.value} payload: {exc}") from exc
    return data


MessageHandler = Callable[[Any], None]
StateListener = Callable[[ConnectionState], None]
ErrorListener = Callable[[Exception], None]


# ── Transport ──────────────────────────────────────────────────


class HubTransport(ABC):
    """A bidirectional hub channel."""

    @abstractmethod
    async def start(self) -> None:
        """Open the channel. Raises TransportError or AuthError on failure."""

    @abstractmethod
    async def stop(self) -> None:
        """Close the channel; safe to call when already closed."""

    @abstractmethod
    async def invoke(self, method: str, *args: Any) -> Any:
        """Call a hub method and wait for its completion."""

    @abstractmethod
    def messages(self) -> AsyncIterator[tuple[str, list[Any]]]:
        """Yield ``(target, arguments)`` until stopped; raise TransportError on loss."""


RECORD_SEPARATOR = "\x1e"

_INVOCATION = 1
_COMPLETION = 3
_PING = 6
_CLOSE = 7

_CLOSED = object()


def _frame(message: dict[str, Any]) -> str:
    return json.dumps(message, separators=(",", ":")) + RECORD_SEPARATOR


class SignalRTransport(HubTransport):
    """SignalR JSON hub protocol over a websocket, negotiation skipped.

    The bearer token is passed as the ``access_token`` query parameter and
    fetched from *token_provider* on every start.
    """

    def __init__(
        self,
        token_provider: Callable[[], Awaitable[str]],
        url: str | None = None,
        session: aiohttp.ClientSession | None = None,
        timeout: float | None = None,
        keepalive_interval: float = 15.0,
    ) -> None:
        settings = get_settings()
        self._url = url or settings.redmist_hub_url
        self._token_provider = token_provider
        self._session = session
        self._owns_session = session is None
        self._timeout = timeout or settings.timeout
        self._keepalive_interval = keepalive_interval
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader: asyncio.Task[None] | None = None
        self._keepalive: asyncio.Task[None] | None = None
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._pending: dict[str, asyncio.Future[Any]] = {}
        self._ids = itertools.count(1)
        self._stopping = False
        self._close_error: str | None = None

    async def start(self) -> None:
        token = await self._token_provider()
        if self._session is None:
            self._session = aiohttp.ClientSession()
        self._queue = asyncio.Queue()
        self._stopping = False
        self._close_error = None
        try:
            self._ws = await asyncio.wait_for(
                self._session.ws_connect(self._url, params={"access_token": token}),
                self._timeout,
            )
            await self._ws.send_str(_frame({"protocol": "json", "version": 1}))
            reply = await asyncio.wait_for(self._ws.receive(), self._timeout)
        except asyncio.TimeoutError as exc:
            await self._close_ws()
            raise RequestTimeoutError("Hub handshake timed out") from exc
        except (aiohttp.ClientError, OSError) as exc:
            await self._close_ws()
            raise ConnectionFailedError(f"Failed to connect to {self._url}: {exc}") from exc

        if reply.type != aiohttp.WSMsgType.TEXT:
            await self._close_ws()
            raise ConnectionFailedError(f"Unexpected handshake frame: {reply.type!r}")
        try:
            handshake = json.loads(reply.data.split(RECORD_SEPARATOR, 1)[0] or "{}")
        except json.JSONDecodeError as exc:
            await self._close_ws()
            raise ConnectionFailedError("Malformed hub handshake") from exc
        if handshake.get("error"):
            await self._close_ws()
            raise ConnectionFailedError(f"Hub handshake rejected: {handshake['error']}")

        _LOGGER.info("Connected to hub %s", self._url)
        self._reader = asyncio.create_task(self._read_loop(self._ws))
        self._keepalive = asyncio.create_task(self._keepalive_loop(self._ws))

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        try:
            async for msg in ws:
                if msg.type != aiohttp.WSMsgType.TEXT:
                    if msg.type == aiohttp.WSMsgType.ERROR:
                        break
                    continue
                for raw in msg.data.split(RECORD_SEPARATOR):
                    if raw:
                        self._handle_frame(raw)
        finally:
            for future in self._pending.values():
                if not future.done():
                    future.set_exception(ConnectionFailedError("Hub connection lost"))
            self._pending.clear()
            self._queue.put_nowait(_CLOSED)

    def _handle_frame(self, raw: str) -> None:
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            _LOGGER.warning("Dropping unparseable hub frame: %.80s", raw)
            return
        if not isinstance(message, dict):
            _LOGGER.warning("Dropping malformed hub frame: %.80s", raw)
            return
        kind = message.get("type")
        if kind == _INVOCATION:
            self._queue.put_nowait((message.get("target", ""), message.get("arguments") or []))
        elif kind == _COMPLETION:
            future = self._pending.pop(str(message.get("invocationId")), None)
            if future is None or future.done():
                return
            if message.get("error"):
                future.set_exception(TransportError(f"Hub invocation failed: {message['error']}"))
            else:
                future.set_result(message.get("result"))
        elif kind == _CLOSE:
            self._close_error = message.get("error")
            _LOGGER.info("Hub sent close (error=%s)", self._close_error)

    async def _keepalive_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        while not ws.closed:
            await asyncio.sleep(self._keepalive_interval)
            with contextlib.suppress(ConnectionError, aiohttp.ClientError):
                await ws.send_str(_frame({"type": _PING}))

    async def invoke(self, method: str, *args: Any) -> Any:
        if self._ws is None or self._ws.closed:
            raise ConnectionFailedError(f"Cannot invoke {method}: hub not connected")
        invocation_id = str(next(self._ids))
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[invocation_id] = future
        try:
            await self._ws.send_str(_frame({
                "type": _INVOCATION,
                "invocationId": invocation_id,
                "target": method,
                "arguments": list(args),
            }))
            return await asyncio.wait_for(future, self._timeout)
        except asyncio.TimeoutError as exc:
            raise RequestTimeoutError(f"Hub invocation {method} timed out") from exc
        except (aiohttp.ClientError, ConnectionError) as exc:
            raise ConnectionFailedError(f"Hub invocation {method} failed: {exc}") from exc
        finally:
            self._pending.pop(invocation_id, None)

    async def messages(self) -> AsyncIterator[tuple[str, list[Any]]]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                if self._stopping:
                    return
                raise ConnectionFailedError(
                    f"Hub connection lost: {self._close_error or 'socket closed'}",
                )
            yield item

    async def _close_ws(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None

    async def stop(self) -> None:
        self._stopping = True
        if self._keepalive is not None:
            self._keepalive.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._keepalive
            self._keepalive = None
        await self._close_ws()
        if self._reader is not None:
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            except Exception:
                _LOGGER.exception("Hub reader task failed")
            self._reader = None
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None


# ── Connection manager ─────────────────────────────────────────


class LiveConnection:
    """Connection state machine and subscription owner for the status hub.

    Subscriptions survive reconnects: after the transport comes back every
    active subscription is re-issued before the state returns to
    ``connected``. Removing a subscription drops it from the set first so it
    is never re-issued.
    """

    def __init__(
        self,
        transport: HubTransport,
        max_attempts: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._transport = transport
        self._max_attempts = max_attempts or get_settings().reconnect_max_attempts
        self._sleep = sleep
        self._state = ConnectionState.DISCONNECTED
        # insertion-ordered set
        self._subscriptions: dict[Subscription, None] = {}
        self._handlers: dict[MessageKind, list[MessageHandler]] = {kind: [] for kind in MessageKind}
        self._state_listeners: list[StateListener] = []
        self._error_listeners: list[ErrorListener] = []
        self._loop_task: asyncio.Task[None] | None = None
        self._closing = False

    # ── Observers ─────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def subscriptions(self) -> frozenset[Subscription]:
        return frozenset(self._subscriptions)

    def on(self, kind: MessageKind, handler: MessageHandler) -> Callable[[], None]:
        """Register *handler* for messages of *kind*; returns an unregister callable."""
        self._handlers[kind].append(handler)
        return lambda: self._discard(self._handlers[kind], handler)

    def on_state_change(self, listener: StateListener) -> Callable[[], None]:
        self._state_listeners.append(listener)
        return lambda: self._discard(self._state_listeners, listener)

    def on_error(self, listener: ErrorListener) -> Callable[[], None]:
        self._error_listeners.append(listener)
        return lambda: self._discard(self._error_listeners, listener)

    @staticmethod
    def _discard(items: list[Any], item: Any) -> None:
        with contextlib.suppress(ValueError):
            items.remove(item)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        _LOGGER.info("Hub connection %s -> %s", self._state.value, state.value)
        self._state = state
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:
                _LOGGER.exception("Connection state listener failed")

    def _report_error(self, error: Exception) -> None:
        for listener in list(self._error_listeners):
            try:
                listener(error)
            except Exception:
                _LOGGER.exception("Connection error listener failed")

    # ── Lifecycle ─────────────────────────────────────────────

    async def connect(self) -> None:
        """Open the hub channel.

        Raises whatever the transport raised (``TransportError`` or
        ``AuthError``) after falling back to ``disconnected``.
        """
        if self._state is not ConnectionState.DISCONNECTED:
            _LOGGER.debug("connect() ignored in state %s", self._state.value)
            return
        self._closing = False
        self._set_state(ConnectionState.CONNECTING)
        try:
            await self._transport.start()
        except PitwallError:
            self._set_state(ConnectionState.DISCONNECTED)
            raise
        self._set_state(ConnectionState.CONNECTED)
        self._loop_task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while True:
            try:
                async for target, args in self._transport.messages():
                    self._dispatch(target, args)
                error: TransportError = ConnectionFailedError("Hub channel ended")
            except TransportError as exc:
                error = exc
            if self._closing:
                return
            _LOGGER.warning("Hub connection lost: %s", error)
            if not await self._reconnect():
                self._report_error(error)
                return

    async def _reconnect(self) -> bool:
        self._set_state(ConnectionState.RECONNECTING)
        for attempt in range(self._max_attempts):
            await self._sleep(reconnect_delay(attempt))
            if self._closing:
                return False
            try:
                await self._transport.stop()
                await self._transport.start()
                await self._resubscribe()
            except PitwallError as exc:
                _LOGGER.warning("Reconnect attempt %d/%d failed: %s", attempt + 1, self._max_attempts, exc)
                continue
            self._set_state(ConnectionState.CONNECTED)
            return True
        _LOGGER.error("Giving up on hub after %d reconnect attempts", self._max_attempts)
        self._set_state(ConnectionState.DISCONNECTED)
        return False

    async def _resubscribe(self) -> None:
        # Subscriptions added while this runs are picked up by the next pass.
        issued: set[Subscription] = set()
        while True:
            pending = [sub for sub in self._subscriptions if sub not in issued]
            if not pending:
                break
            for sub in pending:
                if sub not in self._subscriptions:
                    continue
                await self._transport.invoke(sub.subscribe_method, *sub.args)
                issued.add(sub)
        _LOGGER.info("Re-issued %d subscriptions", len(self._subscriptions))

    async def disconnect(self) -> None:
        """Unsubscribe everything, close the transport and clear state.

        Failures along the way leave a degraded server-side state which is
        logged, never raised.
        """
        self._closing = True
        if self._state is ConnectionState.CONNECTED:
            for sub in list(self._subscriptions):
                try:
                    await self._transport.invoke(sub.unsubscribe_method, *sub.args)
                except PitwallError as exc:
                    _LOGGER.warning("Unsubscribe %s failed during teardown: %s", sub, exc)
        elif self._subscriptions:
            _LOGGER.warning(
                "Closing hub with %d subscriptions still registered server-side",
                len(self._subscriptions),
            )
        try:
            await self._transport.stop()
        except PitwallError as exc:
            _LOGGER.warning("Transport stop failed: %s", exc)
        if self._loop_task is not None and self._loop_task is not asyncio.current_task():
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
        self._loop_task = None
        self._subscriptions.clear()
        self._set_state(ConnectionState.DISCONNECTED)

    # ── Subscriptions ─────────────────────────────────────────

    async def _subscribe(self, sub: Subscription) -> None:
        if sub in self._subscriptions:
            return
        if self._state is ConnectionState.RECONNECTING:
            # issued by the resubscribe pass
            self._subscriptions[sub] = None
            return
        if self._state is not ConnectionState.CONNECTED:
            raise ConnectionFailedError("Not connected to hub")
        await self._transport.invoke(sub.subscribe_method, *sub.args)
        self._subscriptions[sub] = None
        _LOGGER.info("Subscribed %s", sub)

    async def _unsubscribe(self, sub: Subscription) -> None:
        if self._subscriptions.pop(sub, False) is False:
            return
        if self._state is not ConnectionState.CONNECTED:
            return
        try:
            await self._transport.invoke(sub.unsubscribe_method, *sub.args)
        except PitwallError as exc:
            _LOGGER.warning("Unsubscribe %s failed: %s", sub, exc)

    async def subscribe_to_event(self, event_id: int) -> None:
        """Subscribe to status updates and the control log for an event."""
        await self._subscribe(Subscription(SubscriptionKind.EVENT, event_id))
        await self._subscribe(Subscription(SubscriptionKind.CONTROL_LOG, event_id))

    async def unsubscribe_from_event(self, event_id: int) -> None:
        await self._unsubscribe(Subscription(SubscriptionKind.EVENT, event_id))
        await self._unsubscribe(Subscription(SubscriptionKind.CONTROL_LOG, event_id))

    async def subscribe_to_car_control_logs(self, event_id: int, car_number: str) -> None:
        await self._subscribe(Subscription(SubscriptionKind.CAR_CONTROL_LOG, event_id, car_number))

    async def unsubscribe_from_car_control_logs(self, event_id: int, car_number: str) -> None:
        await self._unsubscribe(Subscription(SubscriptionKind.CAR_CONTROL_LOG, event_id, car_number))

    async def subscribe_to_in_car_driver_event(self, event_id: int, car_number: str) -> None:
        await self._subscribe(Subscription(SubscriptionKind.IN_CAR, event_id, car_number))

    async def unsubscribe_from_in_car_driver_event(self, event_id: int, car_number: str) -> None:
        await self._unsubscribe(Subscription(SubscriptionKind.IN_CAR, event_id, car_number))

    # ── Dispatch ──────────────────────────────────────────────

    def _dispatch(self, target: str, args: list[Any]) -> None:
        payload = args[0] if args else None
        try:
            if target == "ReceiveMessage":
                data = payload if isinstance(payload, (dict, list)) else self._decode(payload)
                kind = classify(data)
                if kind is None:
                    _LOGGER.debug("Unclassified hub message dropped")
                    return
            elif target in _TARGET_KINDS:
                kind, data = _TARGET_KINDS[target], payload
            else:
                _LOGGER.debug("Ignoring hub target %s", target)
                return
            message = to_typed(kind, data)
        except DecodeError as exc:
            _LOGGER.warning("Dropping malformed %s message: %s", target, exc)
            return
        for handler in list(self._handlers[kind]):
            try:
                handler(message)
            except Exception:
                _LOGGER.exception("Handler for %s failed", kind.value)

    @staticmethod
    def _decode(payload: Any) -> Any:
        if not isinstance(payload, (str, bytes)):
            raise DecodeError(f"Unsupported envelope type {type(payload).__name__}")
        return decode_envelope(payload)
