"""Tests for the hub connection manager."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from pitwall.codec import encode_envelope
from pitwall.exceptions import AuthError, ConnectionFailedError
from pitwall.live import (
    BACKOFF_SCHEDULE,
    ConnectionState,
    HubTransport,
    LiveConnection,
    MessageKind,
    Subscription,
    SignalRTransport,
    SubscriptionKind,
    classify,
    reconnect_delay,
    to_typed,
)
from pitwall.models.redmist import CarPosition, SessionState
from tests.conftest import SAMPLE_CAR, SAMPLE_SESSION_STATE

_END = object()


class FakeTransport(HubTransport):
    """In-memory hub: feed messages with ``push``, cut the line with ``drop``."""

    def __init__(self, failing_starts: int = 0) -> None:
        self.failing_starts = failing_starts
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.queue: asyncio.Queue[Any] = asyncio.Queue()
        self.starts = 0
        self.stops = 0

    async def start(self) -> None:
        self.calls.append(("start", ()))
        if self.starts > 0 and self.failing_starts > 0:
            self.failing_starts -= 1
            raise ConnectionFailedError("refused")
        self.starts += 1

    async def stop(self) -> None:
        self.calls.append(("stop", ()))
        self.stops += 1

    async def invoke(self, method: str, *args: Any) -> Any:
        self.calls.append((method, args))
        return None

    async def messages(self):
        while True:
            item = await self.queue.get()
            if item is _END:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    def push(self, target: str, *args: Any) -> None:
        self.queue.put_nowait((target, list(args)))

    def drop(self) -> None:
        self.queue.put_nowait(ConnectionFailedError("socket closed"))

    def invoked(self) -> list[tuple[str, tuple[Any, ...]]]:
        return [c for c in self.calls if c[0] not in ("start", "stop")]


async def _settle() -> None:
    for _ in range(20):
        await asyncio.sleep(0)


@pytest.fixture
def delays() -> list[float]:
    return []


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def connection(transport, delays) -> LiveConnection:
    async def fake_sleep(seconds: float) -> None:
        delays.append(seconds)

    return LiveConnection(transport, max_attempts=5, sleep=fake_sleep)


class TestBackoff:
    def test_schedule(self) -> None:
        assert [reconnect_delay(n) for n in range(6)] == [0, 2, 10, 30, 30, 30]
        assert BACKOFF_SCHEDULE[0] == 0


class TestSubscription:
    def test_hub_methods(self) -> None:
        sub = Subscription(SubscriptionKind.CAR_CONTROL_LOG, 1234, "42")
        assert sub.subscribe_method == "SubscribeToCarControlLogs"
        assert sub.unsubscribe_method == "UnsubscribeFromCarControlLogs"
        assert sub.args == (1234, "42")
        assert Subscription(SubscriptionKind.EVENT, 1234).args == (1234,)


class TestClassify:
    def test_discriminants(self) -> None:
        assert classify({"t": "patch", "p": {}}) is MessageKind.PATCH
        assert classify({"eventId": 1}) is MessageKind.SESSION
        assert classify({"cps": [{"n": "42"}]}) is MessageKind.CAR_POSITIONS
        assert classify({"other": 1}) is None
        assert classify([1, 2]) is None

    def test_typed_car_positions(self) -> None:
        cars = to_typed(MessageKind.CAR_POSITIONS, {"cps": [SAMPLE_CAR]})
        assert isinstance(cars[0], CarPosition)
        assert cars[0].number == "42"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_connect_and_states(self, connection) -> None:
        states: list[ConnectionState] = []
        connection.on_state_change(states.append)
        await connection.connect()
        assert connection.is_connected
        assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
        await connection.disconnect()
        assert connection.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_connect_failure_returns_to_disconnected(self) -> None:
        class Refusing(FakeTransport):
            async def start(self) -> None:
                raise AuthError("bad credentials", status_code=401)

        conn = LiveConnection(Refusing(), max_attempts=3)
        with pytest.raises(AuthError):
            await conn.connect()
        assert conn.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_subscribe_requires_connection(self, connection) -> None:
        with pytest.raises(ConnectionFailedError):
            await connection.subscribe_to_event(1234)

    @pytest.mark.asyncio
    async def test_subscribe_event_also_subscribes_control_log(self, connection, transport) -> None:
        await connection.connect()
        await connection.subscribe_to_event(1234)
        await connection.subscribe_to_event(1234)
        assert transport.invoked() == [
            ("SubscribeToEventV2", (1234,)),
            ("SubscribeToControlLogs", (1234,)),
        ]
        assert len(connection.subscriptions) == 2
        await connection.disconnect()


class TestReconnect:
    @pytest.mark.asyncio
    async def test_resubscribes_only_active(self, connection, transport, delays) -> None:
        await connection.connect()
        await connection.subscribe_to_event(1234)
        await connection.subscribe_to_car_control_logs(1234, "42")
        await connection.subscribe_to_in_car_driver_event(1234, "7")
        await connection.unsubscribe_from_car_control_logs(1234, "42")
        transport.calls.clear()

        transport.drop()
        await _settle()

        assert connection.state is ConnectionState.CONNECTED
        assert delays == [0]
        assert transport.calls[:2] == [("stop", ()), ("start", ())]
        assert sorted(transport.invoked()) == sorted([
            ("SubscribeToEventV2", (1234,)),
            ("SubscribeToControlLogs", (1234,)),
            ("SubscribeToInCarDriverEvent", (1234, "7")),
        ])
        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_states_through_reconnect(self, connection, transport) -> None:
        await connection.connect()
        states: list[ConnectionState] = []
        connection.on_state_change(states.append)
        transport.drop()
        await _settle()
        assert states == [ConnectionState.RECONNECTING, ConnectionState.CONNECTED]
        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_backoff_then_success(self, connection, transport, delays) -> None:
        await connection.connect()
        transport.failing_starts = 2
        transport.drop()
        await _settle()
        assert delays == [0, 2, 10]
        assert connection.is_connected
        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_gives_up_and_reports(self, connection, transport, delays) -> None:
        errors: list[Exception] = []
        connection.on_error(errors.append)
        await connection.connect()
        transport.failing_starts = 100
        transport.drop()
        await _settle()
        assert delays == [0, 2, 10, 30, 30]
        assert connection.state is ConnectionState.DISCONNECTED
        assert len(errors) == 1
        assert isinstance(errors[0], ConnectionFailedError)

    @pytest.mark.asyncio
    async def test_subscribe_while_reconnecting_is_deferred(self, transport) -> None:
        gate = asyncio.Event()

        async def gated_sleep(seconds: float) -> None:
            await gate.wait()

        conn = LiveConnection(transport, max_attempts=3, sleep=gated_sleep)
        await conn.connect()
        transport.drop()
        await _settle()
        assert conn.state is ConnectionState.RECONNECTING

        await conn.subscribe_to_in_car_driver_event(1234, "7")
        assert transport.invoked() == []
        gate.set()
        await _settle()
        assert transport.invoked() == [("SubscribeToInCarDriverEvent", (1234, "7"))]
        await conn.disconnect()

    @pytest.mark.asyncio
    async def test_subscribe_during_resubscribe_pass_is_issued(self) -> None:
        class Gated(FakeTransport):
            def __init__(self) -> None:
                super().__init__()
                self.gate: asyncio.Event | None = None

            async def invoke(self, method: str, *args: Any) -> Any:
                self.calls.append((method, args))
                if self.gate is not None and method == "SubscribeToEventV2":
                    await self.gate.wait()
                return None

        async def no_sleep(seconds: float) -> None:
            return None

        transport = Gated()
        conn = LiveConnection(transport, max_attempts=3, sleep=no_sleep)
        await conn.connect()
        await conn.subscribe_to_event(1234)
        transport.gate = asyncio.Event()
        transport.calls.clear()
        transport.drop()
        await _settle()
        assert conn.state is ConnectionState.RECONNECTING
        assert ("SubscribeToEventV2", (1234,)) in transport.invoked()

        await conn.subscribe_to_car_control_logs(1234, "42")
        transport.gate.set()
        await _settle()

        assert conn.state is ConnectionState.CONNECTED
        assert ("SubscribeToCarControlLogs", (1234, "42")) in transport.invoked()
        await conn.disconnect()


class TestDispatch:
    @pytest.mark.asyncio
    async def test_compressed_session_state(self, connection, transport) -> None:
        received: list[Any] = []
        connection.on(MessageKind.SESSION, received.append)
        await connection.connect()
        transport.push("ReceiveMessage", encode_envelope(SAMPLE_SESSION_STATE))
        await _settle()
        assert isinstance(received[0], SessionState)
        assert received[0].event_id == 1234
        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_malformed_envelope_dropped_and_stream_continues(self, connection, transport) -> None:
        received: list[Any] = []
        connection.on(MessageKind.SESSION, received.append)
        await connection.connect()
        transport.push("ReceiveMessage", "H4sI!!!not-base64")
        transport.push("ReceiveMessage", "{broken json")
        transport.push("ReceiveMessage", encode_envelope(SAMPLE_SESSION_STATE, compress=False))
        await _settle()
        assert len(received) == 1
        assert connection.is_connected
        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_named_targets(self, connection, transport) -> None:
        logs: list[Any] = []
        cars: list[Any] = []
        connection.on(MessageKind.CONTROL_LOG, logs.append)
        connection.on(MessageKind.CAR_POSITIONS, cars.append)
        await connection.connect()
        transport.push("ReceiveControlLog", [{"o": 1, "n": "Contact"}])
        transport.push("ReceiveCarPatches", [SAMPLE_CAR])
        transport.push("SomethingElse", {})
        await _settle()
        assert logs[0][0].note == "Contact"
        assert cars[0][0].number == "42"
        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_failing_handler_isolated(self, connection, transport) -> None:
        received: list[Any] = []

        def boom(message: Any) -> None:
            raise RuntimeError("boom")

        connection.on(MessageKind.SESSION, boom)
        unregister = connection.on(MessageKind.SESSION, received.append)
        await connection.connect()
        transport.push("ReceiveMessage", {"eventId": 1})
        await _settle()
        unregister()
        transport.push("ReceiveMessage", {"eventId": 2})
        await _settle()
        assert [m.event_id for m in received] == [1]
        await connection.disconnect()


class TestTeardown:
    @pytest.mark.asyncio
    async def test_unsubscribes_before_stop(self, connection, transport) -> None:
        await connection.connect()
        await connection.subscribe_to_event(1234)
        await connection.subscribe_to_car_control_logs(1234, "42")
        transport.calls.clear()

        await connection.disconnect()

        names = [name for name, _ in transport.calls]
        assert names == [
            "UnsubscribeFromEventV2",
            "UnsubscribeFromControlLogs",
            "UnsubscribeFromCarControlLogs",
            "stop",
        ]
        assert connection.subscriptions == frozenset()
        assert connection.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_unsubscribe_failure_is_not_fatal(self, transport) -> None:
        class Flaky(FakeTransport):
            async def invoke(self, method: str, *args: Any) -> Any:
                if method.startswith("Unsubscribe"):
                    raise ConnectionFailedError("gone")
                return await super().invoke(method, *args)

        flaky = Flaky()
        conn = LiveConnection(flaky, max_attempts=1)
        await conn.connect()
        await conn.subscribe_to_event(1)
        await conn.disconnect()
        assert flaky.stops == 1
        assert conn.state is ConnectionState.DISCONNECTED


class TestSignalRTransport:
    @staticmethod
    async def _token() -> str:
        return "tok-1"

    @pytest.mark.asyncio
    async def test_non_object_frames_are_dropped(self) -> None:
        hub = SignalRTransport(self._token, url="https://hub.example.test/status")
        hub._handle_frame("[1]")
        hub._handle_frame("5")
        hub._handle_frame('{"type": 1, "target": "ReceiveMessage", "arguments": ["x"]}')
        assert hub._queue.qsize() == 1
        assert hub._queue.get_nowait() == ("ReceiveMessage", ["x"])

    @pytest.mark.asyncio
    async def test_stop_survives_failed_reader(self) -> None:
        async def broken_reader() -> None:
            raise AttributeError("boom")

        hub = SignalRTransport(self._token, url="https://hub.example.test/status")
        hub._reader = asyncio.create_task(broken_reader())
        await _settle()
        await hub.stop()
        assert hub._reader is None
