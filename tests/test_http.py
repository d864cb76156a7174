"""Tests for the HTTP transport layer."""

from __future__ import annotations

import httpx
import msgpack
import pytest
import respx

from pitwall._http import MSGPACK_CONTENT_TYPE, AsyncTransport
from pitwall.exceptions import (
    APIError,
    ConnectionFailedError,
    DecodeError,
    RateLimitError,
    RequestTimeoutError,
)

BASE_URL = "https://timing.example.com/api"


class TestGet:
    @respx.mock
    @pytest.mark.asyncio
    async def test_get_json(self) -> None:
        route = respx.get(f"{BASE_URL}/events").mock(
            return_value=httpx.Response(200, json=[{"eid": 1}])
        )
        transport = AsyncTransport(base_url=BASE_URL)
        result = await transport.get("/events", params={"eventId": 1})
        assert result == [{"eid": 1}]
        assert route.calls.last.request.url.params["eventId"] == "1"
        await transport.close()

    @respx.mock
    @pytest.mark.asyncio
    async def test_empty_body_is_none(self) -> None:
        respx.get(f"{BASE_URL}/events").mock(return_value=httpx.Response(200, text=""))
        transport = AsyncTransport(base_url=BASE_URL)
        assert await transport.get("/events") is None
        await transport.close()

    @respx.mock
    @pytest.mark.asyncio
    async def test_binary_requests_and_unpacks_msgpack(self) -> None:
        body = msgpack.packb({"eventId": 1234, "carPositions": [{"n": "42"}]})
        route = respx.get(f"{BASE_URL}/state").mock(
            return_value=httpx.Response(200, content=body)
        )
        transport = AsyncTransport(base_url=BASE_URL)
        result = await transport.get("/state", binary=True)
        assert result == {"eventId": 1234, "carPositions": [{"n": "42"}]}
        assert route.calls.last.request.headers["Accept"] == MSGPACK_CONTENT_TYPE
        await transport.close()

    @respx.mock
    @pytest.mark.asyncio
    async def test_invalid_json_raises_decode_error(self) -> None:
        respx.get(f"{BASE_URL}/events").mock(return_value=httpx.Response(200, text="{nope"))
        transport = AsyncTransport(base_url=BASE_URL)
        with pytest.raises(DecodeError):
            await transport.get("/events")
        await transport.close()


class TestErrors:
    @respx.mock
    @pytest.mark.asyncio
    async def test_404(self) -> None:
        respx.get(f"{BASE_URL}/events").mock(return_value=httpx.Response(404, text="Not Found"))
        transport = AsyncTransport(base_url=BASE_URL)
        with pytest.raises(APIError) as exc_info:
            await transport.get("/events")
        assert exc_info.value.status_code == 404
        await transport.close()

    @respx.mock
    @pytest.mark.asyncio
    async def test_429_is_rate_limit_with_retry_after(self) -> None:
        respx.post(f"{BASE_URL}/races").mock(
            return_value=httpx.Response(429, text="slow down", headers={"Retry-After": "90"})
        )
        transport = AsyncTransport(base_url=BASE_URL)
        with pytest.raises(RateLimitError) as exc_info:
            await transport.post_form("/races", {"apiToken": "x"})
        assert exc_info.value.status_code == 429
        assert exc_info.value.retry_after == 90.0
        await transport.close()

    @respx.mock
    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        respx.get(f"{BASE_URL}/events").mock(side_effect=httpx.ConnectError("fail"))
        transport = AsyncTransport(base_url=BASE_URL)
        with pytest.raises(ConnectionFailedError):
            await transport.get("/events")
        await transport.close()

    @respx.mock
    @pytest.mark.asyncio
    async def test_timeout_error(self) -> None:
        respx.post(f"{BASE_URL}/races").mock(side_effect=httpx.ReadTimeout("timeout"))
        transport = AsyncTransport(base_url=BASE_URL)
        with pytest.raises(RequestTimeoutError):
            await transport.post_form("/races", {})
        await transport.close()
