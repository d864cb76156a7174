"""Tests for the client-credentials token manager."""

from __future__ import annotations

import asyncio

import httpx
import pytest
import respx

from pitwall.auth import TokenManager
from pitwall.exceptions import AuthError
from tests.conftest import AUTH_URL, SAMPLE_TOKEN


class _Clock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> _Clock:
    return _Clock()


@pytest.fixture
def tokens(clock: _Clock) -> TokenManager:
    manager = TokenManager(auth_url=AUTH_URL, clock=clock)
    manager.configure("client", "secret")
    return manager


class TestGetToken:
    @respx.mock
    @pytest.mark.asyncio
    async def test_exchanges_credentials(self, tokens: TokenManager, clock: _Clock) -> None:
        route = respx.post(AUTH_URL).mock(return_value=httpx.Response(200, json=SAMPLE_TOKEN))
        assert await tokens.get_token() == "tok-1"
        body = route.calls.last.request.content.decode()
        assert "grant_type=client_credentials" in body
        assert "client_id=client" in body
        assert tokens.token_expiry == clock.now + 300
        await tokens.close()

    @respx.mock
    @pytest.mark.asyncio
    async def test_cached_token_is_reused(self, tokens: TokenManager) -> None:
        route = respx.post(AUTH_URL).mock(return_value=httpx.Response(200, json=SAMPLE_TOKEN))
        await tokens.get_token()
        await tokens.get_token()
        assert route.call_count == 1
        await tokens.close()

    @respx.mock
    @pytest.mark.asyncio
    async def test_token_inside_safety_margin_is_refreshed(self, tokens: TokenManager, clock: _Clock) -> None:
        route = respx.post(AUTH_URL).mock(side_effect=[
            httpx.Response(200, json=SAMPLE_TOKEN),
            httpx.Response(200, json={**SAMPLE_TOKEN, "access_token": "tok-2"}),
        ])
        await tokens.get_token()
        clock.now += 300 - 29
        assert tokens.cached_token is None
        assert await tokens.get_token() == "tok-2"
        assert route.call_count == 2
        await tokens.close()

    @respx.mock
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_exchange(self, tokens: TokenManager) -> None:
        route = respx.post(AUTH_URL).mock(return_value=httpx.Response(200, json=SAMPLE_TOKEN))
        results = await asyncio.gather(*(tokens.get_token() for _ in range(5)))
        assert results == ["tok-1"] * 5
        assert route.call_count == 1
        await tokens.close()


class TestFailures:
    @pytest.mark.asyncio
    async def test_unconfigured_raises(self, clock: _Clock) -> None:
        manager = TokenManager(auth_url=AUTH_URL, clock=clock)
        with pytest.raises(AuthError, match="not configured"):
            await manager.get_token()
        await manager.close()

    @respx.mock
    @pytest.mark.asyncio
    async def test_rejected_credentials(self, tokens: TokenManager) -> None:
        respx.post(AUTH_URL).mock(return_value=httpx.Response(401, text="invalid_client"))
        with pytest.raises(AuthError) as exc_info:
            await tokens.get_token()
        assert exc_info.value.status_code == 401
        assert not tokens.is_authenticated()
        await tokens.close()

    @respx.mock
    @pytest.mark.asyncio
    async def test_network_failure_is_auth_error(self, tokens: TokenManager) -> None:
        respx.post(AUTH_URL).mock(side_effect=httpx.ConnectError("down"))
        with pytest.raises(AuthError):
            await tokens.get_token()
        await tokens.close()

    @respx.mock
    @pytest.mark.asyncio
    async def test_malformed_token_response(self, tokens: TokenManager) -> None:
        respx.post(AUTH_URL).mock(return_value=httpx.Response(200, json={"token": "x"}))
        with pytest.raises(AuthError, match="invalid token response"):
            await tokens.get_token()
        await tokens.close()

    @respx.mock
    @pytest.mark.asyncio
    async def test_non_json_body_is_auth_error(self, tokens: TokenManager) -> None:
        respx.post(AUTH_URL).mock(return_value=httpx.Response(200, text="<html>maintenance</html>"))
        with pytest.raises(AuthError, match="Invalid JSON body"):
            await tokens.get_token()
        await tokens.close()

    @respx.mock
    @pytest.mark.asyncio
    async def test_failed_refresh_is_retried_on_next_call(self, tokens: TokenManager) -> None:
        route = respx.post(AUTH_URL).mock(side_effect=[
            httpx.Response(500, text="oops"),
            httpx.Response(200, json=SAMPLE_TOKEN),
        ])
        with pytest.raises(AuthError):
            await tokens.get_token()
        assert await tokens.get_token() == "tok-1"
        assert route.call_count == 2
        await tokens.close()


class TestLifecycle:
    @respx.mock
    @pytest.mark.asyncio
    async def test_configure_drops_previous_token(self, tokens: TokenManager) -> None:
        respx.post(AUTH_URL).mock(return_value=httpx.Response(200, json=SAMPLE_TOKEN))
        await tokens.get_token()
        tokens.configure("other", "secret")
        assert tokens.access_token is None
        await tokens.close()

    @respx.mock
    @pytest.mark.asyncio
    async def test_listeners_see_new_tokens(self, tokens: TokenManager) -> None:
        respx.post(AUTH_URL).mock(return_value=httpx.Response(200, json=SAMPLE_TOKEN))
        seen: list[str | None] = []
        unsubscribe = tokens.subscribe(seen.append)
        await tokens.get_token()
        tokens.clear_token()
        unsubscribe()
        await tokens.get_token()
        assert seen == [None, "tok-1", None]
        await tokens.close()

    @respx.mock
    @pytest.mark.asyncio
    async def test_refresh_if_expiring(self, tokens: TokenManager, clock: _Clock) -> None:
        route = respx.post(AUTH_URL).mock(return_value=httpx.Response(200, json=SAMPLE_TOKEN))
        await tokens.get_token()
        assert await tokens.refresh_if_expiring() is False
        clock.now += 300 - 45
        assert await tokens.refresh_if_expiring() is True
        assert route.call_count == 2
        await tokens.close()

    @respx.mock
    @pytest.mark.asyncio
    async def test_refresh_if_expiring_reports_bad_body(self, tokens: TokenManager, clock: _Clock) -> None:
        respx.post(AUTH_URL).mock(side_effect=[
            httpx.Response(200, json=SAMPLE_TOKEN),
            httpx.Response(200, text="<html>maintenance</html>"),
        ])
        await tokens.get_token()
        clock.now += 300 - 45
        assert await tokens.refresh_if_expiring() is False
        await tokens.close()

    @pytest.mark.asyncio
    async def test_auto_refresh_survives_failed_tick(self, clock: _Clock) -> None:
        manager = TokenManager(auth_url=AUTH_URL, clock=clock, check_interval=0)
        calls: list[int] = []

        async def flaky() -> bool:
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return False

        manager.refresh_if_expiring = flaky
        manager.start_auto_refresh()
        for _ in range(20):
            await asyncio.sleep(0)
        assert len(calls) >= 2
        assert manager.auto_refresh_running
        await manager.close()
        assert not manager.auto_refresh_running
