"""Client-credentials token manager for the RedMist identity provider."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from typing import Callable

from pydantic import ValidationError as PydanticValidationError

from pitwall._http import AsyncTransport
from pitwall.config import get_settings
from pitwall.exceptions import APIError, AuthError, PitwallError
from pitwall.models.redmist import TokenResponse

_LOGGER = logging.getLogger(__name__)

TokenListener = Callable[[str | None], None]


@dataclass(frozen=True)
class CredentialSession:
    """A bearer token, its absolute expiry (epoch seconds) and the client that owns it."""

    access_token: str
    expires_at: float
    client_id: str


class TokenManager:
    """Obtains, caches and refreshes a bearer token.

    Concurrent ``get_token()`` calls that find no usable token share a single
    exchange with the identity provider.

    Usage:
        tokens = TokenManager()
        tokens.configure("client-id", "client-secret")
        token = await tokens.get_token()
    """

    def __init__(
        self,
        auth_url: str | None = None,
        timeout: float | None = None,
        safety_margin: float | None = None,
        refresh_window: float | None = None,
        check_interval: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        settings = get_settings()
        self._auth_url = auth_url or settings.auth_url
        self._transport = AsyncTransport(timeout=timeout or settings.timeout)
        self._safety_margin = (
            settings.token_safety_margin if safety_margin is None else safety_margin
        )
        self._refresh_window = (
            settings.token_refresh_window if refresh_window is None else refresh_window
        )
        self._check_interval = (
            settings.token_check_interval if check_interval is None else check_interval
        )
        self._clock = clock
        self._client_id: str | None = None
        self._client_secret: str | None = None
        self._session: CredentialSession | None = None
        self._refresh_future: asyncio.Future[str] | None = None
        self._generation = 0
        self._listeners: set[TokenListener] = set()
        self._auto_task: asyncio.Task[None] | None = None

    # ── Configuration ──────────────────────────────────────────

    def configure(self, client_id: str, client_secret: str) -> None:
        """Set the client identity and drop any token issued to a previous one."""
        self._client_id = client_id
        self._client_secret = client_secret
        self._generation += 1
        self._session = None
        self._refresh_future = None

    def is_configured(self) -> bool:
        return bool(self._client_id) and bool(self._client_secret)

    # ── Listeners ──────────────────────────────────────────────

    def subscribe(self, listener: TokenListener) -> Callable[[], None]:
        """Register *listener*; it is called now and on every token change."""
        self._listeners.add(listener)
        listener(self.access_token)
        return lambda: self._listeners.discard(listener)

    def _notify(self) -> None:
        token = self.access_token
        for listener in list(self._listeners):
            try:
                listener(token)
            except Exception:
                _LOGGER.exception("Token listener failed")

    # ── Token access ───────────────────────────────────────────

    @property
    def access_token(self) -> str | None:
        return self._session.access_token if self._session else None

    @property
    def token_expiry(self) -> float | None:
        return self._session.expires_at if self._session else None

    @property
    def cached_token(self) -> str | None:
        """The cached token if it is valid beyond the safety margin, else None."""
        session = self._session
        if session is None:
            return None
        if self._clock() < session.expires_at - self._safety_margin:
            return session.access_token
        return None

    def is_authenticated(self) -> bool:
        return self._session is not None and self._clock() < self._session.expires_at

    def time_until_expiry(self) -> float | None:
        """Seconds until the cached token expires, or None without a token."""
        if self._session is None:
            return None
        return max(0.0, self._session.expires_at - self._clock())

    async def get_token(self) -> str:
        """Return a valid token, exchanging credentials only when needed.

        Raises:
            AuthError: if no credentials are configured or the exchange fails.
        """
        token = self.cached_token
        if token is not None:
            return token
        return await self.refresh()

    async def refresh(self) -> str:
        """Exchange credentials now, joining an exchange already in flight."""
        future = self._refresh_future
        if future is None:
            future = asyncio.ensure_future(self._exchange(self._generation))
            self._refresh_future = future
            future.add_done_callback(self._clear_refresh)
        return await asyncio.shield(future)

    def _clear_refresh(self, future: asyncio.Future[str]) -> None:
        if self._refresh_future is future:
            self._refresh_future = None

    async def _exchange(self, generation: int) -> str:
        if not self.is_configured():
            raise AuthError("Token manager not configured. Call configure() first.")
        client_id = self._client_id or ""
        data = {
            "grant_type": "client_credentials",
            "client_id": client_id,
            "client_secret": self._client_secret or "",
        }
        try:
            payload = await self._transport.post_form(
                self._auth_url,
                data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except APIError as exc:
            raise AuthError(
                f"Authentication failed: {exc.status_code} {exc.message}",
                status_code=exc.status_code,
            ) from exc
        except PitwallError as exc:
            raise AuthError(f"Authentication failed: {exc}") from exc

        try:
            response = TokenResponse.model_validate(payload)
        except PydanticValidationError as exc:
            raise AuthError(f"Authentication failed: invalid token response: {exc}") from exc

        session = CredentialSession(
            access_token=response.access_token,
            expires_at=self._clock() + response.expires_in,
            client_id=client_id,
        )
        if generation != self._generation:
            # Identity changed mid-exchange; never cache a token for the old one.
            raise AuthError("Credentials were reconfigured during token exchange")

        self._session = session
        self._notify()
        _LOGGER.info("Token refreshed, expires in %s seconds", response.expires_in)
        return session.access_token

    def clear_token(self) -> None:
        """Forget the cached token (logout)."""
        self._session = None
        self._notify()

    # ── Background refresh ─────────────────────────────────────

    async def refresh_if_expiring(self) -> bool:
        """Refresh when the token expires within the refresh window.

        Failures are logged and reported as False so the next tick retries.
        """
        remaining = self.time_until_expiry()
        if remaining is None or remaining >= self._refresh_window or not self.is_configured():
            return False
        try:
            await self.refresh()
        except PitwallError as exc:
            _LOGGER.warning("Auto-refresh failed: %s", exc)
            return False
        return True

    @property
    def auto_refresh_running(self) -> bool:
        return self._auto_task is not None and not self._auto_task.done()

    def start_auto_refresh(self) -> None:
        """Start the background expiry check loop (idempotent)."""
        if self.auto_refresh_running:
            return
        self._auto_task = asyncio.create_task(self._auto_refresh_loop())

    async def stop_auto_refresh(self) -> None:
        if self._auto_task is None:
            return
        self._auto_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._auto_task
        self._auto_task = None

    async def _auto_refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self._check_interval)
            try:
                await self.refresh_if_expiring()
            except Exception:
                _LOGGER.exception("Auto-refresh check failed; retrying next tick")

    async def close(self) -> None:
        await self.stop_auto_refresh()
        await self._transport.close()
