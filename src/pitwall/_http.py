"""Low-level HTTP transport layer wrapping httpx."""

from __future__ import annotations

from typing import Any

import httpx
import msgpack

from pitwall.exceptions import (
    APIError,
    ConnectionFailedError,
    DecodeError,
    RateLimitError,
    RequestTimeoutError,
)

DEFAULT_TIMEOUT = 30.0
MSGPACK_CONTENT_TYPE = "application/x-msgpack"


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _raise_for_status(response: httpx.Response) -> None:
    if response.status_code == 429:
        raise RateLimitError(response.text or "Too Many Requests", _retry_after(response))
    if response.status_code >= 400:
        raise APIError(
            status_code=response.status_code,
            message=response.text,
        )


def _handle_response(response: httpx.Response, binary: bool = False) -> Any:
    """Validate response status and return the decoded body.

    An empty body decodes to None.
    """
    _raise_for_status(response)
    if binary:
        if not response.content:
            return None
        try:
            return msgpack.unpackb(response.content, raw=False, strict_map_key=False)
        except (msgpack.UnpackException, ValueError) as exc:
            raise DecodeError(f"Invalid msgpack body: {exc}") from exc
    if not response.text.strip():
        return None
    try:
        return response.json()
    except ValueError as exc:
        raise DecodeError(f"Invalid JSON body: {exc}") from exc


class AsyncTransport:
    """Asynchronous HTTP transport using httpx.AsyncClient."""

    def __init__(
        self,
        base_url: str = "",
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Accept": "application/json"},
        )

    async def get(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        binary: bool = False,
    ) -> Any:
        """Perform a GET request and return the decoded body.

        With ``binary=True`` the server is asked for msgpack and the body is
        unpacked instead of JSON-parsed.
        """
        request_headers = dict(headers or {})
        if binary:
            request_headers["Accept"] = MSGPACK_CONTENT_TYPE
        try:
            response = await self._client.get(endpoint, params=params, headers=request_headers)
        except httpx.ConnectError as exc:
            raise ConnectionFailedError(str(exc)) from exc
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(str(exc)) from exc
        return _handle_response(response, binary=binary)

    async def post_form(
        self,
        endpoint: str,
        data: dict[str, str],
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Perform a form-encoded POST request and return parsed JSON."""
        try:
            response = await self._client.post(endpoint, data=data, headers=headers)
        except httpx.ConnectError as exc:
            raise ConnectionFailedError(str(exc)) from exc
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(str(exc)) from exc
        return _handle_response(response)

    async def close(self) -> None:
        await self._client.aclose()
