"""Tests for the call-logging decorators."""

from __future__ import annotations

import pytest

from pitwall._logging import _LOG_FILE_NAME, log_api_call, log_service_call


class _FakeClient:
    @log_api_call
    def get_items(self, year: int) -> list[dict]:
        return [{"name": "item1"}, {"name": "item2"}]

    @log_api_call
    async def fetch_items(self, event_id: int) -> list[dict]:
        return [{"eid": event_id}]

    @log_api_call
    def get_failing(self, key: int) -> list[dict]:
        raise ValueError("test error")

    @log_service_call
    def compute_stuff(self, data: list) -> dict:
        return {"result": len(data)}

    @log_service_call
    def compute_failing(self) -> None:
        raise RuntimeError("service error")


@pytest.fixture
def fake_client():
    return _FakeClient()


def _read_log(tmp_path) -> str:
    return (tmp_path / "logs" / _LOG_FILE_NAME).read_text(encoding="utf-8")


class TestLogApiCall:
    def test_logs_call_and_result_count(self, fake_client, tmp_path) -> None:
        assert len(fake_client.get_items(2024)) == 2
        content = _read_log(tmp_path)
        assert "CALL: _FakeClient.get_items(2024)" in content
        assert "OK: _FakeClient.get_items(2024) -> 2 items" in content

    @pytest.mark.asyncio
    async def test_async_functions_are_awaited(self, fake_client, tmp_path) -> None:
        assert await fake_client.fetch_items(7) == [{"eid": 7}]
        content = _read_log(tmp_path)
        assert "OK: _FakeClient.fetch_items(7) -> 1 items" in content

    def test_logs_failure_and_reraises(self, fake_client, tmp_path) -> None:
        with pytest.raises(ValueError, match="test error"):
            fake_client.get_failing(5)
        assert "FAIL: _FakeClient.get_failing(5) -> ValueError: test error" in _read_log(tmp_path)

    def test_preserves_function_name(self, fake_client) -> None:
        assert fake_client.fetch_items.__name__ == "fetch_items"


class TestLogServiceCall:
    def test_logs_service_ok(self, fake_client, tmp_path) -> None:
        assert fake_client.compute_stuff([1, 2, 3]) == {"result": 3}
        content = _read_log(tmp_path)
        assert "SERVICE CALL: _FakeClient.compute_stuff([1, 2, 3])" in content
        assert "SERVICE OK: _FakeClient.compute_stuff" in content

    def test_logs_service_failure(self, fake_client, tmp_path) -> None:
        with pytest.raises(RuntimeError):
            fake_client.compute_failing()
        assert "SERVICE FAIL: _FakeClient.compute_failing -> RuntimeError" in _read_log(tmp_path)
