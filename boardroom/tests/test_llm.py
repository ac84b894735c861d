from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from boardroom.llm import (
    GenerationResult,
    LLMCallError,
    LLMClient,
    is_retryable_status,
    parse_json_response,
)


class TestParseJson:
    def test_plain_object(self):
        assert parse_json_response('{"a": 1}') == {"a": 1}

    def test_fenced_object(self):
        assert parse_json_response('Here:\n```json\n{"a": [1, 2]}\n```') == {"a": [1, 2]}

    def test_invalid_json(self):
        with pytest.raises(LLMCallError) as exc_info:
            parse_json_response("not json")
        assert not exc_info.value.retryable

    def test_non_object(self):
        with pytest.raises(LLMCallError, match="non-object"):
            parse_json_response("[1, 2]")


@pytest.mark.parametrize("status,expected", [
    (429, True), (500, True), (529, True), (400, False), (401, False), (None, False),
])
def test_retryable_status(status, expected):
    assert is_retryable_status(status) is expected


@pytest.fixture()
def client():
    return LLMClient(provider="anthropic", api_key="test-key", max_retries=2, backoff_seconds=0.5)


class TestRetry:
    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, client):
        ok = GenerationResult(text="done", tokens_used=3, model=client.model)
        request = AsyncMock(side_effect=[LLMCallError("busy", retryable=True, status_code=529), ok])
        with patch.object(LLMClient, "_request", request), \
                patch("boardroom.llm.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await client.generate("system", "user")
        assert result.text == "done"
        assert request.await_count == 2
        sleep.assert_awaited_once_with(0.5)

    @pytest.mark.asyncio
    async def test_backoff_doubles_until_budget_exhausted(self, client):
        error = LLMCallError("rate limited", retryable=True, status_code=429)
        request = AsyncMock(side_effect=error)
        with patch.object(LLMClient, "_request", request), \
                patch("boardroom.llm.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(LLMCallError) as exc_info:
                await client.generate("system", "user")
        assert exc_info.value.status_code == 429
        assert request.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_non_retryable_fails_immediately(self, client):
        request = AsyncMock(side_effect=LLMCallError("bad request", retryable=False, status_code=400))
        with patch.object(LLMClient, "_request", request), \
                patch("boardroom.llm.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(LLMCallError):
                await client.generate("system", "user")
        assert request.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_call_parses_json(self, client):
        request = AsyncMock(return_value=GenerationResult(text='{"ok": true}'))
        with patch.object(LLMClient, "_request", request):
            assert await client.call("system", "user") == {"ok": True}
        assert request.await_args.args[3] is True


class TestClassify:
    def test_status_code_errors(self, client):
        class StatusError(Exception):
            status_code = 503

        error = client._classify(StatusError("unavailable"))
        assert error.retryable and error.status_code == 503

    def test_transport_errors_are_retryable(self, client):
        assert client._classify(httpx.ConnectError("refused")).retryable

    def test_other_errors_are_not(self, client):
        error = client._classify(RuntimeError("boom"))
        assert not error.retryable and error.status_code is None


def test_unknown_provider():
    with pytest.raises(ValueError, match="Unknown LLM provider"):
        LLMClient(provider="carrier-pigeon")
