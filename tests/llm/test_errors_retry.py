"""Tests for AIError classification and RetryHandler backoff."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from pymosaic.llm.errors import AIError, AIErrorKind
from pymosaic.llm.retry import RetryConfig, RetryHandler


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

class TestFromStatus:
    @pytest.mark.parametrize(
        "status, body, kind, retryable",
        [
            (401, {"error": {"message": "bad key"}}, AIErrorKind.AUTH, False),
            (403, "forbidden", AIErrorKind.AUTH, False),
            (429, {"error": {"message": "slow down"}}, AIErrorKind.RATE_LIMIT, True),
            (400, {"error": {"message": "maximum context length exceeded"}}, AIErrorKind.CONTEXT_LENGTH_EXCEEDED, False),
            (400, {"error": {"message": "too many tokens"}}, AIErrorKind.CONTEXT_LENGTH_EXCEEDED, False),
            (400, {"error": {"message": "unknown model foo"}}, AIErrorKind.MODEL_NOT_FOUND, False),
            (400, {"error": {"message": "bad field"}}, AIErrorKind.INVALID_REQUEST, False),
            (404, {"message": "endpoint not found"}, AIErrorKind.CONFIG, False),
            (404, {"message": "no such thing"}, AIErrorKind.MODEL_NOT_FOUND, False),
            (500, "oops", AIErrorKind.API, True),
            (503, None, AIErrorKind.API, True),
            (418, None, AIErrorKind.API, False),
        ],
    )
    def test_classification(self, status, body, kind, retryable):
        err = AIError.from_status(status, "OpenAI", "gpt-x", body, "Reason")
        assert err.kind is kind
        assert err.retryable is retryable
        assert err.status_code == status
        assert err.provider == "OpenAI"
        assert err.model == "gpt-x"

    def test_message_uses_body_then_reason(self):
        assert AIError.from_status(401, "OpenAI", body={"error": {"message": "bad key"}}).message == (
            "OpenAI API error (401): bad key"
        )
        assert AIError.from_status(503, "OpenAI", reason="Service Unavailable").message == (
            "OpenAI API error (503): Service Unavailable"
        )

    def test_json_string_body(self):
        err = AIError.from_status(429, "xAI", body='{"error": "quota"}')
        assert err.message.endswith("quota")


class TestNetworkErrors:
    def test_timeout(self):
        err = AIError.from_network_error(httpx.ReadTimeout("read timed out"), "OpenAI", "m")
        assert err.kind is AIErrorKind.TIMEOUT
        assert err.retryable

    def test_generic_network(self):
        err = AIError.from_network_error(httpx.ConnectError("connection reset"), "OpenAI", "m")
        assert err.kind is AIErrorKind.NETWORK
        assert err.retryable

    def test_ollama_not_running(self):
        err = AIError.from_network_error(httpx.ConnectError("[Errno 111] Connection refused"), "Ollama", "llama3")
        assert err.kind is AIErrorKind.CONFIG
        assert not err.retryable
        assert "ollama serve" in err.message

    def test_ollama_unauthorized(self):
        err = AIError.from_network_error('unauthorized {"signin_url": "https://ollama.test/in"}', "Ollama")
        assert err.kind is AIErrorKind.AUTH
        assert "https://ollama.test/in" in err.message


class TestAIError:
    def test_is_immutable(self):
        err = AIError(AIErrorKind.API, "x", provider="p")
        with pytest.raises(AttributeError):
            err.retryable = True  # type: ignore[misc]
        with pytest.raises(AttributeError):
            err.kind = AIErrorKind.AUTH  # type: ignore[misc]

    def test_describe(self):
        err = AIError(AIErrorKind.RATE_LIMIT, "slow down", provider="OpenAI", model="gpt-x", retryable=True)
        assert err.describe() == "[OpenAI / gpt-x] slow down (rate_limit, retryable)"
        assert AIError(AIErrorKind.AUTH, "no", provider="X").describe() == "[X] no (auth, not retryable)"

    def test_to_dict(self):
        d = AIError(AIErrorKind.API, "boom", provider="p", status_code=500, retryable=True).to_dict()
        assert d == {
            "kind": "api",
            "message": "boom",
            "status_code": 500,
            "provider": "p",
            "model": None,
            "retryable": True,
        }

    def test_can_be_raised_and_chained(self):
        with pytest.raises(AIError) as exc:
            try:
                raise ValueError("inner")
            except ValueError as e:
                raise AIError.parsing_error("OpenAI", "bad json") from e
        assert isinstance(exc.value.__cause__, ValueError)
        assert exc.value.kind is AIErrorKind.PARSING


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------

class FakeSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _failing(errors: list[Exception], result="ok"):
    attempts = {"n": 0}

    async def op():
        attempts["n"] += 1
        if errors:
            raise errors.pop(0)
        return result

    return op, attempts


class TestRetryConfig:
    def test_defaults(self):
        cfg = RetryConfig()
        assert (cfg.max_retries, cfg.initial_delay_ms, cfg.max_delay_ms, cfg.backoff_multiplier, cfg.timeout_ms) == (
            3, 1000, 10000, 2, 120000,
        )

    def test_delay_is_capped(self):
        cfg = RetryConfig(initial_delay_ms=1000, max_delay_ms=5000, backoff_multiplier=3)
        assert [cfg.delay_ms(i) for i in range(4)] == [1000, 3000, 5000, 5000]

    def test_from_dict_ignores_unknown_and_null(self):
        cfg = RetryConfig.from_dict({"max_retries": 5, "timeout_ms": None, "other": 1})
        assert cfg.max_retries == 5
        assert cfg.timeout_ms == 120000


class TestRetryHandler:
    @pytest.mark.asyncio
    async def test_retryable_then_success(self):
        sleep = FakeSleep()
        handler = RetryHandler(RetryConfig(initial_delay_ms=100), sleep=sleep)
        op, attempts = _failing([
            AIError(AIErrorKind.RATE_LIMIT, "429", provider="p", retryable=True),
            AIError(AIErrorKind.NETWORK, "reset", provider="p", retryable=True),
        ])
        assert await handler.execute_with_retry(op, "chat") == "ok"
        assert attempts["n"] == 3
        assert sleep.calls == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_non_retryable_fails_immediately(self):
        sleep = FakeSleep()
        handler = RetryHandler(sleep=sleep)
        err = AIError(AIErrorKind.AUTH, "bad key", provider="p")
        op, attempts = _failing([err])
        with pytest.raises(AIError) as exc:
            await handler.execute_with_retry(op)
        assert exc.value is err
        assert attempts["n"] == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_exhaustion_raises_last_error(self):
        sleep = FakeSleep()
        handler = RetryHandler(sleep=sleep)
        errors = [AIError(AIErrorKind.API, f"e{i}", provider="p", retryable=True) for i in range(5)]
        op, attempts = _failing(list(errors))
        with pytest.raises(AIError) as exc:
            await handler.execute_with_retry(op, max_retries=2)
        assert attempts["n"] == 3
        assert exc.value.message == "e2"
        assert sleep.calls == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_plain_exceptions_are_retried(self):
        handler = RetryHandler(sleep=FakeSleep())
        op, attempts = _failing([RuntimeError("flaky")])
        assert await handler.execute_with_retry(op) == "ok"
        assert attempts["n"] == 2

    @pytest.mark.asyncio
    async def test_overrides(self):
        sleep = FakeSleep()
        handler = RetryHandler(sleep=sleep)
        op, _ = _failing([RuntimeError("a"), RuntimeError("b")])
        await handler.execute_with_retry(op, initial_delay_ms=10, backoff_multiplier=10, max_delay_ms=50)
        assert sleep.calls == [0.01, 0.05]

    @pytest.mark.asyncio
    async def test_timeout(self):
        handler = RetryHandler(RetryConfig(timeout_ms=20, max_retries=0))

        async def slow():
            await asyncio.sleep(5)

        with pytest.raises(TimeoutError, match="Operation timed out after 20ms"):
            await handler.execute_with_retry(slow)

    @pytest.mark.asyncio
    async def test_execute_with_timeout_passthrough(self):
        handler = RetryHandler()

        async def fast():
            return 7

        assert await handler.execute_with_timeout(fast, 1000) == 7

    @pytest.mark.asyncio
    async def test_cancellation_is_not_retried(self):
        sleep = FakeSleep()
        handler = RetryHandler(sleep=sleep)

        async def cancelled():
            raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await handler.execute_with_retry(cancelled)
        assert sleep.calls == []
