"""Tests for RetryPolicy, RetryWrapper and transient-network detection."""

from __future__ import annotations

import errno
from unittest.mock import AsyncMock

import httpx
import pytest

from llm_streamloop.config import RetrySpec
from llm_streamloop.errors import BadGatewayError
from llm_streamloop.events.bus import EventBus
from llm_streamloop.hooks import LoopHooks
from llm_streamloop.retry import (
    DEFAULT_RETRY_POLICY,
    NO_RETRY,
    RetryContext,
    RetryPolicy,
    RetryWrapper,
    is_transient_network_error,
)
from llm_streamloop.types import (
    ClassifiedError,
    DoneChunk,
    ErrorCategory,
    ErrorChunk,
    EventType,
    TextChunk,
    Usage,
)


def _classify(category: ErrorCategory, should_retry: bool = True, delay: int | None = None):
    def classify(error: BaseException) -> ClassifiedError:
        return ClassifiedError(
            error=error, category=category, should_retry=should_retry,
            suggested_delay_ms=delay,
        )
    return classify


def _attempts(*scripts):
    """Factory returning a fresh stream per call, playing *scripts* in order."""
    calls = {"count": 0}

    def build_and_execute():
        script = scripts[min(calls["count"], len(scripts) - 1)]
        calls["count"] += 1

        async def stream():
            for item in script:
                if isinstance(item, BaseException):
                    raise item
                yield item

        return stream()

    return build_and_execute, calls


async def _drain(wrapper: RetryWrapper, build_and_execute, context=None):
    return [chunk async for chunk in wrapper.attempt(build_and_execute, context)]


# ---------------------------------------------------------------------------
# RetryPolicy
# ---------------------------------------------------------------------------

class TestRetryPolicy:
    def test_defaults(self):
        p = RetryPolicy()
        assert p.max_retries == 6
        assert p.initial_delay_ms == 1000
        assert p.max_delay_ms == 32000
        assert p.backoff_factor == 2.0
        assert DEFAULT_RETRY_POLICY == p

    def test_no_retry(self):
        assert NO_RETRY.max_retries == 0
        assert NO_RETRY.should_retry(0) is False

    def test_should_retry(self):
        p = RetryPolicy(max_retries=2)
        assert p.should_retry(0)
        assert p.should_retry(1)
        assert not p.should_retry(2)

    def test_exponential_delay(self):
        p = RetryPolicy(initial_delay_ms=100, backoff_factor=2)
        assert [p.delay_for_attempt(i) for i in range(4)] == [100, 200, 400, 800]

    def test_delay_capped(self):
        p = RetryPolicy(initial_delay_ms=1000, max_delay_ms=5000)
        assert p.delay_for_attempt(10) == 5000

    def test_constant_backoff(self):
        p = RetryPolicy(initial_delay_ms=250, backoff_factor=1)
        assert p.delay_for_attempt(0) == p.delay_for_attempt(5) == 250

    def test_max_retries_capped(self):
        assert RetryPolicy(max_retries=500).max_retries == 72

    @pytest.mark.parametrize("kwargs", [
        {"max_retries": -1},
        {"initial_delay_ms": -5},
        {"max_delay_ms": -1},
        {"backoff_factor": 0.5},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)

    def test_from_spec(self):
        p = RetryPolicy.from_spec(RetrySpec(max_retries=3, initial_delay_ms=10))
        assert p.max_retries == 3
        assert p.initial_delay_ms == 10
        assert p.max_delay_ms == 32000


# ---------------------------------------------------------------------------
# RetryWrapper
# ---------------------------------------------------------------------------

class TestRetryWrapper:
    async def test_success_passes_through(self):
        build, calls = _attempts([TextChunk("a"), TextChunk("b"), DoneChunk([Usage()])])
        wrapper = RetryWrapper(_classify(ErrorCategory.RETRYABLE))
        chunks = await _drain(wrapper, build)

        assert chunks == [TextChunk("a"), TextChunk("b"), DoneChunk([Usage()])]
        assert calls["count"] == 1
        assert wrapper.attempts == 1
        assert wrapper.interrupted is False

    async def test_retries_until_success(self):
        sleep = AsyncMock()
        build, calls = _attempts(
            [ConnectionError("reset")],
            [ConnectionError("reset")],
            [TextChunk("ok")],
        )
        wrapper = RetryWrapper(
            _classify(ErrorCategory.RETRYABLE),
            RetryPolicy(max_retries=3, initial_delay_ms=100),
            sleep=sleep,
        )
        chunks = await _drain(wrapper, build)

        assert chunks == [TextChunk("ok")]
        assert calls["count"] == 3
        assert wrapper.attempts == 3
        assert [c.args[0] for c in sleep.await_args_list] == [0.1, 0.2]

    async def test_done_held_back_from_failed_attempt(self):
        first = Usage(input=1)
        second = Usage(input=2)
        build, _ = _attempts(
            [DoneChunk([first]), ConnectionError("late")],
            [DoneChunk([second])],
        )
        wrapper = RetryWrapper(
            _classify(ErrorCategory.RETRYABLE),
            RetryPolicy(max_retries=1, initial_delay_ms=0),
            sleep=AsyncMock(),
        )
        chunks = await _drain(wrapper, build)
        assert chunks == [DoneChunk([second])]

    async def test_exhaustion_raises_bad_gateway(self):
        build, calls = _attempts([ConnectionError("down")])
        wrapper = RetryWrapper(
            _classify(ErrorCategory.RETRYABLE),
            RetryPolicy(max_retries=2, initial_delay_ms=0),
            sleep=AsyncMock(),
        )
        with pytest.raises(BadGatewayError, match="down"):
            await _drain(wrapper, build)
        assert calls["count"] == 3

    async def test_unrecoverable_not_retried(self):
        build, calls = _attempts([ValueError("bad request")])
        wrapper = RetryWrapper(
            _classify(ErrorCategory.UNRECOVERABLE, should_retry=True),
            RetryPolicy(max_retries=5),
        )
        with pytest.raises(BadGatewayError):
            await _drain(wrapper, build)
        assert calls["count"] == 1

    async def test_should_retry_false_not_retried(self):
        build, calls = _attempts([ValueError("nope")])
        wrapper = RetryWrapper(
            _classify(ErrorCategory.RETRYABLE, should_retry=False),
            RetryPolicy(max_retries=5),
        )
        with pytest.raises(BadGatewayError):
            await _drain(wrapper, build)
        assert calls["count"] == 1

    async def test_unknown_errors_retried(self):
        build, calls = _attempts([KeyError("odd")], [TextChunk("fine")])
        wrapper = RetryWrapper(
            _classify(ErrorCategory.UNKNOWN),
            RetryPolicy(max_retries=1, initial_delay_ms=0),
            sleep=AsyncMock(),
        )
        assert await _drain(wrapper, build) == [TextChunk("fine")]
        assert calls["count"] == 2

    async def test_suggested_delay_honoured_and_capped(self):
        sleep = AsyncMock()
        build, _ = _attempts([ConnectionError("429")], [TextChunk("ok")])
        wrapper = RetryWrapper(
            _classify(ErrorCategory.RATE_LIMIT, delay=90_000),
            RetryPolicy(max_retries=1, initial_delay_ms=10, max_delay_ms=2000),
            sleep=sleep,
        )
        await _drain(wrapper, build)
        sleep.assert_awaited_once_with(2.0)

    async def test_failure_after_delivery_is_in_band(self):
        build, calls = _attempts([TextChunk("partial"), RuntimeError("dropped")])
        wrapper = RetryWrapper(
            _classify(ErrorCategory.RETRYABLE),
            RetryPolicy(max_retries=3),
            sleep=AsyncMock(),
        )
        chunks = await _drain(wrapper, build)

        assert chunks[0] == TextChunk("partial")
        assert isinstance(chunks[1], ErrorChunk)
        assert chunks[1].error.title == "Stream Error"
        assert chunks[1].error.status == 502
        assert chunks[1].error.detail == "dropped"
        assert len(chunks) == 2
        assert calls["count"] == 1
        assert wrapper.interrupted is True

    async def test_error_hooks_invoked(self):
        retryable = AsyncMock()
        unrecoverable = AsyncMock()
        hooks = LoopHooks(
            on_retryable_model_error=retryable,
            on_unrecoverable_model_error=unrecoverable,
        )
        build, _ = _attempts([ConnectionError("down")])
        wrapper = RetryWrapper(
            _classify(ErrorCategory.RETRYABLE),
            RetryPolicy(max_retries=2, initial_delay_ms=0),
            sleep=AsyncMock(),
        )
        context = RetryContext(input=[], provider_request={"model": "m"}, hooks=hooks)
        with pytest.raises(BadGatewayError):
            await _drain(wrapper, build, context)

        assert retryable.await_count == 2
        assert unrecoverable.await_count == 1
        ctx = unrecoverable.await_args.args[0]
        assert isinstance(ctx.error, ConnectionError)
        assert ctx.provider_request == {"model": "m"}

    async def test_events_emitted(self):
        bus = EventBus()
        seen = []
        bus.subscribe("*", seen.append)
        build, _ = _attempts([ConnectionError("x")], [TextChunk("a"), RuntimeError("y")])
        wrapper = RetryWrapper(
            _classify(ErrorCategory.RETRYABLE),
            RetryPolicy(max_retries=1, initial_delay_ms=0),
            event_bus=bus,
            sleep=AsyncMock(),
        )
        await _drain(wrapper, build)

        types = [e.type for e in seen]
        assert types == [EventType.MODEL_RETRY, EventType.STREAM_INTERRUPTED]
        assert seen[0].data["attempt"] == 1

    async def test_closing_closes_inner_stream(self):
        closed = []

        def build():
            async def stream():
                try:
                    yield TextChunk("a")
                    yield TextChunk("b")
                finally:
                    closed.append(True)
            return stream()

        gen = RetryWrapper(_classify(ErrorCategory.RETRYABLE)).attempt(build)
        assert await gen.__anext__() == TextChunk("a")
        await gen.aclose()
        assert closed == [True]


# ---------------------------------------------------------------------------
# Network detection
# ---------------------------------------------------------------------------

class TestTransientNetworkError:
    def test_httpx_transport_errors(self):
        assert is_transient_network_error(httpx.ConnectError("refused"))
        assert is_transient_network_error(httpx.ReadTimeout("slow"))

    def test_builtin_connection_errors(self):
        assert is_transient_network_error(ConnectionResetError())
        assert is_transient_network_error(TimeoutError())

    def test_errno(self):
        assert is_transient_network_error(OSError(errno.ECONNREFUSED, "refused"))

    def test_code_in_message(self):
        assert is_transient_network_error(RuntimeError("getaddrinfo EAI_AGAIN example.com"))

    def test_cause_chain(self):
        try:
            try:
                raise ConnectionError("reset")
            except ConnectionError as inner:
                raise RuntimeError("wrapped") from inner
        except RuntimeError as outer:
            assert is_transient_network_error(outer)

    def test_non_network_errors(self):
        assert not is_transient_network_error(ValueError("bad"))
        assert not is_transient_network_error(OSError(errno.ENOENT, "missing"))
        assert not is_transient_network_error("ECONNRESET")
        assert not is_transient_network_error(None)
