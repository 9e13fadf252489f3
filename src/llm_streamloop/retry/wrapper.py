"""Retry wrapper around one turn's streaming provider call.

A failed attempt is re-issued only while nothing from it has reached the
caller.  Once output has been delivered, a failure is reported in-band as a
"Stream Error" chunk and the attempt ends; retrying then would duplicate or
corrupt what the caller has already seen.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable

from llm_streamloop.errors import STREAM_ERROR, BadGatewayError
from llm_streamloop.events.bus import EventBus
from llm_streamloop.hooks import HookRunner, LoopHooks, ModelErrorContext
from llm_streamloop.hooks import hook_runner as default_hook_runner
from llm_streamloop.retry.policy import NO_RETRY, RetryPolicy
from llm_streamloop.types import (
    ClassifiedError,
    DoneChunk,
    ErrorCategory,
    ErrorChunk,
    ErrorInfo,
    EventType,
    History,
    LoopEvent,
    StreamChunk,
)

_logger = logging.getLogger(__name__)

Classifier = Callable[[BaseException], ClassifiedError]
Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryContext:
    """What the error hooks are told about the failing request."""

    input: History | None = None
    options: Any = None
    provider_request: Any = None
    hooks: LoopHooks | None = None


class RetryWrapper:
    """Drives one turn's adapter call under a ``RetryPolicy``.

    Parameters
    ----------
    classify:
        The adapter's ``classify_error``.
    policy:
        Retry policy; read-only.
    hook_runner:
        Hook runner used for the model-error hooks.
    event_bus:
        Optional bus for ``model.retry`` / ``model.stream_interrupted`` events.
    sleep:
        Coroutine function used for the backoff delay (seconds).

    After ``attempt()`` finishes, ``interrupted`` tells whether the attempt
    ended with an in-band "Stream Error" chunk.
    """

    def __init__(
        self,
        classify: Classifier,
        policy: RetryPolicy | None = None,
        hook_runner: HookRunner | None = None,
        event_bus: EventBus | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._classify = classify
        self._policy = policy or NO_RETRY
        self._hooks = hook_runner or default_hook_runner
        self._event_bus = event_bus
        self._sleep = sleep
        self.interrupted = False
        self.attempts = 0

    async def attempt(
        self,
        build_and_execute: Callable[[], AsyncIterator[StreamChunk]],
        context: RetryContext | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Yield the chunks of the first attempt that gets output through.

        Raises ``BadGatewayError`` when every permitted attempt failed before
        producing output, or the failure is not retryable.
        """
        context = context or RetryContext()
        self.interrupted = False
        self.attempts = 0
        attempt = 0

        while True:
            self.attempts += 1
            delivered = False
            # Done chunks are held until the attempt drains so a retried
            # attempt cannot contribute usage twice.
            pending_done: list[DoneChunk] = []
            stream: AsyncIterator[StreamChunk] | None = None
            try:
                stream = build_and_execute()
                async for chunk in stream:
                    if isinstance(chunk, DoneChunk):
                        pending_done.append(chunk)
                        continue
                    delivered = True
                    yield chunk
            except Exception as e:
                if delivered:
                    _logger.error("Stream failed after partial data was delivered: %s", e)
                    self.interrupted = True
                    await self._emit(EventType.STREAM_INTERRUPTED, {"error": str(e)})
                    yield ErrorChunk(
                        error=ErrorInfo(status=502, title=STREAM_ERROR, detail=str(e)),
                    )
                    return

                classified = self._classify(e)
                error_context = ModelErrorContext(
                    error=e,
                    input=context.input,
                    options=context.options,
                    provider_request=context.provider_request,
                )
                if (
                    not classified.should_retry
                    or classified.category == ErrorCategory.UNRECOVERABLE
                    or not self._policy.should_retry(attempt)
                ):
                    _logger.error(
                        "Stream request failed after %d attempt(s) (category=%s): %s",
                        attempt + 1, classified.category.value, e,
                    )
                    await self._hooks.run_on_unrecoverable_error(context.hooks, error_context)
                    raise BadGatewayError(str(e)) from e

                if classified.category == ErrorCategory.UNKNOWN:
                    _logger.warning("Stream request failed with unknown error type, will retry")

                delay_ms = self._delay_ms(attempt, classified)
                _logger.warning(
                    "Stream request failed (attempt %d/%d). Retrying in %dms: %s",
                    attempt + 1, self._policy.max_retries + 1, delay_ms, e,
                )
                await self._hooks.run_on_retryable_error(context.hooks, error_context)
                await self._emit(EventType.MODEL_RETRY, {
                    "attempt": attempt + 1,
                    "delay_ms": delay_ms,
                    "category": classified.category.value,
                    "error": str(e),
                })
                await self._sleep(delay_ms / 1000)
                attempt += 1
                continue
            finally:
                await _close(stream)

            if attempt > 0:
                _logger.debug("Stream request succeeded after %d retries", attempt)
            for done in pending_done:
                yield done
            return

    def _delay_ms(self, attempt: int, classified: ClassifiedError) -> int:
        if classified.suggested_delay_ms is not None:
            return min(classified.suggested_delay_ms, self._policy.max_delay_ms)
        return self._policy.delay_for_attempt(attempt)

    async def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        if self._event_bus:
            await self._event_bus.emit(LoopEvent(type=event_type, data=data))


async def _close(stream: Any) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()
