"""Retry policy: how many times to re-issue a failed attempt, and when."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from llm_streamloop.config import RetrySpec

DEFAULT_INITIAL_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 32000
DEFAULT_BACKOFF_FACTOR = 2.0
DEFAULT_MAX_RETRIES = 6
MAX_RETRIES_ABSOLUTE_LIMIT = 72


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff policy.

    ``backoff_factor`` of 1 gives a constant delay.  ``max_retries`` is
    capped at ``MAX_RETRIES_ABSOLUTE_LIMIT``.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    initial_delay_ms: int = DEFAULT_INITIAL_DELAY_MS
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if self.initial_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("retry delays must be non-negative")
        if self.backoff_factor < 1:
            raise ValueError("backoff_factor must be >= 1")
        if self.max_retries > MAX_RETRIES_ABSOLUTE_LIMIT:
            object.__setattr__(self, "max_retries", MAX_RETRIES_ABSOLUTE_LIMIT)

    def should_retry(self, attempt: int) -> bool:
        """True while *attempt* (0-based count of failures so far) is under the limit."""
        return attempt < self.max_retries

    def delay_for_attempt(self, attempt: int) -> int:
        """Backoff delay in milliseconds before retry number ``attempt + 1``."""
        delay = self.initial_delay_ms * (self.backoff_factor ** attempt)
        return int(min(delay, self.max_delay_ms))

    @classmethod
    def from_spec(cls, spec: RetrySpec) -> RetryPolicy:
        return cls(
            max_retries=spec.max_retries,
            initial_delay_ms=spec.initial_delay_ms,
            max_delay_ms=spec.max_delay_ms,
            backoff_factor=spec.backoff_factor,
        )


NO_RETRY = RetryPolicy(max_retries=0, initial_delay_ms=0)
DEFAULT_RETRY_POLICY = RetryPolicy()
