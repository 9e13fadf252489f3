"""Retry policy and pre-first-chunk retry wrapping."""

from llm_streamloop.retry.network import is_transient_network_error
from llm_streamloop.retry.policy import (
    DEFAULT_RETRY_POLICY,
    NO_RETRY,
    RetryPolicy,
)
from llm_streamloop.retry.wrapper import RetryContext, RetryWrapper

__all__ = [
    "DEFAULT_RETRY_POLICY",
    "NO_RETRY",
    "RetryContext",
    "RetryPolicy",
    "RetryWrapper",
    "is_transient_network_error",
]
