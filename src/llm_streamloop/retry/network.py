"""Detection of transient network failures."""

from __future__ import annotations

import errno

import httpx

_TRANSIENT_CODES = (
    "ECONNRESET",
    "ETIMEDOUT",
    "ECONNREFUSED",
    "ENOTFOUND",
    "EAI_AGAIN",
    "EPIPE",
    "ENETRESET",
    "ENETUNREACH",
    "EHOSTUNREACH",
)

_TRANSIENT_ERRNOS = {
    getattr(errno, name) for name in _TRANSIENT_CODES if hasattr(errno, name)
}


def _is_transient(error: BaseException) -> bool:
    if isinstance(error, (httpx.TransportError, ConnectionError, TimeoutError)):
        return True
    if isinstance(error, OSError) and error.errno in _TRANSIENT_ERRNOS:
        return True
    message = str(error)
    return any(code in message for code in _TRANSIENT_CODES)


def is_transient_network_error(error: object) -> bool:
    """True if *error*, or anything in its cause chain, is a transient network failure."""
    seen: set[int] = set()
    current = error if isinstance(error, BaseException) else None
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if _is_transient(current):
            return True
        current = current.__cause__ or current.__context__
    return False
