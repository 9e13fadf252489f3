"""Exceptions raised by llm-streamloop.

Each error carries an HTTP-style ``status`` and ``title`` so it can be
reported in-band as an ``ErrorChunk`` or raised to the caller.
"""

from __future__ import annotations

from llm_streamloop.types import ErrorInfo

BAD_FUNCTION_CALL = "Bad Function Call"
STREAM_ERROR = "Stream Error"


class LoopError(Exception):
    """Base class for all llm-streamloop errors."""

    status: int = 500
    title: str = "Internal Error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.title)
        self.detail = detail

    def to_info(self) -> ErrorInfo:
        return ErrorInfo(status=self.status, title=self.title, detail=self.detail)


class BadGatewayError(LoopError):
    """The provider could not be reached or failed before producing output."""

    status = 502
    title = "Bad Gateway"


class TooManyRequestsError(LoopError):
    """The model kept requesting tools after the turn budget ran out."""

    status = 429
    title = "Too Many Requests"


class ToolNotFoundError(LoopError, LookupError):
    status = 404
    title = "Not Found"


class ToolArgumentError(LoopError, ValueError):
    status = 400
    title = "Bad Request"


class ConfigError(LoopError):
    status = 500
    title = "Configuration Error"
