"""Per-invocation options for ``StreamLoop.execute``."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from llm_streamloop.hooks import LoopHooks
from llm_streamloop.retry.policy import RetryPolicy
from llm_streamloop.tools.base import Tool
from llm_streamloop.tools.toolkit import Toolkit
from llm_streamloop.types import HistoryItem

DEFAULT_MAX_TURNS = 12
MAX_TURNS_ABSOLUTE_LIMIT = 72


@dataclass(frozen=True)
class PlaceholderSpec:
    """Which texts receive ``{{key}}`` substitution when ``data`` is given."""

    input: bool = True
    system: bool = True
    instructions: bool = True


@dataclass(frozen=True)
class OperateOptions:
    """Options recognised by the stream loop.

    Immutable for the lifetime of one ``execute()`` call.

    ``turns`` bounds the number of model round-trips: ``None``/``False``
    use the loop default (1), ``True`` allows ``DEFAULT_MAX_TURNS`` and an
    integer is clamped into ``[1, MAX_TURNS_ABSOLUTE_LIMIT]``.
    """

    model: str | None = None
    system: str | None = None
    instructions: str | None = None
    tools: Toolkit | Sequence[Tool] | None = None
    format: Any = None
    turns: bool | int | None = None
    hooks: LoopHooks | None = None
    retry_policy: RetryPolicy | None = None
    data: Mapping[str, Any] | None = None
    placeholders: PlaceholderSpec = field(default_factory=PlaceholderSpec)
    history: Sequence[HistoryItem] | None = None
    temperature: float | None = None
    user: str | None = None
    provider_options: Mapping[str, Any] | None = None


def max_turns_from_options(options: OperateOptions, default: int = 1) -> int:
    turns = options.turns
    if turns is None or turns is False:
        return max(1, default)
    if turns is True:
        return DEFAULT_MAX_TURNS
    return max(1, min(int(turns), MAX_TURNS_ABSOLUTE_LIMIT))


def resolve_toolkit(options: OperateOptions) -> Toolkit | None:
    """The toolkit named by ``options.tools``, wrapping a plain tool list.

    A ``Toolkit`` is returned as given, even when empty, so it overrides
    the loop's own toolkit for this call.  ``None`` and an empty list
    name no tools and leave the loop's toolkit in effect.
    """
    tools = options.tools
    if tools is None:
        return None
    if isinstance(tools, Toolkit):
        return tools
    tools = list(tools)
    if not tools:
        return None
    return Toolkit(tools)
