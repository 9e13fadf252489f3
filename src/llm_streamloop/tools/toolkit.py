"""Toolkit: named tools resolvable and callable by the stream loop."""

from __future__ import annotations

import contextlib
import inspect
import json
import logging
from importlib.metadata import entry_points
from typing import Any, Callable, Iterable, Union

from llm_streamloop.errors import ToolArgumentError, ToolNotFoundError
from llm_streamloop.tools.base import Tool
from llm_streamloop.types import ProviderToolDefinition

_logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "llm_streamloop.tools"

# ``log`` may be a bool or a callable ``(message, context) -> Any``.
LogOption = Union[bool, Callable[[str, dict[str, Any]], Any]]


def _decode_arguments(name: str, arguments: Any) -> dict[str, Any]:
    if arguments is None or arguments == "":
        return {}
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments)
        except json.JSONDecodeError as e:
            raise ToolArgumentError(
                f"Arguments for tool '{name}' are not valid JSON: {e}"
            ) from e
    if not isinstance(arguments, dict):
        raise ToolArgumentError(
            f"Arguments for tool '{name}' must be an object, "
            f"got {type(arguments).__name__}"
        )
    return arguments


class Toolkit:
    """Registry of tools with async invocation and plugin discovery.

    A toolkit holds no per-conversation state and can be shared by
    concurrent stream loops.
    """

    def __init__(self, tools: Iterable[Tool] | None = None, log: LogOption = True) -> None:
        self._tools: dict[str, Tool] = {}
        self.log = log
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool, replace: bool = True, warn: bool = True) -> None:
        """Register a tool instance."""
        if tool.name in self._tools:
            if not replace:
                return
            if warn:
                _logger.warning("Replacing tool with duplicate name: %s", tool.name)
        self._tools[tool.name] = tool

    def extend(
        self,
        tools: Iterable[Tool],
        replace: bool = True,
        warn: bool = True,
        log: LogOption | None = None,
    ) -> Toolkit:
        """Register several tools.  Returns ``self`` for chaining."""
        for tool in tools:
            self.register(tool, replace=replace, warn=warn)
        if log is not None:
            self.log = log
        return self

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def list_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def tool_names(self) -> list[str]:
        return list(self._tools.keys())

    def definitions(self) -> list[ProviderToolDefinition]:
        """Provider-neutral definitions for every registered tool."""
        return [t.to_definition() for t in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    async def call(self, name: str, arguments: Any = None) -> Any:
        """Resolve *name*, decode *arguments* and invoke the tool.

        Raises ``ToolNotFoundError`` for unknown tools and
        ``ToolArgumentError`` for undecodable arguments; exceptions raised
        by the tool itself propagate unchanged.
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(f"Tool '{name}' not found")
        args = _decode_arguments(name, arguments)
        await self._log_call(tool, args)
        result = tool.execute(**args)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _log_call(self, tool: Tool, args: dict[str, Any]) -> None:
        if not self.log:
            return
        message = await self._message_for(tool, args)
        if callable(self.log):
            # A failing custom logger must not prevent the tool call.
            with contextlib.suppress(Exception):
                logged = self.log(message, {"name": tool.name, "args": args})
                if inspect.isawaitable(logged):
                    await logged
            return
        _logger.info(message)

    @staticmethod
    async def _message_for(tool: Tool, args: dict[str, Any]) -> str:
        message = tool.message
        if message is None:
            return f"Calling tool - {tool.name}"
        if callable(message):
            message = message(args)
            if inspect.isawaitable(message):
                message = await message
        return str(message)

    def discover(self) -> None:
        """Load tools from the ``llm_streamloop.tools`` entry-point group.

        Each entry point may be a Tool instance, a Tool subclass (which is
        instantiated) or a factory returning a Tool.
        """
        for ep in entry_points(group=ENTRY_POINT_GROUP):
            try:
                obj = ep.load()
                if isinstance(obj, type) and issubclass(obj, Tool):
                    tool = obj()
                elif isinstance(obj, Tool):
                    tool = obj
                elif callable(obj):
                    tool = obj()
                else:
                    _logger.warning(
                        "Entry point %s did not return a Tool: %s", ep.name, type(obj)
                    )
                    continue
                self.register(tool)
                _logger.info("Discovered plugin tool: %s", tool.name)
            except Exception:
                _logger.exception("Failed to load tool plugin: %s", ep.name)
