"""Tool abstractions consumed by the Toolkit."""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from llm_streamloop.types import ProviderToolDefinition


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    type: str  # string, number, integer, boolean, array, object
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None


class Tool(ABC):
    """Base class for all tools.

    Subclasses set ``name``, ``description`` and ``parameters`` as class
    attributes and implement ``execute()``, which may return any
    JSON-serializable value.  ``message`` is an optional string, or a
    callable taking the decoded arguments, logged when the tool is called.
    """

    name: str
    description: str
    parameters: Sequence[ToolParameter] = ()
    message: str | Callable[[dict[str, Any]], Any] | None = None

    @abstractmethod
    async def execute(self, **kwargs: Any) -> Any:
        """Execute the tool."""

    def parameters_schema(self) -> dict[str, Any]:
        """JSON schema for the tool's parameters."""
        properties: dict[str, Any] = {}
        required: list[str] = []
        for p in self.parameters:
            prop: dict[str, Any] = {
                "type": p.type,
                "description": p.description,
            }
            if p.enum:
                prop["enum"] = p.enum
            if p.default is not None:
                prop["default"] = p.default
            properties[p.name] = prop
            if p.required:
                required.append(p.name)
        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }

    def to_definition(self) -> ProviderToolDefinition:
        return ProviderToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters_schema(),
        )


class FunctionTool(Tool):
    """Wrap a plain (sync or async) callable as a tool.

    Usage::

        def roll(sides: int = 6) -> int: ...

        tool = FunctionTool("roll", "Roll a die", roll, {
            "type": "object",
            "properties": {"sides": {"type": "integer"}},
        })
    """

    def __init__(
        self,
        name: str,
        description: str,
        call: Callable[..., Any],
        parameters: dict[str, Any] | None = None,
        message: str | Callable[[dict[str, Any]], Any] | None = None,
    ) -> None:
        self.name = name
        self.description = description
        self._call = call
        self._schema = parameters or {"type": "object", "properties": {}}
        self.message = message

    async def execute(self, **kwargs: Any) -> Any:
        result = self._call(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    def parameters_schema(self) -> dict[str, Any]:
        return self._schema
