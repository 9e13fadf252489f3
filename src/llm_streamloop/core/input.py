"""Input normalisation: caller input to conversation history."""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass
from typing import Any, Mapping

from llm_streamloop.core.options import OperateOptions
from llm_streamloop.types import (
    History,
    HistoryItem,
    MessageRole,
    is_message,
    make_message,
)

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([\w.\-]+)\s*\}\}")

LoopInput = str | HistoryItem | list[HistoryItem]


def apply_placeholders(text: str, data: Mapping[str, Any] | None) -> str:
    """Replace ``{{key}}`` and ``{{a.b}}`` with values from *data*.

    Unknown keys are left as written.
    """
    if not data or "{{" not in text:
        return text

    def _lookup(match: re.Match[str]) -> str:
        value: Any = data
        for part in match.group(1).split("."):
            if isinstance(value, Mapping) and part in value:
                value = value[part]
            else:
                return match.group(0)
        return str(value)

    return _PLACEHOLDER_RE.sub(_lookup, text)


@dataclass
class ProcessedInput:
    history: History
    system: str | None = None
    instructions: str | None = None


class InputProcessor:
    """Turns caller input and options into the starting history.

    The caller's input is never mutated; the loop appends to a copy.
    """

    def process(self, input: LoopInput, options: OperateOptions) -> ProcessedInput:
        data = options.data
        spec = options.placeholders

        history = self._to_history(input, data if spec.input else None)

        system = options.system
        if system and data and spec.system:
            system = apply_placeholders(system, data)

        instructions = options.instructions
        if instructions and data and spec.instructions:
            instructions = apply_placeholders(instructions, data)

        if options.history:
            history = copy.deepcopy(list(options.history)) + history

        if system:
            history = self._prepend_system(history, system)

        return ProcessedInput(history=history, system=system, instructions=instructions)

    @staticmethod
    def _to_history(input: LoopInput, data: Mapping[str, Any] | None) -> History:
        if isinstance(input, str):
            return [make_message(apply_placeholders(input, data))]
        if isinstance(input, dict):
            items = [input]
        elif isinstance(input, (list, tuple)):
            items = list(input)
        else:
            raise TypeError(
                f"input must be a string, a message or a history list, "
                f"got {type(input).__name__}"
            )

        history: History = []
        for item in items:
            item = copy.deepcopy(item)
            if data and is_message(item) and isinstance(item["content"], str):
                item["content"] = apply_placeholders(item["content"], data)
            history.append(item)
        return history

    @staticmethod
    def _prepend_system(history: History, system: str) -> History:
        first = history[0] if history else None
        if is_message(first, MessageRole.SYSTEM):
            if first["content"] == system:
                return history
            return [make_message(system, MessageRole.SYSTEM)] + history[1:]
        return [make_message(system, MessageRole.SYSTEM)] + history


input_processor = InputProcessor()
