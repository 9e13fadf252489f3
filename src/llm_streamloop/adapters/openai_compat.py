"""Adapter for OpenAI-compatible ``/chat/completions`` streaming APIs.

Works with OpenAI, LM Studio, Ollama's ``/v1`` endpoint, vLLM and other
servers speaking the same SSE format.  Uses ``httpx.AsyncClient``.
"""

from __future__ import annotations

import copy
import json
import logging
from typing import Any, AsyncIterator

import httpx

from llm_streamloop.adapters.base import ProviderAdapter, encode_arguments
from llm_streamloop.config import ProfileSpec
from llm_streamloop.types import (
    ClassifiedError,
    DoneChunk,
    ErrorCategory,
    ErrorChunk,
    ErrorInfo,
    History,
    MessageRole,
    MessageType,
    OperateRequest,
    ProviderToolDefinition,
    StandardToolResult,
    StreamChunk,
    TextChunk,
    ToolCall,
    ToolCallChunk,
    Usage,
    is_message,
)

_logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = (408, 409, 425)


# ---------------------------------------------------------------------------
# Streaming tool-call accumulation
# ---------------------------------------------------------------------------

class ToolCallAccumulator:
    """Accumulate native tool calls from streaming deltas.

    OpenAI-compatible providers send tool calls as incremental chunks:
    each chunk has an ``index``, an ``id`` and ``function.name`` (first
    chunk only), and ``function.arguments`` fragments that must be
    concatenated.
    """

    def __init__(self) -> None:
        self._calls: dict[int, dict[str, str]] = {}

    def feed(self, delta: dict[str, Any]) -> None:
        """Process ``delta.tool_calls`` from a single SSE chunk."""
        for tc in delta.get("tool_calls") or []:
            idx = tc.get("index", 0)
            entry = self._calls.setdefault(idx, {"id": "", "name": "", "arguments": ""})
            if tc.get("id"):
                entry["id"] = tc["id"]
            func = tc.get("function") or {}
            if func.get("name"):
                entry["name"] = func["name"]
            if func.get("arguments"):
                entry["arguments"] += func["arguments"]

    def has_calls(self) -> bool:
        return bool(self._calls)

    def finalize(self) -> list[ToolCall]:
        """Complete tool calls in index order; nameless fragments are dropped."""
        result: list[ToolCall] = []
        for idx in sorted(self._calls):
            entry = self._calls[idx]
            if not entry["name"]:
                continue
            result.append(
                ToolCall(
                    id=entry["id"] or f"call_{idx}",
                    name=entry["name"],
                    arguments=entry["arguments"],
                    raw=dict(entry),
                )
            )
        return result


# ---------------------------------------------------------------------------
# History translation
# ---------------------------------------------------------------------------

def _chat_tool_call(call_id: str, name: str, arguments: Any) -> dict[str, Any]:
    return {
        "id": call_id,
        "type": "function",
        "function": {"name": name, "arguments": encode_arguments(arguments)},
    }


def history_to_chat_messages(history: History) -> list[dict[str, Any]]:
    """Translate engine-neutral history items into chat messages."""
    messages: list[dict[str, Any]] = []
    for item in history:
        kind = item.get("type", MessageType.MESSAGE.value)
        if kind == MessageType.FUNCTION_CALL.value:
            call = _chat_tool_call(item["call_id"], item["name"], item.get("arguments", ""))
            last = messages[-1] if messages else None
            if last is not None and last.get("role") == MessageRole.ASSISTANT.value:
                last.setdefault("tool_calls", []).append(call)
            else:
                messages.append({
                    "role": MessageRole.ASSISTANT.value,
                    "content": None,
                    "tool_calls": [call],
                })
        elif kind == MessageType.FUNCTION_CALL_OUTPUT.value:
            messages.append({
                "role": "tool",
                "tool_call_id": item["call_id"],
                "content": item.get("output", ""),
            })
        elif kind == MessageType.REASONING.value:
            # Chat completions has no slot for replayed reasoning.
            continue
        else:
            messages.append({
                "role": item.get("role", MessageRole.USER.value),
                "content": item.get("content", ""),
            })
    return messages


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------

class OpenAICompatibleAdapter(ProviderAdapter):
    """Provider adapter for OpenAI-compatible chat completion servers.

    Parameters
    ----------
    profile:
        Provider profile (url, key, default model, timeout).
    client:
        Optional pre-built ``httpx.AsyncClient``; one is created from the
        profile otherwise.
    """

    def __init__(
        self,
        profile: ProfileSpec | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.profile = profile or ProfileSpec()
        self.name = self.profile.provider
        self.default_model = self.profile.default_model
        self._client = client or httpx.AsyncClient(
            base_url=self.profile.url,
            headers={
                "Authorization": f"Bearer {self.profile.api_key}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(self.profile.timeout, connect=30, read=60),
        )

    # ------------------------------------------------------------------
    # Request construction
    # ------------------------------------------------------------------

    def build_request(self, request: OperateRequest) -> dict[str, Any]:
        messages = history_to_chat_messages(request.messages)
        if request.system and not (
            request.messages and is_message(request.messages[0], MessageRole.SYSTEM)
        ):
            messages.insert(0, {"role": "system", "content": request.system})
        if request.instructions:
            messages.append({"role": "system", "content": request.instructions})

        payload: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if request.tools:
            payload["tools"] = request.tools
        if request.format:
            payload["response_format"] = request.format
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.user:
            payload["user"] = request.user
        if self.profile.extra_params:
            payload.update(self.profile.extra_params)
        if request.provider_options:
            payload.update(request.provider_options)
        return payload

    def format_tool_definition(self, definition: ProviderToolDefinition) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": definition.name,
                "description": definition.description,
                "parameters": definition.parameters,
            },
        }

    def format_output_schema(self, format: Any) -> dict[str, Any]:
        if isinstance(format, dict) and format.get("type") == "json_schema":
            return format
        return {
            "type": "json_schema",
            "json_schema": {"name": "response", "schema": format, "strict": True},
        }

    def append_tool_result(
        self,
        request: dict[str, Any],
        tool_call: ToolCall,
        result: StandardToolResult,
    ) -> dict[str, Any]:
        updated = copy.deepcopy(request)
        messages = updated.setdefault("messages", [])
        messages.append({
            "role": MessageRole.ASSISTANT.value,
            "content": None,
            "tool_calls": [_chat_tool_call(tool_call.id, tool_call.name, tool_call.arguments)],
        })
        messages.append({
            "role": "tool",
            "tool_call_id": tool_call.id,
            "content": result.output,
        })
        return updated

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def execute_stream_request(
        self, request: dict[str, Any],
    ) -> AsyncIterator[StreamChunk]:
        model = request.get("model") or self.default_model
        accumulator = ToolCallAccumulator()
        usage: Usage | None = None

        async with self._client.stream("POST", "/chat/completions", json=request) as resp:
            if resp.status_code >= 400:
                await resp.aread()
                resp.raise_for_status()

            async for raw_line in resp.aiter_lines():
                if not raw_line.startswith("data:"):
                    continue
                data_str = raw_line[5:].strip()
                if data_str == "[DONE]":
                    break
                try:
                    data = json.loads(data_str)
                except json.JSONDecodeError:
                    _logger.debug("Skipping malformed SSE line: %s", data_str[:200])
                    continue

                if data.get("error"):
                    yield ErrorChunk(error=self._provider_error(data["error"]))
                    continue

                model = data.get("model") or model
                if data.get("usage"):
                    usage = self._parse_usage(data["usage"], model)

                for choice in data.get("choices") or []:
                    delta = choice.get("delta") or {}
                    accumulator.feed(delta)
                    content = delta.get("content")
                    if content:
                        yield TextChunk(content=content)

        for tool_call in accumulator.finalize():
            yield ToolCallChunk(tool_call=tool_call)
        yield DoneChunk(usage=[usage or Usage(provider=self.name, model=model)])

    def _parse_usage(self, raw: dict[str, Any], model: str) -> Usage:
        details = raw.get("completion_tokens_details") or {}
        prompt = raw.get("prompt_tokens", 0) or 0
        completion = raw.get("completion_tokens", 0) or 0
        return Usage(
            input=prompt,
            output=completion,
            reasoning=details.get("reasoning_tokens", 0) or 0,
            total=raw.get("total_tokens", prompt + completion) or 0,
            provider=self.name,
            model=model,
        )

    @staticmethod
    def _provider_error(raw: Any) -> ErrorInfo:
        if not isinstance(raw, dict):
            return ErrorInfo(status=502, title="Provider Error", detail=str(raw))
        status = raw.get("code") if isinstance(raw.get("code"), int) else 502
        return ErrorInfo(
            status=status,
            title=raw.get("type") or "Provider Error",
            detail=raw.get("message"),
        )

    # ------------------------------------------------------------------
    # Error classification
    # ------------------------------------------------------------------

    def classify_error(self, error: BaseException) -> ClassifiedError:
        if isinstance(error, httpx.HTTPStatusError):
            status = error.response.status_code
            if status == 429:
                return ClassifiedError(
                    error=error,
                    category=ErrorCategory.RATE_LIMIT,
                    should_retry=True,
                    suggested_delay_ms=_retry_after_ms(error.response),
                )
            if status >= 500 or status in _RETRYABLE_STATUS:
                return ClassifiedError(
                    error=error, category=ErrorCategory.RETRYABLE, should_retry=True,
                )
            return ClassifiedError(
                error=error, category=ErrorCategory.UNRECOVERABLE, should_retry=False,
            )

        network = self.classify_network_error(error)
        if network is not None:
            return network

        return ClassifiedError(error=error, category=ErrorCategory.UNKNOWN, should_retry=True)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()


def _retry_after_ms(response: httpx.Response) -> int | None:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return int(float(value) * 1000)
    except ValueError:
        return None
