"""Provider client mapping OpenRouter payloads onto relay chunk types."""

from __future__ import annotations

import json
import logging
from contextlib import aclosing
from typing import Any, AsyncGenerator, Mapping, Sequence

from fastapi import status

from ..openrouter import OpenRouterClient, OpenRouterError
from .tooling import finalize_tool_calls, forced_tool_choice, merge_tool_calls
from .types import (
    ChatRequest,
    Chunk,
    EmptyChunk,
    ProviderResponse,
    TextChunk,
    ToolCallChunk,
)

logger = logging.getLogger(__name__)

DEFAULT_VISION_PROMPT = "What do you see in this image?"


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, Sequence):
        fragments: list[str] = []
        for item in content:
            if not isinstance(item, Mapping):
                continue
            if item.get("type") == "text" and isinstance(item.get("text"), str):
                fragments.append(item["text"])
        return "".join(fragments)
    return ""


def _raise_for_embedded_error(payload: Mapping[str, Any]) -> None:
    error = payload.get("error")
    if not error:
        return
    status_code = status.HTTP_502_BAD_GATEWAY
    if isinstance(error, Mapping):
        code = error.get("code")
        if isinstance(code, int) and 400 <= code < 600:
            status_code = code
    raise OpenRouterError(status_code, error)


def map_stream_chunk(
    payload: Mapping[str, Any],
    pending_tool_calls: list[dict[str, Any]],
) -> Chunk:
    """Map one decoded SSE chunk to a relay chunk.

    Tool-call fragments are folded into ``pending_tool_calls`` and only
    surface as a ``ToolCallChunk`` once the provider reports a finish reason.
    Content arriving while fragments are pending is dropped.
    """

    _raise_for_embedded_error(payload)

    choices = payload.get("choices")
    if not isinstance(choices, Sequence) or not choices:
        return EmptyChunk()
    choice = choices[0]
    if not isinstance(choice, Mapping):
        return EmptyChunk()

    delta = choice.get("delta") or {}
    if not isinstance(delta, Mapping):
        delta = {}

    if delta.get("tool_calls"):
        merge_tool_calls(pending_tool_calls, delta["tool_calls"])

    text = _content_text(delta.get("content"))

    if pending_tool_calls:
        if choice.get("finish_reason") is None:
            return EmptyChunk()
        calls = finalize_tool_calls(pending_tool_calls)
        pending_tool_calls.clear()
        if calls:
            return ToolCallChunk(calls=tuple(calls), text=text)

    if text:
        return TextChunk(text)
    return EmptyChunk()


def map_completion(payload: Mapping[str, Any]) -> ProviderResponse:
    """Map a non-streaming completion body to a ``ProviderResponse``."""

    _raise_for_embedded_error(payload)

    choices = payload.get("choices")
    if not isinstance(choices, Sequence) or not choices:
        raise OpenRouterError(
            status.HTTP_502_BAD_GATEWAY, "Completion response missing choices"
        )
    choice = choices[0]
    message = choice.get("message") if isinstance(choice, Mapping) else None
    if not isinstance(message, Mapping):
        raise OpenRouterError(
            status.HTTP_502_BAD_GATEWAY, "Completion response missing message"
        )

    raw_calls = message.get("tool_calls")
    calls = finalize_tool_calls(raw_calls) if isinstance(raw_calls, list) else []
    model = payload.get("model")
    return ProviderResponse(
        content=_content_text(message.get("content")),
        tool_calls=tuple(calls),
        model=model if isinstance(model, str) else None,
    )


class ProviderClient:
    """Issue one LLM call, either single-shot or streamed."""

    def __init__(self, client: OpenRouterClient, *, model: str) -> None:
        self._client = client
        self._model = model

    @property
    def model(self) -> str:
        return self._model

    def build_payload(
        self,
        request: ChatRequest,
        *,
        system_instruction: str | None = None,
        tools: Sequence[dict[str, Any]] | None = None,
        force_tool: bool = False,
        model: str | None = None,
    ) -> dict[str, Any]:
        messages: list[dict[str, Any]] = []
        if system_instruction:
            messages.append({"role": "system", "content": system_instruction})
        for turn in request.history:
            messages.append({"role": turn.role, "content": turn.content})

        if request.image is not None:
            user_content: Any = [
                {"type": "text", "text": request.message or DEFAULT_VISION_PROMPT},
                {
                    "type": "image_url",
                    "image_url": {"url": request.image.to_data_uri()},
                },
            ]
        else:
            user_content = request.message
        messages.append({"role": "user", "content": user_content})

        payload: dict[str, Any] = {
            "model": model or self._model,
            "messages": messages,
        }
        if tools:
            payload["tools"] = list(tools)
            payload["tool_choice"] = forced_tool_choice() if force_tool else "auto"
        return payload

    async def complete(
        self,
        request: ChatRequest,
        *,
        system_instruction: str | None = None,
        tools: Sequence[dict[str, Any]] | None = None,
        force_tool: bool = False,
        model: str | None = None,
    ) -> ProviderResponse:
        payload = self.build_payload(
            request,
            system_instruction=system_instruction,
            tools=tools,
            force_tool=force_tool,
            model=model,
        )
        body = await self._client.complete_raw(payload)
        return map_completion(body)

    async def stream(
        self,
        request: ChatRequest,
        *,
        system_instruction: str | None = None,
        tools: Sequence[dict[str, Any]] | None = None,
        force_tool: bool = False,
        model: str | None = None,
    ) -> AsyncGenerator[Chunk, None]:
        """Yield chunks in arrival order; the sequence is single-pass."""

        payload = self.build_payload(
            request,
            system_instruction=system_instruction,
            tools=tools,
            force_tool=force_tool,
            model=model,
        )
        pending: list[dict[str, Any]] = []

        async with aclosing(self._client.stream_chat_raw(payload)) as events:
            async for event in events:
                if event.done:
                    break
                data = event.data.strip()
                if not data:
                    continue
                try:
                    decoded = json.loads(data)
                except json.JSONDecodeError:
                    logger.debug("Skipping non-JSON stream payload: %.80s", data)
                    continue
                if not isinstance(decoded, Mapping):
                    continue
                yield map_stream_chunk(decoded, pending)

        if pending:
            calls = finalize_tool_calls(pending)
            if calls:
                yield ToolCallChunk(calls=tuple(calls))


__all__ = [
    "DEFAULT_VISION_PROMPT",
    "ProviderClient",
    "map_completion",
    "map_stream_chunk",
]
