"""Image tool declaration, intent detection and tool-call classification."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Sequence

from .types import (
    Chunk,
    EmptyChunk,
    TextChunk,
    TextDelta,
    ToolCallChunk,
    ToolInvocation,
)

logger = logging.getLogger(__name__)

GENERATE_IMAGE_TOOL_NAME = "generate_image"

GENERATE_IMAGE_TOOL: dict[str, Any] = {
    "type": "function",
    "function": {
        "name": GENERATE_IMAGE_TOOL_NAME,
        "description": (
            "Generate an image based on a text description. Use this when user asks "
            "to create, generate, draw, make, or visualize an image. Examples: "
            "'buatkan gambar kucing', 'generate a sunset', 'create an image of robot'."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "prompt": {
                    "type": "string",
                    "description": (
                        "Detailed and optimized description of the image to generate. "
                        "Enhance user's vague descriptions with artistic details. "
                        "ENGLISH is preferred for better results."
                    ),
                }
            },
            "required": ["prompt"],
        },
    },
}

IMAGE_INTENT_KEYWORDS: tuple[str, ...] = (
    "buatkan gambar",
    "generate image",
    "draw",
    "create image",
    "visualize",
)

_IMAGE_INTENT_RE = re.compile(
    "|".join(re.escape(keyword) for keyword in IMAGE_INTENT_KEYWORDS),
    re.IGNORECASE,
)


def is_image_intent(message: str | None) -> bool:
    """Return True when the message plainly asks for an image."""

    if not message:
        return False
    return _IMAGE_INTENT_RE.search(message) is not None


def forced_tool_choice() -> dict[str, Any]:
    """`tool_choice` value constraining the model to call `generate_image`."""

    return {"type": "function", "function": {"name": GENERATE_IMAGE_TOOL_NAME}}


def merge_tool_calls(
    accumulator: list[dict[str, Any]],
    deltas: Any,
) -> None:
    """Fold streamed tool-call fragments into ``accumulator`` by index."""

    for delta in deltas or []:
        if not isinstance(delta, dict):
            continue

        index = delta.get("index")
        delta_id = delta.get("id")
        if not isinstance(index, int) or index < 0:
            index = None
            if isinstance(delta_id, str):
                for existing_index, existing in enumerate(accumulator):
                    if existing.get("id") == delta_id:
                        index = existing_index
                        break
            if index is None:
                index = len(accumulator)

        while len(accumulator) <= index:
            accumulator.append(
                {
                    "id": None,
                    "type": "function",
                    "function": {"name": None, "arguments": ""},
                }
            )

        entry = accumulator[index]

        if delta_id:
            entry["id"] = delta_id
        if delta_type := delta.get("type"):
            entry["type"] = delta_type

        function_delta = delta.get("function") or {}
        if not isinstance(function_delta, dict):
            continue
        if function_name := function_delta.get("name"):
            entry["function"]["name"] = function_name
        arguments_fragment = function_delta.get("arguments")
        if isinstance(arguments_fragment, str) and arguments_fragment:
            entry["function"]["arguments"] += arguments_fragment
        elif isinstance(arguments_fragment, dict):
            # Some upstreams send the whole argument object at once.
            entry["function"]["arguments"] = json.dumps(arguments_fragment)


def _parse_arguments(raw: Any) -> dict[str, Any] | None:
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def finalize_tool_calls(
    tool_calls: Sequence[dict[str, Any]],
) -> list[ToolInvocation]:
    """Turn accumulated tool calls into invocations, dropping incomplete ones."""

    finalized: list[ToolInvocation] = []
    for call in tool_calls:
        if not isinstance(call, dict):
            continue

        function = call.get("function") or {}
        if not isinstance(function, dict):
            continue

        name = function.get("name")
        if not (isinstance(name, str) and name.strip()):
            continue
        arguments = _parse_arguments(function.get("arguments"))
        if arguments is None:
            logger.warning("Dropping tool call %s with unparseable arguments", name)
            continue

        finalized.append(ToolInvocation(name=name.strip(), args=arguments))

    return finalized


def classify(chunk: Chunk) -> TextDelta | ToolInvocation | None:
    """Classify a provider chunk as text, a tool invocation, or nothing.

    A chunk carrying function calls always classifies as the first call; any
    further calls and any text on the same chunk are dropped.
    """

    if isinstance(chunk, ToolCallChunk) and chunk.calls:
        first, *rest = chunk.calls
        if rest:
            logger.warning(
                "Chunk carried %d tool calls; using %s and ignoring the rest",
                len(chunk.calls),
                first.name,
            )
        return first
    if isinstance(chunk, TextChunk) and chunk.text:
        return TextDelta(chunk.text)
    if isinstance(chunk, (EmptyChunk, TextChunk, ToolCallChunk)):
        return None
    raise TypeError(f"Unsupported chunk type: {type(chunk).__name__}")


def extract_prompt(invocation: ToolInvocation) -> str:
    prompt = invocation.args.get("prompt") if invocation.args else None
    if isinstance(prompt, str):
        return prompt
    return "" if prompt is None else str(prompt)


__all__ = [
    "GENERATE_IMAGE_TOOL",
    "GENERATE_IMAGE_TOOL_NAME",
    "IMAGE_INTENT_KEYWORDS",
    "classify",
    "extract_prompt",
    "finalize_tool_calls",
    "forced_tool_choice",
    "is_image_intent",
    "merge_tool_calls",
]
