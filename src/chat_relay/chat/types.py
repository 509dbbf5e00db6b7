"""Type definitions for the chat relay."""

from __future__ import annotations

import base64
import binascii
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Mapping, Union

_DATA_URI_RE = re.compile(
    r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[^,;]+)*;base64,", re.IGNORECASE
)
DEFAULT_IMAGE_MIME = "image/jpeg"


@dataclass(frozen=True)
class ImageData:
    """Inline image attached to a chat request."""

    data: bytes
    mime_type: str = DEFAULT_IMAGE_MIME

    @classmethod
    def from_data_uri(cls, value: str) -> "ImageData":
        """Decode a `data:` URI or a bare base64 payload.

        Raises ``ValueError`` when the payload is not valid base64.
        """

        mime_type = DEFAULT_IMAGE_MIME
        payload = value.strip()
        match = _DATA_URI_RE.match(payload)
        if match:
            if match.group("mime"):
                mime_type = match.group("mime").lower()
            payload = payload[match.end():]
        try:
            decoded = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("Image data is not valid base64") from exc
        return cls(data=decoded, mime_type=mime_type)

    def to_data_uri(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


@dataclass(frozen=True)
class HistoryTurn:
    role: Literal["user", "assistant"]
    content: str


@dataclass(frozen=True)
class ChatRequest:
    """Immutable input to one relay invocation."""

    message: str
    image: ImageData | None = None
    system_instruction: str | None = None
    history: tuple[HistoryTurn, ...] = ()


# ---------------------------------------------------------------------------
# Provider-side chunks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolInvocation:
    name: str
    args: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TextChunk:
    text: str


@dataclass(frozen=True)
class ToolCallChunk:
    calls: tuple[ToolInvocation, ...]
    text: str = ""


@dataclass(frozen=True)
class EmptyChunk:
    pass


Chunk = Union[TextChunk, ToolCallChunk, EmptyChunk]


@dataclass(frozen=True)
class ProviderResponse:
    """Complete (non-streaming) provider answer."""

    content: str
    tool_calls: tuple[ToolInvocation, ...] = ()
    model: str | None = None

    def text(self) -> str:
        return self.content

    def function_calls(self) -> list[ToolInvocation]:
        return list(self.tool_calls)


# ---------------------------------------------------------------------------
# Caller-facing stream events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextDelta:
    text: str

    def to_payload(self) -> dict[str, Any]:
        return {"text": self.text}


@dataclass(frozen=True)
class ImageResult:
    text: str
    image_url: str
    is_image_generation: bool = True

    def to_payload(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "imageUrl": self.image_url,
            "isImageGeneration": self.is_image_generation,
        }


@dataclass(frozen=True)
class ErrorEvent:
    message: str

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.message}


@dataclass(frozen=True)
class Done:
    def to_payload(self) -> None:
        return None


StreamEvent = Union[TextDelta, ImageResult, ErrorEvent, Done]

DONE_SENTINEL = "[DONE]"


def sse_data(event: StreamEvent) -> str:
    """Serialize an event to the `data:` field of an SSE frame."""

    payload = event.to_payload()
    if payload is None:
        return DONE_SENTINEL
    return json.dumps(payload, ensure_ascii=False)


@dataclass(frozen=True)
class ChatReply:
    """Outcome of the non-streaming chat path."""

    text: str
    model: str | None = None
    image_url: str | None = None
    is_image_generation: bool = False

    def to_payload(self, *, timestamp: datetime | None = None) -> dict[str, Any]:
        moment = timestamp or datetime.now(timezone.utc)
        body: dict[str, Any] = {"success": True, "response": self.text}
        if self.image_url is not None:
            body["imageUrl"] = self.image_url
            body["isImageGeneration"] = True
        if self.model is not None:
            body["modelId"] = self.model
        body["timestamp"] = moment.isoformat().replace("+00:00", "Z")
        return body


__all__ = [
    "DEFAULT_IMAGE_MIME",
    "DONE_SENTINEL",
    "ChatReply",
    "ChatRequest",
    "Chunk",
    "Done",
    "EmptyChunk",
    "ErrorEvent",
    "HistoryTurn",
    "ImageData",
    "ImageResult",
    "ProviderResponse",
    "StreamEvent",
    "TextChunk",
    "TextDelta",
    "ToolCallChunk",
    "ToolInvocation",
    "sse_data",
]
