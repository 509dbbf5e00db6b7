"""Pydantic models for chat requests and responses."""

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..chat.types import ChatRequest, HistoryTurn, ImageData

_HISTORY_ROLES = {"user": "user", "assistant": "assistant", "model": "assistant"}


class ChatCompletionRequest(BaseModel):
    """Incoming chat payload shared by the one-shot and streaming endpoints."""

    message: Optional[str] = None
    history: Optional[List[Any]] = None
    model_id: Optional[str] = Field(default=None, alias="modelId")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    topic: Optional[str] = None
    image_uri: Optional[str] = Field(default=None, alias="imageUri")
    system_instruction: Optional[str] = Field(
        default=None, alias="systemInstruction"
    )

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def has_content(self) -> bool:
        return bool((self.message or "").strip() or (self.image_uri or "").strip())

    def history_turns(self) -> tuple[HistoryTurn, ...]:
        turns: list[HistoryTurn] = []
        for item in self.history or []:
            if not isinstance(item, dict):
                continue
            role = _HISTORY_ROLES.get(str(item.get("role", "")).lower())
            content = item.get("content", item.get("text"))
            if role is None or not isinstance(content, str) or not content:
                continue
            turns.append(HistoryTurn(role=role, content=content))  # type: ignore[arg-type]
        return tuple(turns)

    def to_chat_request(self) -> ChatRequest:
        """Build the relay input; raises ``ValueError`` on a malformed image."""

        image = None
        if self.image_uri and self.image_uri.strip():
            image = ImageData.from_data_uri(self.image_uri)
        return ChatRequest(
            message=self.message or "",
            image=image,
            system_instruction=self.system_instruction,
            history=self.history_turns(),
        )


class ChatErrorResponse(BaseModel):
    success: bool = False
    error: str
    message: str
    details: Optional[str] = None


__all__ = ["ChatCompletionRequest", "ChatErrorResponse"]
