"""Pydantic models for daily digest settings and history."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_DIGEST_TOPIC = "Teknologi"
DEFAULT_DIGEST_HOUR_UTC = 8


class DigestUserSettings(BaseModel):
    """Per-user digest schedule as persisted in the users file."""

    user_id: str = Field(alias="userId")
    topic: str = DEFAULT_DIGEST_TOPIC
    custom_prompt: Optional[str] = Field(default=None, alias="customPrompt")
    digest_enabled: bool = Field(default=False, alias="digestEnabled")
    digest_time_utc: int = Field(
        default=DEFAULT_DIGEST_HOUR_UTC, ge=0, le=23, alias="digestTimeUTC"
    )
    push_token: Optional[str] = Field(default=None, alias="pushToken")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class Digest(BaseModel):
    """A generated news digest, optionally bound to the user it was sent to."""

    id: str
    topic: str
    content: str
    sources: List[Any] = Field(default_factory=list)
    generated_at: datetime = Field(alias="generatedAt")
    custom_prompt: Optional[str] = Field(default=None, alias="customPrompt")
    user_id: Optional[str] = Field(default=None, alias="userId")
    delivered_at: Optional[datetime] = Field(default=None, alias="deliveredAt")

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_client(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def _join_topics(topics: Optional[List[str]], topic: Optional[str]) -> Optional[str]:
    cleaned = [item.strip() for item in topics or [] if item and item.strip()]
    if cleaned:
        return ", ".join(cleaned)
    if topic and topic.strip():
        return topic.strip()
    return None


class DigestSettingsPayload(BaseModel):
    """Body of `POST /api/digest/settings`."""

    user_id: str = Field(alias="userId", min_length=1)
    digest_time_utc: int = Field(
        default=DEFAULT_DIGEST_HOUR_UTC, ge=0, le=23, alias="digestTimeUTC"
    )
    topics: Optional[List[str]] = None
    topic: Optional[str] = None
    custom_prompt: Optional[str] = Field(default=None, alias="customPrompt")
    digest_enabled: bool = Field(default=False, alias="digestEnabled")
    push_token: Optional[str] = Field(default=None, alias="pushToken")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_changes(self) -> dict[str, Any]:
        changes: dict[str, Any] = {
            "digest_time_utc": self.digest_time_utc,
            "custom_prompt": (self.custom_prompt or "").strip() or None,
            "digest_enabled": self.digest_enabled,
        }
        topic = _join_topics(self.topics, self.topic)
        if topic is not None:
            changes["topic"] = topic
        if self.push_token:
            changes["push_token"] = self.push_token
        return changes


class ManualDigestPayload(BaseModel):
    """Body of `POST /api/send-digest/{user_id}`; every field is optional."""

    topics: Optional[List[str]] = None
    topic: Optional[str] = None
    custom_prompt: Optional[str] = Field(default=None, alias="customPrompt")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def resolved_topic(self) -> Optional[str]:
        return _join_topics(self.topics, self.topic)

    @property
    def custom_prompt_provided(self) -> bool:
        return "custom_prompt" in self.model_fields_set


__all__ = [
    "DEFAULT_DIGEST_HOUR_UTC",
    "DEFAULT_DIGEST_TOPIC",
    "Digest",
    "DigestSettingsPayload",
    "DigestUserSettings",
    "ManualDigestPayload",
]
