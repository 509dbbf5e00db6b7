"""Expo push delivery for digest notifications."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

import httpx

from ..schemas.digest import Digest

logger = logging.getLogger(__name__)

EXPO_PUSH_URL = "https://exp.host/--/api/v2/push/send"
EXPO_TOKEN_PREFIX = "ExponentPushToken"
PREVIEW_CHARS = 100


@dataclass(frozen=True)
class PushResult:
    success: bool
    error: Any = None
    result: Any = None


def digest_preview(content: str) -> str:
    return content[:PREVIEW_CHARS].strip() + "..."


class ExpoPushNotifier:
    """Send notifications through the Expo push API; never raises."""

    def __init__(
        self,
        push_url: str = EXPO_PUSH_URL,
        *,
        timeout_seconds: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._push_url = push_url
        self._timeout = timeout_seconds
        self._transport = transport

    async def send(
        self,
        token: str | None,
        *,
        title: str,
        body: str,
        data: Mapping[str, Any] | None = None,
    ) -> PushResult:
        if not token or not token.startswith(EXPO_TOKEN_PREFIX):
            logger.warning("Invalid push token: %s", token)
            return PushResult(success=False, error="Invalid push token")

        message = {
            "to": token,
            "sound": "default",
            "title": title,
            "body": body,
            "data": dict(data or {}),
            "priority": "high",
            "channelId": "digest",
        }

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self._push_url,
                    headers={"Accept": "application/json"},
                    json=message,
                )
            result = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Push notification error: %s", exc)
            return PushResult(success=False, error=str(exc))

        tickets = result.get("data") if isinstance(result, dict) else None
        if isinstance(tickets, dict):
            tickets = [tickets]
        if (
            isinstance(tickets, list)
            and tickets
            and isinstance(tickets[0], dict)
            and tickets[0].get("status") == "ok"
        ):
            logger.info("Push notification sent to %s...", token[:20])
            return PushResult(success=True, result=result)

        logger.error("Push notification failed: %s", result)
        return PushResult(success=False, error=result)

    async def send_digest(self, token: str | None, digest: Digest) -> PushResult:
        return await self.send(
            token,
            title=f"📰 {digest.topic} Digest",
            body=digest_preview(digest.content),
            data={"type": "digest", "digestId": digest.id, "topic": digest.topic},
        )


__all__ = ["EXPO_PUSH_URL", "ExpoPushNotifier", "PushResult", "digest_preview"]
