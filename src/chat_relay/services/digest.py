"""Generate topic news digests with the chat provider."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from ..chat.provider import ProviderClient
from ..chat.types import ChatRequest
from ..openrouter import OpenRouterError
from ..schemas.digest import Digest

logger = logging.getLogger(__name__)

DEFAULT_DIGEST_PROMPT = """
Buatkan ringkasan berita terbaru tentang {topic} dalam bahasa Indonesia.
Berikan 3-5 berita penting dengan format:

🔹 **[Judul Berita]** - [Ringkasan 1-2 kalimat]

Tambahkan juga insight singkat tentang tren yang terlihat dari berita-berita tersebut.

Catatan: Gunakan informasi pengetahuan terkini untuk memberikan berita yang relevan.
""".strip()


class DigestGenerationError(Exception):
    """Raised when the provider could not produce a digest."""


def build_digest_prompt(topic: str, custom_prompt: str | None = None) -> str:
    custom = (custom_prompt or "").strip()
    return custom or DEFAULT_DIGEST_PROMPT.format(topic=topic)


class DigestGenerator:
    """Produce a `Digest` for a topic (or a user-supplied prompt)."""

    def __init__(
        self,
        provider: ProviderClient,
        *,
        model: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._provider = provider
        self._model = model
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def generate(self, topic: str, custom_prompt: str | None = None) -> Digest:
        prompt = build_digest_prompt(topic, custom_prompt)
        logger.info("Generating digest for topic: %s", topic)

        try:
            response = await self._provider.complete(
                ChatRequest(message=prompt), model=self._model
            )
        except OpenRouterError as exc:
            logger.error("Failed to generate digest for %s: %s", topic, exc.message)
            raise DigestGenerationError(
                f"Digest generation failed: {exc.message}"
            ) from exc

        content = response.text().strip()
        if not content:
            raise DigestGenerationError("Digest generation failed: empty response")

        now = self._clock()
        digest = Digest(
            id=f"digest-{int(now.timestamp() * 1000)}",
            topic=topic,
            content=content,
            sources=[],
            generated_at=now,
            custom_prompt=(custom_prompt or "").strip() or None,
        )
        logger.info("Digest generated successfully (%d chars)", len(content))
        return digest


__all__ = [
    "DEFAULT_DIGEST_PROMPT",
    "DigestGenerationError",
    "DigestGenerator",
    "build_digest_prompt",
]
