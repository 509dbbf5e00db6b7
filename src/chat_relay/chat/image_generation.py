"""Image generation with a Hugging Face primary tier and a Pollinations fallback."""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import TYPE_CHECKING, Awaitable, Callable
from urllib.parse import quote, urlencode

import httpx

from .types import DEFAULT_IMAGE_MIME

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)

MAX_PROMPT_CHARS = 800
FALLBACK_QUERY = {
    "width": "512",
    "height": "512",
    "nologo": "true",
    "model": "turbo",
}
DEFAULT_HUGGINGFACE_URL = (
    "https://router.huggingface.co/hf-inference/models/black-forest-labs/FLUX.1-schnell"
)
DEFAULT_FALLBACK_BASE_URL = "https://image.pollinations.ai/prompt"


class ImageGenerationError(Exception):
    """Raised when every image provider failed."""


def build_fallback_url(base_url: str, prompt: str) -> str:
    """Return the Pollinations URL for ``prompt`` (truncated to 800 chars)."""

    safe_prompt = prompt[:MAX_PROMPT_CHARS]
    # Same unreserved set as JavaScript encodeURIComponent
    encoded = quote(safe_prompt, safe="!~*'()")
    return f"{base_url.rstrip('/')}/{encoded}?{urlencode(FALLBACK_QUERY)}"


def to_data_uri(content: bytes, content_type: str | None) -> str:
    mime_type = (content_type or "").split(";", 1)[0].strip() or DEFAULT_IMAGE_MIME
    encoded = base64.b64encode(content).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


class ImageGenerator:
    """Turn a prompt into a `data:` URI, degrading to the fallback provider."""

    def __init__(
        self,
        *,
        huggingface_token: str | None = None,
        huggingface_url: str = DEFAULT_HUGGINGFACE_URL,
        fallback_base_url: str = DEFAULT_FALLBACK_BASE_URL,
        timeout_seconds: float = 60.0,
        retry_delay_seconds: float = 2.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._huggingface_token = (huggingface_token or "").strip() or None
        self._huggingface_url = huggingface_url
        self._fallback_base_url = fallback_base_url
        self._timeout = timeout_seconds
        self._retry_delay = retry_delay_seconds
        self._transport = transport
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ImageGenerator":
        token = settings.huggingface_token
        return cls(
            huggingface_token=token.get_secret_value() if token else None,
            huggingface_url=str(settings.huggingface_image_url),
            fallback_base_url=str(settings.pollinations_base_url),
            timeout_seconds=settings.image_timeout_seconds,
            retry_delay_seconds=settings.image_retry_delay_seconds,
        )

    @property
    def primary_configured(self) -> bool:
        return self._huggingface_token is not None

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout, connect=10.0),
            transport=self._transport,
            follow_redirects=True,
        )

    async def generate(self, prompt: str, max_retries: int = 3) -> str:
        """Generate an image for ``prompt`` and return it as a `data:` URI."""

        async with self._http_client() as client:
            if self._huggingface_token:
                try:
                    return await self._generate_primary(client, prompt)
                except (ImageGenerationError, httpx.HTTPError) as exc:
                    logger.warning(
                        "Hugging Face image generation failed, using fallback: %s",
                        exc,
                    )
            else:
                logger.info("No Hugging Face token configured; using fallback provider")

            return await self._generate_fallback(client, prompt, max_retries)

    async def _generate_primary(self, client: httpx.AsyncClient, prompt: str) -> str:
        logger.info("Generating image with Hugging Face: %.60s", prompt)
        response = await client.post(
            self._huggingface_url,
            headers={
                "Authorization": f"Bearer {self._huggingface_token}",
                "Content-Type": "application/json",
            },
            json={"inputs": prompt},
        )
        if response.status_code >= 400:
            raise ImageGenerationError(
                f"HF Error: {response.status_code} {response.text[:200]}"
            )
        content_type = response.headers.get("content-type", "")
        if not content_type.startswith("image/"):
            content_type = DEFAULT_IMAGE_MIME
        return to_data_uri(response.content, content_type)

    async def _generate_fallback(
        self, client: httpx.AsyncClient, prompt: str, max_retries: int
    ) -> str:
        url = build_fallback_url(self._fallback_base_url, prompt)
        attempts = max(0, max_retries) + 1
        last_error = "no attempt made"

        for attempt in range(1, attempts + 1):
            logger.info("Generating image with Pollinations (attempt %d/%d)", attempt, attempts)
            try:
                response = await client.get(url)
            except httpx.HTTPError as exc:
                last_error = str(exc) or exc.__class__.__name__
            else:
                if response.is_success:
                    return to_data_uri(
                        response.content, response.headers.get("content-type")
                    )
                last_error = f"Pollinations Error: {response.status_code}"

            if attempt < attempts:
                logger.info(
                    "Retrying Pollinations in %.1fs (%d left): %s",
                    self._retry_delay,
                    attempts - attempt,
                    last_error,
                )
                await self._sleep(self._retry_delay)

        logger.error("All image generation methods failed: %s", last_error)
        raise ImageGenerationError(last_error)


__all__ = [
    "FALLBACK_QUERY",
    "ImageGenerationError",
    "ImageGenerator",
    "MAX_PROMPT_CHARS",
    "build_fallback_url",
    "to_data_uri",
]
