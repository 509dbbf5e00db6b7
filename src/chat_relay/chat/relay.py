"""Chat relay: provider streaming with image tool-call interception."""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from enum import Enum
from typing import AsyncGenerator

from ..openrouter import OpenRouterError
from .image_generation import ImageGenerationError, ImageGenerator
from .provider import ProviderClient
from .tooling import (
    GENERATE_IMAGE_TOOL,
    GENERATE_IMAGE_TOOL_NAME,
    classify,
    extract_prompt,
    is_image_intent,
)
from .types import (
    ChatReply,
    ChatRequest,
    Done,
    ErrorEvent,
    ImageResult,
    StreamEvent,
    TextDelta,
    ToolInvocation,
)

logger = logging.getLogger(__name__)

STREAM_IMAGE_RETRIES = 1
DEFAULT_IMAGE_RETRIES = 3


class RelayState(str, Enum):
    START = "start"
    STREAMING_TEXT = "streaming_text"
    TOOL_DETECTED = "tool_detected"
    GENERATING_IMAGE = "generating_image"
    EMIT_IMAGE = "emit_image"
    DONE = "done"
    ERROR = "error"


def _enter(state: RelayState) -> None:
    logger.debug("Streaming relay state: %s", state.value)


def image_caption(prompt: str) -> str:
    return f'Here is your image of "{prompt}"'


class ChatRelay:
    """Relay one chat request to the provider and back as typed events."""

    def __init__(
        self,
        provider: ProviderClient,
        image_generator: ImageGenerator,
        *,
        system_instruction: str | None = None,
        deadline_seconds: float | None = None,
    ) -> None:
        self._provider = provider
        self._images = image_generator
        self._system_instruction = system_instruction
        self._deadline_seconds = deadline_seconds

    @property
    def model(self) -> str:
        return self._provider.model

    def _resolve_system_instruction(self, request: ChatRequest) -> str | None:
        custom = (request.system_instruction or "").strip()
        return custom or self._system_instruction

    def _deadline(self) -> float | None:
        if self._deadline_seconds is None:
            return None
        return asyncio.get_running_loop().time() + self._deadline_seconds

    async def stream(self, request: ChatRequest) -> AsyncGenerator[StreamEvent, None]:
        """Yield text deltas, or one image result, or an error; then ``Done``."""

        deadline = self._deadline()
        _enter(RelayState.START)
        force_tool = is_image_intent(request.message)
        logger.info(
            "Streaming relay mode: %s", "FORCED IMAGE GEN" if force_tool else "AUTO"
        )

        try:
            invocation: ToolInvocation | None = None
            chunks = self._provider.stream(
                request,
                system_instruction=self._resolve_system_instruction(request),
                tools=[GENERATE_IMAGE_TOOL],
                force_tool=force_tool,
            )
            _enter(RelayState.STREAMING_TEXT)
            async with aclosing(chunks):
                while True:
                    try:
                        async with asyncio.timeout_at(deadline):
                            chunk = await anext(chunks)
                    except StopAsyncIteration:
                        break
                    result = classify(chunk)
                    if isinstance(result, ToolInvocation):
                        # Remaining provider chunks are abandoned, not drained.
                        invocation = result
                        break
                    if isinstance(result, TextDelta):
                        yield result

            if invocation is not None:
                _enter(RelayState.TOOL_DETECTED)
                outcome = await self._run_tool(invocation, deadline)
                _enter(
                    RelayState.EMIT_IMAGE
                    if isinstance(outcome, ImageResult)
                    else RelayState.ERROR
                )
                yield outcome
        except OpenRouterError as exc:
            _enter(RelayState.ERROR)
            logger.error("Provider stream failed (%s): %s", exc.status_code, exc.message)
            yield ErrorEvent(exc.message)
        except TimeoutError:
            _enter(RelayState.ERROR)
            logger.error(
                "Streaming relay exceeded its %.0fs deadline", self._deadline_seconds
            )
            yield ErrorEvent("Request timed out before the response completed")
        except Exception as exc:
            _enter(RelayState.ERROR)
            logger.exception("Streaming relay failed")
            yield ErrorEvent(str(exc) or exc.__class__.__name__)

        _enter(RelayState.DONE)
        yield Done()

    async def _run_tool(
        self, invocation: ToolInvocation, deadline: float | None
    ) -> ImageResult | ErrorEvent:
        if invocation.name != GENERATE_IMAGE_TOOL_NAME:
            logger.warning("Model requested unknown tool %s", invocation.name)
            return ErrorEvent(f"Unsupported tool: {invocation.name}")

        prompt = extract_prompt(invocation)
        _enter(RelayState.GENERATING_IMAGE)
        logger.info("Generating image for streamed tool call: %.80s", prompt)
        try:
            async with asyncio.timeout_at(deadline):
                image_url = await self._images.generate(
                    prompt, max_retries=STREAM_IMAGE_RETRIES
                )
        except ImageGenerationError as exc:
            return ErrorEvent(f"Gagal membuat gambar: {exc}")

        logger.info("Sending image event (%d chars)", len(image_url))
        return ImageResult(text=image_caption(prompt), image_url=image_url)

    async def complete(self, request: ChatRequest) -> ChatReply:
        """Non-streaming path; provider errors propagate to the caller."""

        force_tool = is_image_intent(request.message)
        response = await self._provider.complete(
            request,
            system_instruction=self._resolve_system_instruction(request),
            tools=[GENERATE_IMAGE_TOOL],
            force_tool=force_tool,
        )
        model = response.model or self._provider.model

        calls = response.function_calls()
        if calls:
            invocation = calls[0]
            if invocation.name == GENERATE_IMAGE_TOOL_NAME:
                prompt = extract_prompt(invocation)
                logger.info("Generating image for tool call: %.80s", prompt)
                try:
                    image_url = await self._images.generate(
                        prompt, max_retries=DEFAULT_IMAGE_RETRIES
                    )
                except ImageGenerationError as exc:
                    return ChatReply(
                        text=f"Maaf, saya gagal membuat gambar. Error: {exc}"
                    )
                return ChatReply(
                    text=image_caption(prompt),
                    model=model,
                    image_url=image_url,
                    is_image_generation=True,
                )
            logger.warning("Model requested unknown tool %s", invocation.name)

        return ChatReply(text=response.text(), model=model)


__all__ = [
    "ChatRelay",
    "DEFAULT_IMAGE_RETRIES",
    "RelayState",
    "STREAM_IMAGE_RETRIES",
    "image_caption",
]
