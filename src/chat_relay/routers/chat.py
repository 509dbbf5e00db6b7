"""Chat API routes: one-shot JSON and Server-Sent Events streaming."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, AsyncGenerator

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from ..chat import ChatRelay
from ..chat.types import ChatRequest, Done, ErrorEvent, sse_data
from ..openrouter import OpenRouterError
from ..schemas.chat import ChatCompletionRequest, ChatErrorResponse

router = APIRouter(prefix="/api", tags=["chat"])
logger = logging.getLogger(__name__)

QUOTA_MESSAGE = (
    "Kuota model AI (Free Tier) telah mencapai batas. "
    "Silakan coba lagi nanti atau ganti API Key di file .env."
)
INVALID_KEY_MESSAGE = (
    "API Key tidak valid atau sudah expired. Mohon ganti di file .env."
)


def get_chat_relay(request: Request) -> ChatRelay:
    relay = getattr(request.app.state, "chat_relay", None)
    if relay is None:  # pragma: no cover - defensive
        raise RuntimeError("Chat relay is not configured")
    return relay


def _error_response(
    status_code: int, error: str, message: str, details: str | None = None
) -> JSONResponse:
    body = ChatErrorResponse(error=error, message=message, details=details)
    return JSONResponse(
        status_code=status_code, content=body.model_dump(exclude_none=True)
    )


def provider_error_response(exc: OpenRouterError) -> JSONResponse:
    """Map an upstream failure onto the status codes the mobile client expects."""

    detail = exc.message
    if exc.status_code == status.HTTP_429_TOO_MANY_REQUESTS or "429" in detail:
        return _error_response(
            status.HTTP_429_TOO_MANY_REQUESTS, "Quota Exceeded", QUOTA_MESSAGE, detail
        )
    if (
        exc.status_code
        in {
            status.HTTP_400_BAD_REQUEST,
            status.HTTP_401_UNAUTHORIZED,
            status.HTTP_403_FORBIDDEN,
        }
        or "400" in detail
        or "API key not valid" in detail
    ):
        return _error_response(
            status.HTTP_400_BAD_REQUEST, "Invalid API Key", INVALID_KEY_MESSAGE, detail
        )
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Server Error",
        detail or "Failed to process message",
        detail,
    )


_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    code: {"model": ChatErrorResponse}
    for code in (
        status.HTTP_400_BAD_REQUEST,
        status.HTTP_429_TOO_MANY_REQUESTS,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
}


@router.post("/chat", response_model=None, responses=_ERROR_RESPONSES)
async def chat(
    payload: ChatCompletionRequest,
    relay: ChatRelay = Depends(get_chat_relay),
) -> JSONResponse:
    """Answer a chat message in one response, generating an image if asked."""

    logger.info("Received chat request: %.50s", payload.message or "")
    if not payload.has_content():
        return _error_response(
            status.HTTP_400_BAD_REQUEST,
            "Bad Request",
            "Message or image is required",
        )

    try:
        chat_request = payload.to_chat_request()
    except ValueError as exc:
        return _error_response(status.HTTP_400_BAD_REQUEST, "Bad Request", str(exc))

    try:
        reply = await relay.complete(chat_request)
    except OpenRouterError as exc:
        logger.error("Chat completion failed (%s): %s", exc.status_code, exc.message)
        return provider_error_response(exc)
    except Exception as exc:
        logger.exception("Chat completion failed")
        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Server Error",
            str(exc) or "Failed to process message",
            str(exc),
        )

    return JSONResponse(content=reply.to_payload())


@router.post("/chat/stream", response_model=None, status_code=200)
async def stream_chat(
    payload: ChatCompletionRequest,
    relay: ChatRelay = Depends(get_chat_relay),
) -> EventSourceResponse:
    """Stream the relay's events as `data: <json>` frames ending in `[DONE]`."""

    chat_request: ChatRequest | None = None
    invalid_reason: str | None = None
    if not payload.has_content():
        invalid_reason = "Message or image is required"
    else:
        try:
            chat_request = payload.to_chat_request()
        except ValueError as exc:
            invalid_reason = str(exc)

    async def event_publisher() -> AsyncGenerator[dict[str, str], None]:
        if chat_request is None:
            yield {"data": sse_data(ErrorEvent(invalid_reason or "Invalid request"))}
            yield {"data": sse_data(Done())}
            return
        async for event in relay.stream(chat_request):
            yield {"data": sse_data(event)}

    return EventSourceResponse(event_publisher(), sep="\n")


async def _health_payload(request: Request) -> dict[str, Any]:
    settings = request.app.state.settings
    return {
        "status": "ok",
        "message": "Chat AI Backend API is running",
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "model": settings.chat_model,
        "imagePrimaryConfigured": settings.image_primary_configured,
    }


@router.get("/health", tags=["health"])
async def healthcheck(request: Request) -> dict[str, Any]:
    return await _health_payload(request)


root_router = APIRouter(tags=["health"])


@root_router.get("/")
async def root_healthcheck(request: Request) -> dict[str, Any]:
    return await _health_payload(request)


__all__ = ["get_chat_relay", "provider_error_response", "root_router", "router"]
