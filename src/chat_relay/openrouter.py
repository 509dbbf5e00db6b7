"""OpenRouter chat-completions transport."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Callable, Iterable, Optional

import httpx
from fastapi import status

from .config import Settings

logger = logging.getLogger(__name__)

DONE_MARKER = "[DONE]"


class OpenRouterError(Exception):
    """Wrap transport or API failures when communicating with OpenRouter."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail

    @property
    def message(self) -> str:
        """Human readable upstream message, unwrapping `{"message": ...}` details."""

        detail = self.detail
        if isinstance(detail, dict):
            candidate = detail.get("message")
            if isinstance(candidate, str) and candidate:
                return candidate
            return json.dumps(detail, ensure_ascii=False)
        return str(detail)


@dataclass(frozen=True)
class ServerSentEvent:
    """One `data:` block of the upstream event stream."""

    data: str
    event: str = "message"
    event_id: Optional[str] = None

    @property
    def done(self) -> bool:
        return self.data.strip() == DONE_MARKER


def parse_sse_block(lines: Iterable[str]) -> ServerSentEvent | None:
    """Fold the field lines of one SSE block; comment-only blocks give None."""

    fields: dict[str, str] = {}
    data_lines: list[str] = []
    for line in lines:
        if not line or line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "data":
            data_lines.append(value)
        elif name in {"event", "id"}:
            fields[name] = value

    if not data_lines and not fields:
        return None
    return ServerSentEvent(
        data="\n".join(data_lines),
        event=fields.get("event") or "message",
        event_id=fields.get("id") or None,
    )


def error_detail(raw: bytes) -> Any:
    """Pull the most specific error payload out of an upstream error body."""

    if not raw:
        return "OpenRouter returned an empty error response."
    text = raw.decode("utf-8", errors="ignore")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return text
    if isinstance(payload, dict):
        return payload.get("error") or payload
    return payload


class _ClientPool:
    """Process-wide `httpx.AsyncClient` instances keyed by endpoint and timeout."""

    def __init__(self) -> None:
        self._clients: dict[tuple[str, float], httpx.AsyncClient] = {}
        self._lock = asyncio.Lock()

    async def get(
        self, key: tuple[str, float], factory: Callable[[], httpx.AsyncClient]
    ) -> httpx.AsyncClient:
        client = self._clients.get(key)
        if client is not None:
            return client
        async with self._lock:
            client = self._clients.get(key)
            if client is None:
                client = factory()
                self._clients[key] = client
            return client

    async def close_all(self) -> None:
        async with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            try:
                await client.aclose()
            except httpx.HTTPError as exc:  # pragma: no cover - best effort cleanup
                logger.debug("Failed to close pooled HTTP client: %s", exc)


class OpenRouterClient:
    """Issue chat completions against OpenRouter, one-shot or streamed."""

    _pool = _ClientPool()

    def __init__(self, settings: Settings):
        self._settings = settings

    @property
    def _base_url(self) -> str:
        return str(self._settings.openrouter_base_url).rstrip("/")

    @property
    def completions_url(self) -> str:
        return f"{self._base_url}/chat/completions"

    def _new_http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self._settings.request_timeout, connect=10.0),
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
        )

    async def _get_http_client(self) -> httpx.AsyncClient:
        key = (self._base_url, float(self._settings.request_timeout))
        return await self._pool.get(key, self._new_http_client)

    def _headers(self, accept: str) -> dict[str, str]:
        api_key = self._settings.openrouter_api_key.get_secret_value()
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": accept,
        }
        # OpenRouter attributes traffic to the calling app via these headers
        if self._settings.openrouter_app_url:
            headers["HTTP-Referer"] = headers["Referer"] = str(
                self._settings.openrouter_app_url
            )
        if self._settings.openrouter_app_name:
            headers["X-Title"] = self._settings.openrouter_app_name
        return headers

    @staticmethod
    def _check_status(status_code: int, raw: bytes) -> None:
        if status_code >= 400:
            raise OpenRouterError(status_code, error_detail(raw))

    async def complete_raw(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST a non-streaming completion and return the decoded JSON body."""

        client = await self._get_http_client()
        try:
            response = await client.post(
                self.completions_url,
                headers=self._headers("application/json"),
                json={**payload, "stream": False},
            )
        except httpx.HTTPError as exc:
            raise OpenRouterError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        self._check_status(response.status_code, response.content)
        try:
            return response.json()
        except ValueError as exc:
            raise OpenRouterError(
                status.HTTP_502_BAD_GATEWAY, f"Invalid JSON from OpenRouter: {exc}"
            ) from exc

    async def stream_chat_raw(
        self, payload: dict[str, Any]
    ) -> AsyncGenerator[ServerSentEvent, None]:
        """Stream a completion, yielding SSE blocks in arrival order."""

        client = await self._get_http_client()
        request = client.build_request(
            "POST",
            self.completions_url,
            headers=self._headers("text/event-stream"),
            json={**payload, "stream": True},
        )
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise OpenRouterError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        try:
            if response.status_code >= 400:
                self._check_status(response.status_code, await response.aread())

            block: list[str] = []
            async for line in response.aiter_lines():
                if line:
                    block.append(line)
                    continue
                event = parse_sse_block(block)
                block = []
                if event is not None:
                    yield event
            event = parse_sse_block(block)
            if event is not None:
                yield event
        except httpx.HTTPError as exc:
            raise OpenRouterError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc
        finally:
            await response.aclose()

    async def aclose(self) -> None:
        await self._pool.close_all()


__all__ = [
    "DONE_MARKER",
    "OpenRouterClient",
    "OpenRouterError",
    "ServerSentEvent",
    "error_detail",
    "parse_sse_block",
]
