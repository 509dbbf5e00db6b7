from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any, AsyncGenerator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from chat_relay.chat.image_generation import ImageGenerationError
from chat_relay.chat.relay import ChatRelay
from chat_relay.chat.types import (
    ChatReply,
    ChatRequest,
    Done,
    ErrorEvent,
    ImageResult,
    ProviderResponse,
    StreamEvent,
    TextDelta,
    ToolInvocation,
)
from chat_relay.openrouter import OpenRouterError
from chat_relay.routers.chat import get_chat_relay, root_router, router


class DummyRelay:
    def __init__(
        self,
        *,
        reply: ChatReply | None = None,
        error: Exception | None = None,
        events: list[StreamEvent] | None = None,
    ) -> None:
        self.reply = reply or ChatReply(text="Halo!", model="google/gemini-2.0-flash-001")
        self.error = error
        self.events = events or [TextDelta("Halo"), Done()]
        self.requests: list[ChatRequest] = []

    async def complete(self, request: ChatRequest) -> ChatReply:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.reply

    async def stream(self, request: ChatRequest) -> AsyncGenerator[StreamEvent, None]:
        self.requests.append(request)
        for event in self.events:
            yield event


def make_client(relay: DummyRelay) -> TestClient:
    app = FastAPI()
    app.state.settings = SimpleNamespace(
        chat_model="google/gemini-2.0-flash-001", image_primary_configured=False
    )

    def _override_relay() -> DummyRelay:
        return relay

    app.dependency_overrides[get_chat_relay] = _override_relay
    app.include_router(root_router)
    app.include_router(router)
    return TestClient(app)


def parse_sse(body: str) -> list[str]:
    frames = []
    for block in body.replace("\r\n", "\n").split("\n\n"):
        for line in block.split("\n"):
            if line.startswith("data:"):
                frames.append(line[len("data:"):].strip())
    return frames


def test_chat_returns_reply_payload() -> None:
    relay = DummyRelay()
    client = make_client(relay)

    response = client.post(
        "/api/chat",
        json={
            "message": "hai",
            "history": [{"role": "user", "content": "sebelumnya"}],
            "modelId": "ignored-model",
            "conversationId": "c-1",
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["response"] == "Halo!"
    assert body["modelId"] == "google/gemini-2.0-flash-001"
    assert body["timestamp"].endswith("Z")
    assert "imageUrl" not in body
    assert relay.requests[0].message == "hai"
    assert relay.requests[0].history[0].content == "sebelumnya"


def test_chat_image_reply_includes_image_fields() -> None:
    relay = DummyRelay(
        reply=ChatReply(
            text='Here is your image of "cat"',
            model="m",
            image_url="data:image/jpeg;base64,AAAA",
            is_image_generation=True,
        )
    )
    client = make_client(relay)

    body = client.post("/api/chat", json={"message": "draw a cat"}).json()

    assert body["imageUrl"] == "data:image/jpeg;base64,AAAA"
    assert body["isImageGeneration"] is True


def test_chat_requires_message_or_image() -> None:
    client = make_client(DummyRelay())

    response = client.post("/api/chat", json={"message": "   "})

    assert response.status_code == 400
    assert response.json()["error"] == "Bad Request"


def test_chat_rejects_malformed_image() -> None:
    client = make_client(DummyRelay())

    response = client.post("/api/chat", json={"imageUri": "data:image/png;base64,@@@"})

    assert response.status_code == 400


def test_chat_accepts_image_only_message() -> None:
    relay = DummyRelay()
    client = make_client(relay)

    response = client.post("/api/chat", json={"imageUri": "data:image/png;base64,YWJj"})

    assert response.status_code == 200
    request = relay.requests[0]
    assert request.image is not None
    assert request.image.mime_type == "image/png"
    assert request.image.data == b"abc"


@pytest.mark.parametrize(
    ("error", "status_code", "label"),
    [
        (OpenRouterError(429, {"message": "Rate limit exceeded"}), 429, "Quota Exceeded"),
        (OpenRouterError(401, {"message": "No auth credentials found"}), 400, "Invalid API Key"),
        (OpenRouterError(500, "API key not valid. Please pass a valid key"), 400, "Invalid API Key"),
        (OpenRouterError(502, "upstream exploded"), 500, "Server Error"),
    ],
)
def test_chat_maps_provider_errors(error: OpenRouterError, status_code: int, label: str) -> None:
    client = make_client(DummyRelay(error=error))

    response = client.post("/api/chat", json={"message": "hai"})

    assert response.status_code == status_code
    body = response.json()
    assert body["success"] is False
    assert body["error"] == label


def test_chat_unexpected_error_is_server_error() -> None:
    client = make_client(DummyRelay(error=RuntimeError("kaboom")))

    response = client.post("/api/chat", json={"message": "hai"})

    assert response.status_code == 500
    assert response.json()["message"] == "kaboom"


def test_stream_emits_data_frames_and_done_sentinel() -> None:
    relay = DummyRelay(
        events=[
            TextDelta("Hel"),
            TextDelta("lo"),
            Done(),
        ]
    )
    client = make_client(relay)

    response = client.post("/api/chat/stream", json={"message": "hello"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    frames = parse_sse(response.text)
    assert frames[-1] == "[DONE]"
    assert [json.loads(frame) for frame in frames[:-1]] == [{"text": "Hel"}, {"text": "lo"}]


def test_stream_image_event_payload() -> None:
    relay = DummyRelay(
        events=[
            ImageResult(text='Here is your image of "kucing lucu"', image_url="data:image/png;base64,AAAA"),
            Done(),
        ]
    )
    client = make_client(relay)

    frames = parse_sse(client.post("/api/chat/stream", json={"message": "buatkan gambar kucing lucu"}).text)

    assert json.loads(frames[0]) == {
        "text": 'Here is your image of "kucing lucu"',
        "imageUrl": "data:image/png;base64,AAAA",
        "isImageGeneration": True,
    }
    assert frames[1:] == ["[DONE]"]


def test_stream_error_event_payload() -> None:
    relay = DummyRelay(events=[ErrorEvent("Gagal membuat gambar: boom"), Done()])
    client = make_client(relay)

    frames = parse_sse(client.post("/api/chat/stream", json={"message": "draw"}).text)

    assert json.loads(frames[0]) == {"error": "Gagal membuat gambar: boom"}
    assert frames[1:] == ["[DONE]"]


def test_stream_malformed_image_reports_error_without_calling_relay() -> None:
    relay = DummyRelay()
    client = make_client(relay)

    frames = parse_sse(
        client.post("/api/chat/stream", json={"message": "what is this", "imageUri": "!!!"}).text
    )

    assert "error" in json.loads(frames[0])
    assert frames[-1] == "[DONE]"
    assert relay.requests == []


def test_health_endpoints_report_model() -> None:
    client = make_client(DummyRelay())

    for path in ("/", "/api/health"):
        body = client.get(path).json()
        assert body["status"] == "ok"
        assert body["model"] == "google/gemini-2.0-flash-001"
        assert body["imagePrimaryConfigured"] is False


def test_stream_without_content_reports_error() -> None:
    relay = DummyRelay()
    client = make_client(relay)

    frames = parse_sse(client.post("/api/chat/stream", json={"message": ""}).text)

    assert json.loads(frames[0]) == {"error": "Message or image is required"}
    assert frames[1:] == ["[DONE]"]
    assert relay.requests == []


def test_error_bodies_follow_error_model() -> None:
    client = make_client(DummyRelay(error=OpenRouterError(429, {"message": "Rate limit exceeded"})))

    bad_request = client.post("/api/chat", json={}).json()
    quota = client.post("/api/chat", json={"message": "hai"}).json()

    assert bad_request == {
        "success": False,
        "error": "Bad Request",
        "message": "Message or image is required",
    }
    assert quota["details"] == "Rate limit exceeded"
    schema = client.get("/openapi.json").json()
    assert "ChatErrorResponse" in schema["components"]["schemas"]


class ToolCallingProvider:
    model = "google/gemini-2.0-flash-001"

    async def complete(self, request: ChatRequest, **kwargs: Any) -> ProviderResponse:
        return ProviderResponse(
            content="",
            tool_calls=(ToolInvocation(name="generate_image", args={"prompt": "robot"}),),
            model=self.model,
        )


class FailingImageGenerator:
    def __init__(self) -> None:
        self.attempts: list[int] = []

    async def generate(self, prompt: str, max_retries: int = 3) -> str:
        self.attempts.append(max_retries)
        raise ImageGenerationError("Pollinations Error: 500")


def test_chat_image_failure_returns_apology_without_model() -> None:
    images = FailingImageGenerator()
    relay = ChatRelay(ToolCallingProvider(), images)  # type: ignore[arg-type]
    client = make_client(relay)  # type: ignore[arg-type]

    response = client.post("/api/chat", json={"message": "buatkan gambar robot"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["response"] == "Maaf, saya gagal membuat gambar. Error: Pollinations Error: 500"
    assert "modelId" not in body
    assert "imageUrl" not in body
    assert images.attempts == [3]
