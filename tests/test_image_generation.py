from __future__ import annotations

import base64
import json

import httpx
import pytest

from chat_relay.chat.image_generation import (
    ImageGenerationError,
    ImageGenerator,
    build_fallback_url,
    to_data_uri,
)

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image"
BASE_URL = "https://image.pollinations.ai/prompt"


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_generator(handler, *, token: str | None = None) -> tuple[ImageGenerator, RecordingSleep]:
    sleep = RecordingSleep()
    generator = ImageGenerator(
        huggingface_token=token,
        huggingface_url="https://hf.example.com/models/flux",
        fallback_base_url=BASE_URL,
        retry_delay_seconds=2.0,
        transport=httpx.MockTransport(handler),
        sleep=sleep,
    )
    return generator, sleep


def test_fallback_url_truncates_and_encodes_prompt() -> None:
    url = build_fallback_url(BASE_URL, "a" * 1000)

    assert url == (
        f"{BASE_URL}/{'a' * 800}?width=512&height=512&nologo=true&model=turbo"
    )


def test_fallback_url_percent_encodes_reserved_characters() -> None:
    url = build_fallback_url(BASE_URL + "/", "kucing lucu/?&")

    assert url.startswith(f"{BASE_URL}/kucing%20lucu%2F%3F%26?")


def test_to_data_uri_strips_content_type_parameters() -> None:
    uri = to_data_uri(PNG_BYTES, "image/png; charset=binary")

    assert uri == "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()
    assert to_data_uri(b"x", None).startswith("data:image/jpeg;base64,")


@pytest.mark.asyncio
async def test_fallback_success_returns_data_uri() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, content=PNG_BYTES, headers={"content-type": "image/png"})

    generator, sleep = make_generator(handler)

    result = await generator.generate("kucing lucu")

    assert result == "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()
    assert len(requests) == 1
    assert requests[0].method == "GET"
    assert requests[0].url.params["model"] == "turbo"
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_fallback_retries_with_fixed_delay_then_fails() -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        return httpx.Response(503)

    generator, sleep = make_generator(handler)

    with pytest.raises(ImageGenerationError, match="Pollinations Error: 503"):
        await generator.generate("anything", max_retries=3)

    assert attempts == 4
    assert sleep.delays == [2.0, 2.0, 2.0]


@pytest.mark.asyncio
async def test_fallback_recovers_after_transport_error() -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, content=b"jpeg-bytes")

    generator, sleep = make_generator(handler)

    result = await generator.generate("sunset", max_retries=1)

    assert result.startswith("data:image/jpeg;base64,")
    assert attempts == 2
    assert sleep.delays == [2.0]


@pytest.mark.asyncio
async def test_zero_retries_makes_single_attempt() -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        return httpx.Response(500)

    generator, sleep = make_generator(handler)

    with pytest.raises(ImageGenerationError):
        await generator.generate("x", max_retries=0)

    assert attempts == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_primary_tier_used_when_token_configured() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=PNG_BYTES, headers={"content-type": "image/png"})

    generator, _ = make_generator(handler, token="hf_token")

    result = await generator.generate("robot")

    assert generator.primary_configured
    assert result.startswith("data:image/png;base64,")
    assert len(seen) == 1
    assert seen[0].method == "POST"
    assert seen[0].headers["Authorization"] == "Bearer hf_token"
    assert json.loads(seen[0].content) == {"inputs": "robot"}


@pytest.mark.asyncio
async def test_primary_failure_falls_through_to_fallback() -> None:
    methods: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        methods.append(request.method)
        if request.method == "POST":
            return httpx.Response(503, text="model loading")
        return httpx.Response(200, content=b"img", headers={"content-type": "image/jpeg"})

    generator, sleep = make_generator(handler, token="hf_token")

    result = await generator.generate("robot")

    assert methods == ["POST", "GET"]
    assert result == "data:image/jpeg;base64," + base64.b64encode(b"img").decode()
    assert sleep.delays == []


def test_blank_token_counts_as_unconfigured() -> None:
    generator = ImageGenerator(huggingface_token="   ")
    assert not generator.primary_configured


@pytest.mark.asyncio
@pytest.mark.parametrize("failures", [0, 1, 3])
async def test_fallback_succeeds_within_retry_budget(failures: int) -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        if attempts <= failures:
            return httpx.Response(502)
        return httpx.Response(200, content=PNG_BYTES, headers={"content-type": "image/png"})

    generator, sleep = make_generator(handler)

    result = await generator.generate("a cute cat", max_retries=3)

    assert result == "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()
    assert attempts == failures + 1
    assert len(sleep.delays) == failures
