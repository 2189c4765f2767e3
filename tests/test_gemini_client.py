"""Tests for the Gemini image generation client.

Uses httpx.MockTransport in place of the real API and a recording sleep so
backoff delays are observed without waiting.
"""

import asyncio
import base64
import json

import httpx
import pytest

from floragen.services.exceptions import SourceImageError
from floragen.services.image_generation.gemini_client import (
    GeminiClient,
    RetryPolicy,
    SourceImage,
)

IMAGE_RESPONSE = {
    "candidates": [
        {
            "content": {
                "parts": [
                    {"text": "Here is your image."},
                    {"inlineData": {"mimeType": "image/png", "data": "aW1hZ2U="}},
                ]
            },
            "finishReason": "STOP",
        }
    ]
}


def make_client(handler, **kwargs):
    delays: list[float] = []

    async def record_sleep(seconds: float) -> None:
        delays.append(seconds)

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = GeminiClient(api_key="test-key", http_client=http_client, sleep=record_sleep, **kwargs)
    return client, delays


async def generate(client, **kwargs):
    return await client.generate(
        prompt="Remove the background",
        source_image_base64="c291cmNl",
        source_mime_type="image/jpeg",
        **kwargs,
    )


@pytest.mark.asyncio
async def test_successful_generation_returns_inline_image():
    client, delays = make_client(lambda request: httpx.Response(200, json=IMAGE_RESPONSE))

    result = await generate(client)

    assert result.success is True
    assert result.image_base64 == "aW1hZ2U="
    assert result.mime_type == "image/png"
    assert result.error is None
    assert result.attempts == 1
    assert delays == []


@pytest.mark.asyncio
async def test_request_body_and_headers():
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json=IMAGE_RESPONSE)

    client, _ = make_client(handler)

    await generate(client, aspect_ratio="3:4", image_size="2048", temperature=0.3, seed=42)

    (request,) = captured
    assert request.url.path.endswith("/models/gemini-3-pro-image-preview:generateContent")
    assert request.headers["x-goog-api-key"] == "test-key"

    body = json.loads(request.content)
    image_part, text_part = body["contents"][0]["parts"]
    assert image_part == {"inlineData": {"mimeType": "image/jpeg", "data": "c291cmNl"}}
    assert text_part == {"text": "Remove the background"}
    assert body["systemInstruction"]["parts"][0]["text"]

    config = body["generationConfig"]
    assert config["responseModalities"] == ["TEXT", "IMAGE"]
    assert config["temperature"] == 0.3
    assert config["seed"] == 42
    assert config["imageConfig"] == {"aspectRatio": "3:4", "imageSize": "2048"}

    assert len(body["safetySettings"]) == 4
    assert {s["threshold"] for s in body["safetySettings"]} == {"BLOCK_ONLY_HIGH"}


@pytest.mark.asyncio
async def test_optional_generation_settings_are_omitted():
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json=IMAGE_RESPONSE)

    client, _ = make_client(handler)

    await generate(client)

    config = json.loads(captured[0].content)["generationConfig"]
    assert config == {"responseModalities": ["TEXT", "IMAGE"]}


@pytest.mark.asyncio
async def test_503_on_every_attempt_is_retried_three_times():
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        return httpx.Response(503, text="overloaded")

    client, delays = make_client(handler)

    result = await generate(client)

    assert attempts == 4
    assert delays == [5.0, 10.0, 20.0]
    assert result.success is False
    assert result.attempts == 4
    assert "503" in result.error
    assert "overloaded" in result.error


@pytest.mark.asyncio
async def test_rate_limit_then_success():
    responses = iter(
        [httpx.Response(429, text="quota"), httpx.Response(200, json=IMAGE_RESPONSE)]
    )
    client, delays = make_client(lambda request: next(responses))

    result = await generate(client)

    assert result.success is True
    assert result.attempts == 2
    assert delays == [5.0]


@pytest.mark.asyncio
async def test_timeouts_are_retried():
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        raise httpx.ReadTimeout("timed out", request=request)

    client, delays = make_client(handler)

    result = await generate(client)

    assert attempts == 4
    assert delays == [5.0, 10.0, 20.0]
    assert result.success is False
    assert "timed out after 180s" in result.error


@pytest.mark.asyncio
async def test_largest_resolution_gets_extended_timeout():
    timeouts: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        timeouts.append(request.extensions["timeout"])
        return httpx.Response(200, json=IMAGE_RESPONSE)

    client, _ = make_client(handler)

    await generate(client, image_size="4096")
    await generate(client, image_size="1024")

    assert timeouts[0]["read"] == 300.0
    assert timeouts[1]["read"] == 180.0


@pytest.mark.asyncio
async def test_non_retryable_error_returns_immediately():
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        return httpx.Response(400, text='{"error": "invalid image"}')

    client, delays = make_client(handler)

    result = await generate(client)

    assert attempts == 1
    assert delays == []
    assert result.success is False
    assert result.error == 'Gemini API error 400: {"error": "invalid image"}'


@pytest.mark.asyncio
async def test_missing_candidates_is_a_failure_not_an_exception():
    client, delays = make_client(lambda request: httpx.Response(200, json={"candidates": []}))

    result = await generate(client)

    assert result.success is False
    assert result.error == "Gemini API returned no candidates"
    assert delays == []


@pytest.mark.asyncio
async def test_response_without_image_part_is_a_failure():
    body = {
        "candidates": [
            {"content": {"parts": [{"text": "I cannot do that."}]}, "finishReason": "SAFETY"}
        ]
    }
    client, _ = make_client(lambda request: httpx.Response(200, json=body))

    result = await generate(client)

    assert result.success is False
    assert "did not contain an image" in result.error
    assert "SAFETY" in result.error


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        "<html>",
        json.dumps([{"candidates": []}]),
        json.dumps({"error": "boom"}),
        json.dumps({"candidates": [None]}),
        json.dumps({"candidates": [{"content": {"parts": ["text"]}}]}),
        json.dumps({"candidates": [{"content": ["parts"]}]}),
    ],
    ids=["html", "list-body", "string-error", "null-candidate", "string-part", "list-content"],
)
async def test_malformed_json_is_a_permanent_failure(body):
    client, delays = make_client(lambda request: httpx.Response(200, text=body))

    result = await generate(client)

    assert result.success is False
    assert "malformed" in result.error
    assert result.attempts == 1
    assert delays == []


@pytest.mark.asyncio
async def test_error_object_in_body_is_a_failure():
    client, _ = make_client(
        lambda request: httpx.Response(200, json={"error": {"message": "model not found"}})
    )

    result = await generate(client)

    assert result.success is False
    assert "model not found" in result.error


def test_backoff_doubles_and_caps():
    policy = RetryPolicy()
    assert [policy.delay_for(attempt) for attempt in range(5)] == [5.0, 10.0, 20.0, 30.0, 30.0]


@pytest.mark.asyncio
async def test_multi_source_sends_every_image():
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json=IMAGE_RESPONSE)

    client, _ = make_client(handler)

    result = await client.generate_multi_source(
        prompt="Put the plant in the pot",
        source_images=[SourceImage("cGxhbnQ=", "image/jpeg"), SourceImage("cG90", "image/png")],
        aspect_ratio="1:1",
        temperature=0.6,
    )

    assert result.success is True
    parts = json.loads(captured[0].content)["contents"][0]["parts"]
    assert [p.get("inlineData", {}).get("data") for p in parts[:2]] == ["cGxhbnQ=", "cG90"]
    assert parts[2] == {"text": "Put the plant in the pot"}
    assert captured[0].extensions["timeout"]["read"] == 180.0


@pytest.mark.asyncio
async def test_multi_source_requires_two_images():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json=IMAGE_RESPONSE)

    client, _ = make_client(handler)

    result = await client.generate_multi_source(
        prompt="x", source_images=[SourceImage("cGxhbnQ=", "image/jpeg")]
    )

    assert result.success is False
    assert calls == 0


# Source image fetch


@pytest.mark.asyncio
async def test_url_to_base64_returns_payload_and_mime_type():
    client, _ = make_client(
        lambda request: httpx.Response(
            200, content=b"jpeg-bytes", headers={"content-type": "image/jpeg; charset=binary"}
        )
    )

    source = await client.url_to_base64("https://cdn.test/plant.jpg")

    assert source.base64 == base64.b64encode(b"jpeg-bytes").decode()
    assert source.mime_type == "image/jpeg"


@pytest.mark.asyncio
async def test_url_to_base64_rejects_declared_oversize():
    client, _ = make_client(
        lambda request: httpx.Response(200, content=b"x" * 64), source_max_bytes=32
    )

    with pytest.raises(SourceImageError, match="too large"):
        await client.url_to_base64("https://cdn.test/huge.jpg")


@pytest.mark.asyncio
async def test_url_to_base64_rejects_oversized_payload_without_length_header():
    async def chunks():
        yield b"x" * 20
        yield b"x" * 20

    client, _ = make_client(
        lambda request: httpx.Response(200, content=chunks()), source_max_bytes=32
    )

    with pytest.raises(SourceImageError, match="too large"):
        await client.url_to_base64("https://cdn.test/streamed.jpg")


@pytest.mark.asyncio
async def test_url_to_base64_ignores_unparseable_length_header():
    client, _ = make_client(
        lambda request: httpx.Response(
            200,
            content=b"jpeg-bytes",
            headers={"content-length": "abc", "content-type": "image/jpeg"},
        )
    )

    source = await client.url_to_base64("https://cdn.test/plant.jpg")

    assert source.base64 == base64.b64encode(b"jpeg-bytes").decode()


@pytest.mark.asyncio
async def test_url_to_base64_unparseable_length_still_enforces_limit():
    client, _ = make_client(
        lambda request: httpx.Response(200, content=b"x" * 64, headers={"content-length": "lots"}),
        source_max_bytes=32,
    )

    with pytest.raises(SourceImageError, match="too large"):
        await client.url_to_base64("https://cdn.test/huge.jpg")


@pytest.mark.asyncio
async def test_url_to_base64_http_error():
    client, _ = make_client(lambda request: httpx.Response(404))

    with pytest.raises(SourceImageError, match="HTTP 404"):
        await client.url_to_base64("https://cdn.test/missing.jpg")


@pytest.mark.asyncio
async def test_url_to_base64_unreachable_host():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("name resolution failed", request=request)

    client, _ = make_client(handler)

    with pytest.raises(SourceImageError, match="Failed to fetch image"):
        await client.url_to_base64("https://nowhere.test/plant.jpg")


@pytest.mark.asyncio
async def test_url_to_base64_times_out():
    async def slow(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(1)
        return httpx.Response(200, content=b"late")

    client, _ = make_client(slow, source_fetch_timeout=0.05)

    with pytest.raises(SourceImageError, match="Timed out"):
        await client.url_to_base64("https://cdn.test/slow.jpg")
