"""Gemini image generation client with timeout, retry and backoff.

Expected failure modes never raise: `generate` and `generate_multi_source`
always return a GenerationResult. Errors are classified the same way as the
other outbound clients:

- 429 / 500 / 503, timeouts, connection errors → TransientError → retried
- any other HTTP error, malformed body → PermanentError → returned immediately
- no candidates / no image part → failed result, not retried
"""

import asyncio
import base64
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence

import httpx
import structlog

from floragen.core.config import Settings
from floragen.models.image_type import LARGEST_RESOLUTION
from floragen.services.exceptions import PermanentError, SourceImageError, TransientError

logger = structlog.get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 503})

SYSTEM_INSTRUCTION = (
    "You are a professional horticultural product photographer for the Dutch flower trade "
    "platform Floriday. All images must have consistent neutral-to-warm color temperature "
    "(5500K daylight equivalent), even professional studio lighting, and tack-sharp focus. "
    "Maintain photographic realism - no illustrations, no cartoonish elements, no watermarks. "
    "Every output must look like it was shot by the same photographer in the same studio session."
)

SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_ONLY_HIGH"},
]

DEFAULT_MIME_TYPE = "image/png"

MALFORMED_RESPONSE = "Gemini API returned a malformed response"


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget, backoff and timeouts for generation calls."""

    max_retries: int = 3
    base_delay: float = 5.0
    max_delay: float = 30.0
    timeout: float = 180.0
    timeout_4k: float = 300.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt + 1`` (attempt is 0-based)."""
        return min(self.base_delay * (2**attempt), self.max_delay)

    def timeout_for(self, image_size: str | None) -> float:
        return self.timeout_4k if image_size == LARGEST_RESOLUTION else self.timeout


@dataclass(frozen=True)
class SourceImage:
    """An inline image payload."""

    base64: str
    mime_type: str


@dataclass(frozen=True)
class GenerationResult:
    """Outcome of one generation call (after retries)."""

    success: bool
    image_base64: str | None = None
    mime_type: str | None = None
    error: str | None = None
    attempts: int = 1

    @classmethod
    def failed(cls, error: str, attempts: int = 1) -> "GenerationResult":
        return cls(success=False, error=error, attempts=attempts)


class GeminiClient:
    """Client for the Gemini generateContent endpoint with image output."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-3-pro-image-preview",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        retry_policy: RetryPolicy | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        source_fetch_timeout: float = 30.0,
        source_max_bytes: int = 50 * 1024 * 1024,
    ):
        """Initialize Gemini client.

        Args:
            api_key: Gemini API key (from GEMINI_API_KEY env var)
            model: Image-capable model name
            base_url: API base URL (overridable for tests and proxies)
            retry_policy: Retry budget, backoff and timeouts
            http_client: Shared AsyncClient; one is created (and owned) if omitted
            sleep: Coroutine used for backoff waits
            source_fetch_timeout: Total time allowed for fetching a source image
            source_max_bytes: Largest accepted source image
        """
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.retry_policy = retry_policy or RetryPolicy()
        self.source_fetch_timeout = source_fetch_timeout
        self.source_max_bytes = source_max_bytes
        self._sleep = sleep
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient()

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: httpx.AsyncClient | None = None
    ) -> "GeminiClient":
        return cls(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            base_url=settings.gemini_base_url,
            retry_policy=RetryPolicy(
                max_retries=settings.generation_max_retries,
                base_delay=settings.generation_retry_base_delay_seconds,
                max_delay=settings.generation_retry_max_delay_seconds,
                timeout=settings.generation_timeout_seconds,
                timeout_4k=settings.generation_timeout_4k_seconds,
            ),
            http_client=http_client,
            source_fetch_timeout=settings.source_fetch_timeout_seconds,
            source_max_bytes=settings.source_max_bytes,
        )

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def generate(
        self,
        prompt: str,
        source_image_base64: str,
        source_mime_type: str,
        aspect_ratio: str | None = None,
        image_size: str | None = None,
        temperature: float | None = None,
        seed: int | None = None,
    ) -> GenerationResult:
        """Generate one image from a single source image and a prompt.

        Args:
            prompt: Instruction text
            source_image_base64: Source image payload
            source_mime_type: MIME type of the source image
            aspect_ratio: Output aspect ratio (e.g. "1:1")
            image_size: Output resolution tier; "4096" extends the timeout
            temperature: Sampling temperature
            seed: Sampling seed for reproducibility

        Returns:
            GenerationResult (never raises for API, network or response failures)
        """
        parts = [
            {"inlineData": {"mimeType": source_mime_type, "data": source_image_base64}},
            {"text": prompt},
        ]
        body = self.build_request(parts, aspect_ratio, image_size, temperature, seed)
        return await self._post_with_retry(body, self.retry_policy.timeout_for(image_size))

    async def generate_multi_source(
        self,
        prompt: str,
        source_images: Sequence[SourceImage],
        aspect_ratio: str | None = None,
        temperature: float | None = None,
        seed: int | None = None,
    ) -> GenerationResult:
        """Generate one image from two or more source images (e.g. plant + accessory).

        Uses the standard timeout regardless of output size.
        """
        if len(source_images) < 2:
            return GenerationResult.failed("Multi-source generation needs at least 2 images")

        parts: list[dict[str, Any]] = [
            {"inlineData": {"mimeType": image.mime_type, "data": image.base64}}
            for image in source_images
        ]
        parts.append({"text": prompt})
        body = self.build_request(parts, aspect_ratio, None, temperature, seed)
        return await self._post_with_retry(body, self.retry_policy.timeout)

    @staticmethod
    def build_request(
        parts: list[dict[str, Any]],
        aspect_ratio: str | None = None,
        image_size: str | None = None,
        temperature: float | None = None,
        seed: int | None = None,
    ) -> dict[str, Any]:
        """Assemble a generateContent request body."""
        generation_config: dict[str, Any] = {"responseModalities": ["TEXT", "IMAGE"]}
        if temperature is not None:
            generation_config["temperature"] = temperature
        if seed is not None:
            generation_config["seed"] = seed

        image_config: dict[str, str] = {}
        if aspect_ratio:
            image_config["aspectRatio"] = aspect_ratio
        if image_size:
            image_config["imageSize"] = image_size
        if image_config:
            generation_config["imageConfig"] = image_config

        return {
            "contents": [{"parts": parts}],
            "systemInstruction": {"parts": [{"text": SYSTEM_INSTRUCTION}]},
            "generationConfig": generation_config,
            "safetySettings": SAFETY_SETTINGS,
        }

    async def _post_with_retry(self, body: dict[str, Any], timeout: float) -> GenerationResult:
        """POST with up to ``max_retries`` retries on transient failures."""
        max_retries = self.retry_policy.max_retries

        for attempt in range(max_retries + 1):
            try:
                data = await self._post_once(body, timeout)
            except TransientError as e:
                if attempt < max_retries:
                    delay = self.retry_policy.delay_for(attempt)
                    logger.warning(
                        "gemini.request.retry",
                        error_message=str(e),
                        retry_in_seconds=delay,
                        attempt_number=attempt + 1,
                        max_retries=max_retries,
                    )
                    await self._sleep(delay)
                    continue
                logger.error("gemini.request.retries_exhausted", error_message=str(e))
                return GenerationResult.failed(str(e), attempts=attempt + 1)
            except PermanentError as e:
                logger.error("gemini.request.failed", error_message=str(e))
                return GenerationResult.failed(str(e), attempts=attempt + 1)

            return self.parse_response(data, attempts=attempt + 1)

        return GenerationResult.failed("Max retries exceeded", attempts=max_retries + 1)

    async def _post_once(self, body: dict[str, Any], timeout: float) -> dict[str, Any]:
        """Single POST to the generation endpoint.

        Raises:
            TransientError: Timeout, connection error, 429/500/503
            PermanentError: Other HTTP errors or a non-JSON body
        """
        try:
            response = await self._http.post(
                self.endpoint,
                json=body,
                headers={"x-goog-api-key": self.api_key},
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            raise TransientError(f"Gemini API timed out after {timeout:g}s") from e
        except httpx.TransportError as e:
            raise TransientError(f"Network error: {e}") from e

        if response.status_code in RETRYABLE_STATUS_CODES:
            raise TransientError(f"Gemini API error {response.status_code}: {response.text}")
        if response.is_error:
            raise PermanentError(f"Gemini API error {response.status_code}: {response.text}")

        try:
            data = response.json()
        except ValueError as e:
            raise PermanentError(MALFORMED_RESPONSE) from e
        if not isinstance(data, dict):
            raise PermanentError(MALFORMED_RESPONSE)
        return data

    @staticmethod
    def parse_response(data: Any, attempts: int = 1) -> GenerationResult:
        """Extract the first inline image from a generateContent response.

        Bodies that do not have the documented shape are reported as malformed
        rather than raising.
        """
        if not isinstance(data, dict):
            return GenerationResult.failed(MALFORMED_RESPONSE, attempts)

        error = data.get("error")
        if error:
            if not isinstance(error, dict):
                return GenerationResult.failed(MALFORMED_RESPONSE, attempts)
            message = error.get("message", "unknown error")
            return GenerationResult.failed(f"Gemini API error: {message}", attempts)

        candidates = data.get("candidates") or []
        if not isinstance(candidates, list):
            return GenerationResult.failed(MALFORMED_RESPONSE, attempts)
        if not candidates:
            return GenerationResult.failed("Gemini API returned no candidates", attempts)

        candidate = candidates[0]
        if not isinstance(candidate, dict):
            return GenerationResult.failed(MALFORMED_RESPONSE, attempts)
        content = candidate.get("content") or {}
        if not isinstance(content, dict):
            return GenerationResult.failed(MALFORMED_RESPONSE, attempts)
        parts = content.get("parts") or []
        if not isinstance(parts, list):
            return GenerationResult.failed(MALFORMED_RESPONSE, attempts)

        for part in parts:
            if not isinstance(part, dict):
                return GenerationResult.failed(MALFORMED_RESPONSE, attempts)
            inline = part.get("inlineData") or part.get("inline_data")
            if isinstance(inline, dict) and inline.get("data"):
                return GenerationResult(
                    success=True,
                    image_base64=inline["data"],
                    mime_type=inline.get("mimeType") or inline.get("mime_type") or DEFAULT_MIME_TYPE,
                    attempts=attempts,
                )

        error_message = "Gemini API response did not contain an image"
        if candidate.get("finishReason") and candidate["finishReason"] != "STOP":
            error_message += f" (finish reason: {candidate['finishReason']})"
        return GenerationResult.failed(error_message, attempts)

    async def url_to_base64(self, url: str) -> SourceImage:
        """Fetch an image and return it as an inline base64 payload.

        The size limit is checked against Content-Length when present and
        enforced again while reading the body.

        Raises:
            SourceImageError: Unreachable URL, HTTP error, timeout or oversized image
        """
        max_mb = self.source_max_bytes // (1024 * 1024)
        too_large = f"Source image too large (max {max_mb}MB)"

        try:
            async with asyncio.timeout(self.source_fetch_timeout):
                async with self._http.stream("GET", url, follow_redirects=True) as response:
                    if response.is_error:
                        raise SourceImageError(
                            f"Failed to fetch image: HTTP {response.status_code}"
                        )

                    if _declared_length(response) > self.source_max_bytes:
                        raise SourceImageError(too_large)

                    payload = bytearray()
                    async for chunk in response.aiter_bytes():
                        payload.extend(chunk)
                        if len(payload) > self.source_max_bytes:
                            raise SourceImageError(too_large)

                    content_type = response.headers.get("content-type") or DEFAULT_MIME_TYPE
        except TimeoutError as e:
            raise SourceImageError(
                f"Timed out fetching source image after {self.source_fetch_timeout:g}s"
            ) from e
        except httpx.HTTPError as e:
            raise SourceImageError(f"Failed to fetch image: {e}") from e

        mime_type = content_type.split(";")[0].strip() or DEFAULT_MIME_TYPE
        return SourceImage(base64=base64.b64encode(bytes(payload)).decode("ascii"), mime_type=mime_type)


def _declared_length(response: httpx.Response) -> int:
    """Content-Length as an int; 0 when absent or unparseable."""
    try:
        return int(response.headers.get("content-length") or 0)
    except ValueError:
        return 0
