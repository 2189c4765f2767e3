"""Image generation services (prompt building and the Gemini client)."""

from floragen.services.image_generation.gemini_client import (
    GeminiClient,
    GenerationResult,
    RetryPolicy,
    SourceImage,
)

__all__ = ["GeminiClient", "GenerationResult", "RetryPolicy", "SourceImage"]
