"""Image generation API endpoints.

- POST /api/generate - Run a batch and stream progress as Server-Sent Events
- POST /api/generate/regenerate - Generate a single image type again
- POST /api/generate/combination - Compose a plant and an accessory into one scene
- GET /api/generate/prompts/{image_type} - Preview a prompt template

Admission failures are returned as regular HTTP errors before any stream is
opened: 400 (invalid batch), 409 (batch already running), 429 (quota).
"""

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from floragen.api.dependencies import get_generation_service, get_organization_id
from floragen.models.image_type import AspectRatio, ImageType, Resolution
from floragen.models.product import Accessory, Product
from floragen.services.exceptions import (
    BatchInProgressError,
    InvalidBatchError,
    UsageLimitExceededError,
)
from floragen.services.generation.events import EventHandler, stream_events
from floragen.services.generation.pipeline import PipelineRequest
from floragen.services.generation.service import GenerationService, SingleImageResult
from floragen.services.image_generation.prompts import (
    get_prompt_config,
    get_prompt_template,
    requires_white_background,
)

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/api/generate", tags=["generate"])


# Request/Response Models


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _check_http_url(value: str) -> str:
    if not value.startswith(("http://", "https://")):
        raise ValueError("Must be an http(s) URL")
    return value


class GenerationSettings(_CamelModel):
    aspect_ratio: AspectRatio = "1:1"
    resolution: Resolution = "1024"


class GenerateRequest(_CamelModel):
    """Batch generation request."""

    product: Product
    source_image_url: str = Field(..., description="Publicly reachable source photo")
    source_image_id: str | None = Field(default=None, description="Catalog id of the source photo")
    image_types: list[ImageType] = Field(..., min_length=1)
    settings: GenerationSettings = Field(default_factory=GenerationSettings)

    @field_validator("source_image_url")
    @classmethod
    def validate_source_image_url(cls, v: str) -> str:
        return _check_http_url(v)


class RegenerateRequest(_CamelModel):
    product: Product
    source_image_url: str
    source_image_id: str | None = None
    image_type: ImageType
    aspect_ratio: AspectRatio | None = None
    resolution: Resolution | None = None

    @field_validator("source_image_url")
    @classmethod
    def validate_source_image_url(cls, v: str) -> str:
        return _check_http_url(v)


class RegenerateResponse(_CamelModel):
    image_url: str
    image_type: str
    generated_image_id: UUID | None = None


class CombinationRequest(_CamelModel):
    plant: Product
    accessory: Accessory
    plant_image_url: str
    accessory_image_url: str
    scene_prompt: str = Field(..., min_length=1, max_length=2000)
    aspect_ratio: AspectRatio | None = None

    @field_validator("plant_image_url", "accessory_image_url")
    @classmethod
    def validate_image_urls(cls, v: str) -> str:
        return _check_http_url(v)


class CombinationResponse(_CamelModel):
    success: bool
    image_id: UUID | None = None
    image_url: str
    duration_ms: int


class PromptPreviewResponse(_CamelModel):
    image_type: str
    template: str
    temperature: float
    default_aspect_ratio: str
    requires_white_background: bool


def _admission_http_error(e: Exception) -> HTTPException:
    if isinstance(e, BatchInProgressError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": str(e), "code": "BATCH_IN_PROGRESS"},
        )
    if isinstance(e, UsageLimitExceededError):
        return HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": str(e),
                "code": "USAGE_LIMIT_REACHED",
                "used": e.used,
                "limit": e.limit,
            },
        )
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"error": str(e), "code": "INVALID_INPUT"},
    )


def _generation_failed(result: SingleImageResult) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": result.error or "Generation failed", "code": "GENERATION_FAILED"},
    )


# API Endpoints


@router.post("", response_class=StreamingResponse)
async def generate_batch(
    body: GenerateRequest,
    organization_id: str = Depends(get_organization_id),
    service: GenerationService = Depends(get_generation_service),
) -> StreamingResponse:
    """Run a generation batch and stream its progress.

    Event stream (``text/event-stream``), one frame per event:
        event: batch-start     data: {"type": "batch-start", "totalJobs": 3}
        event: job-start       data: {"type": "job-start", "jobId": ..., "imageType": ...}
        event: job-complete    data: {..., "imageUrl": ...}
        event: job-error       data: {..., "error": ...}
        event: batch-complete  data: {"type": "batch-complete", "successCount": 2, "failedCount": 1}

    Raises:
        HTTPException 400: Invalid batch (too many types)
        HTTPException 409: A batch is already running for the organization
        HTTPException 429: Monthly photo limit reached
    """
    try:
        admission = await service.admit_batch(
            organization_id, [image_type.value for image_type in body.image_types]
        )
    except (InvalidBatchError, BatchInProgressError, UsageLimitExceededError) as e:
        logger.info(
            "generate.batch.rejected",
            organization_id=organization_id,
            reason=type(e).__name__,
        )
        raise _admission_http_error(e)

    request = PipelineRequest(
        organization_id=organization_id,
        product=body.product,
        source_image_url=body.source_image_url,
        image_types=admission.image_types,
        aspect_ratio=body.settings.aspect_ratio,
        image_size=body.settings.resolution,
        source_image_id=body.source_image_id,
    )

    async def run(on_event: EventHandler) -> None:
        await service.run_batch(request, admission.reservation, on_event)

    return StreamingResponse(
        stream_events(run),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.post("/regenerate", response_model=RegenerateResponse)
async def regenerate_image(
    body: RegenerateRequest,
    organization_id: str = Depends(get_organization_id),
    service: GenerationService = Depends(get_generation_service),
) -> RegenerateResponse:
    """Generate one image type again for a product.

    Raises:
        HTTPException 429: Monthly photo limit reached
        HTTPException 500: Generation failed (the failure is recorded)
    """
    try:
        result = await service.regenerate(
            organization_id=organization_id,
            product=body.product,
            source_image_url=body.source_image_url,
            image_type=body.image_type.value,
            aspect_ratio=body.aspect_ratio,
            resolution=body.resolution,
            source_image_id=body.source_image_id,
        )
    except (InvalidBatchError, UsageLimitExceededError) as e:
        raise _admission_http_error(e)

    if not result.success or result.image_url is None:
        raise _generation_failed(result)

    return RegenerateResponse(
        image_url=result.image_url,
        image_type=result.image_type,
        generated_image_id=result.generated_image_id,
    )


@router.post("/combination", response_model=CombinationResponse)
async def generate_combination(
    body: CombinationRequest,
    organization_id: str = Depends(get_organization_id),
    service: GenerationService = Depends(get_generation_service),
) -> CombinationResponse:
    """Compose a plant and an accessory into a lifestyle scene."""
    try:
        result = await service.generate_combination(
            organization_id=organization_id,
            plant=body.plant,
            accessory=body.accessory,
            plant_image_url=body.plant_image_url,
            accessory_image_url=body.accessory_image_url,
            scene_prompt=body.scene_prompt,
            aspect_ratio=body.aspect_ratio,
        )
    except UsageLimitExceededError as e:
        raise _admission_http_error(e)

    if not result.success or result.image_url is None:
        raise _generation_failed(result)

    return CombinationResponse(
        success=True,
        image_id=result.generated_image_id,
        image_url=result.image_url,
        duration_ms=result.duration_ms,
    )


@router.get("/prompts/{image_type}", response_model=PromptPreviewResponse)
async def preview_prompt(image_type: ImageType) -> PromptPreviewResponse:
    """Render a prompt template against a placeholder product."""
    config = get_prompt_config(image_type.value)
    return PromptPreviewResponse(
        image_type=image_type.value,
        template=get_prompt_template(image_type.value),
        temperature=config.temperature,
        default_aspect_ratio=config.default_aspect_ratio,
        requires_white_background=requires_white_background(image_type.value),
    )
