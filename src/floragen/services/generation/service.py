"""Generation service - admission checks and reservation bookkeeping around the pipeline.

Admission order for a batch: validate the request, reject if the organization
already has a batch processing (ledger untouched), then reserve quota. After
the run, the part of the reservation that produced no image is released.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Sequence
from uuid import UUID

import structlog

from floragen.core.config import Settings
from floragen.models.generated_image import GeneratedImage, GeneratedImageStatus
from floragen.models.image_type import ImageType, to_db_image_type
from floragen.models.pipeline_job import PipelineJob, PipelineJobStatus
from floragen.models.product import Accessory, Product
from floragen.services.concurrency_guard import ConcurrencyGuard
from floragen.services.exceptions import (
    BatchInProgressError,
    InvalidBatchError,
    UsageLimitExceededError,
)
from floragen.services.generation.events import BatchCompleteEvent, EventHandler
from floragen.services.generation.pipeline import PipelineOrchestrator, PipelineRequest
from floragen.services.generation.store import GenerationStore
from floragen.services.image_generation.gemini_client import (
    DEFAULT_MIME_TYPE,
    GeminiClient,
    GenerationResult,
)
from floragen.services.image_generation.prompts import (
    build_combination_prompt,
    build_prompt,
    get_prompt_config,
    get_seed,
)
from floragen.services.storage.object_storage import (
    ObjectStorage,
    extension_for,
    generate_storage_path,
)
from floragen.services.usage_ledger import UsageLedger, UsageReservation

logger = structlog.get_logger(__name__)

COMBINATION_TEMPERATURE = 0.6
COMBINATION_IMAGE_TYPE = ImageType.LIFESTYLE.value

_KNOWN_IMAGE_TYPES = frozenset(image_type.value for image_type in ImageType)


@dataclass(frozen=True)
class BatchAdmission:
    """An admitted batch: the image types to run and the quota held for them."""

    image_types: tuple[str, ...]
    reservation: UsageReservation


@dataclass(frozen=True)
class SingleImageResult:
    """Outcome of a regeneration or combination request."""

    success: bool
    image_type: str
    image_url: str | None = None
    generated_image_id: UUID | None = None
    duration_ms: int = 0
    error: str | None = None


class GenerationService:
    """Entry point used by the HTTP layer."""

    def __init__(
        self,
        client: GeminiClient,
        storage: ObjectStorage,
        store: GenerationStore,
        ledger: UsageLedger,
        guard: ConcurrencyGuard,
        max_batch_size: int = 8,
        deduplicate_image_types: bool = False,
    ):
        self.client = client
        self.storage = storage
        self.store = store
        self.ledger = ledger
        self.guard = guard
        self.max_batch_size = max_batch_size
        self.deduplicate_image_types = deduplicate_image_types
        self.orchestrator = PipelineOrchestrator(client, storage, store, ledger)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: GeminiClient,
        storage: ObjectStorage,
        store: GenerationStore,
        ledger: UsageLedger,
    ) -> "GenerationService":
        return cls(
            client=client,
            storage=storage,
            store=store,
            ledger=ledger,
            guard=ConcurrencyGuard(store),
            max_batch_size=settings.max_batch_size,
            deduplicate_image_types=settings.deduplicate_image_types,
        )

    def validate_image_types(self, image_types: Sequence[str]) -> tuple[str, ...]:
        """Normalize and check a requested type list.

        Raises:
            InvalidBatchError: Empty list, unknown type, or more than max_batch_size types
        """
        types = [str(image_type) for image_type in image_types]
        if self.deduplicate_image_types:
            types = list(dict.fromkeys(types))

        if not types:
            raise InvalidBatchError("At least one image type is required")

        unknown = [image_type for image_type in types if image_type not in _KNOWN_IMAGE_TYPES]
        if unknown:
            raise InvalidBatchError(f"Unknown image type(s): {', '.join(unknown)}")

        if len(types) > self.max_batch_size:
            raise InvalidBatchError(
                f"Too many image types ({len(types)}), maximum is {self.max_batch_size}"
            )
        return tuple(types)

    async def admit_batch(
        self, organization_id: str, image_types: Sequence[str]
    ) -> BatchAdmission:
        """Run the pre-generation checks for a batch.

        Raises:
            InvalidBatchError: Request fails validation
            BatchInProgressError: Another batch is processing (quota not touched)
            UsageLimitExceededError: Quota cannot cover the batch
        """
        types = self.validate_image_types(image_types)

        if await self.guard.has_active_batch(organization_id):
            logger.info("generation.batch.rejected_in_progress", organization_id=organization_id)
            raise BatchInProgressError(organization_id)

        reservation = await self.ledger.reserve(organization_id, len(types))
        if not reservation.allowed:
            raise UsageLimitExceededError(reservation.used, reservation.limit, len(types))

        return BatchAdmission(image_types=types, reservation=reservation)

    async def run_batch(
        self,
        request: PipelineRequest,
        reservation: UsageReservation,
        on_event: EventHandler,
    ) -> list[PipelineJob]:
        """Run an admitted batch and reconcile its reservation.

        The caller always gets a batch-complete event, even if the orchestrator
        itself blows up.
        """
        try:
            jobs = await self.orchestrator.run(request, on_event)
        except Exception as e:
            logger.error(
                "generation.batch.crashed",
                organization_id=request.organization_id,
                product_id=request.product.id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            jobs = [
                PipelineJob.pending(index, image_type).fail(str(e) or "Unknown pipeline error")
                for index, image_type in enumerate(request.image_types)
            ]
            on_event(BatchCompleteEvent(success_count=0, failed_count=len(jobs)))

        successes = sum(1 for job in jobs if job.status == PipelineJobStatus.COMPLETED)
        if reservation.granted:
            await self.ledger.release(request.organization_id, reservation.requested - successes)
        return jobs

    async def regenerate(
        self,
        organization_id: str,
        product: Product,
        source_image_url: str,
        image_type: str,
        aspect_ratio: str | None = None,
        resolution: str | None = None,
        source_image_id: str | None = None,
    ) -> SingleImageResult:
        """Generate one image type again, outside of a batch.

        Reserves one photo up front and releases it if no image was produced.

        Raises:
            InvalidBatchError: Unknown image type
            UsageLimitExceededError: Quota exhausted
        """
        (image_type,) = self.validate_image_types([image_type])
        reservation = await self._reserve_one(organization_id)

        prompt = build_prompt(image_type, product)
        config = get_prompt_config(image_type)
        seed = get_seed(product.id, image_type)
        started = time.perf_counter()

        try:
            source = await self.client.url_to_base64(source_image_url)
            result = await self.client.generate(
                prompt=prompt,
                source_image_base64=source.base64,
                source_mime_type=source.mime_type,
                aspect_ratio=aspect_ratio or config.default_aspect_ratio,
                image_size=resolution,
                temperature=config.temperature,
                seed=seed,
            )
            outcome = await self._store_result(
                organization_id,
                product.id,
                image_type,
                result,
                prompt=prompt,
                seed=seed,
                temperature=config.temperature,
                started=started,
                source_image_id=source_image_id,
            )
        except Exception as e:
            logger.error(
                "generation.regenerate.failed",
                organization_id=organization_id,
                product_id=product.id,
                image_type=image_type,
                error=str(e),
                error_type=type(e).__name__,
            )
            outcome = await self._store_failure(
                organization_id,
                product.id,
                image_type,
                str(e) or type(e).__name__,
                prompt=prompt,
                seed=seed,
                temperature=config.temperature,
                started=started,
                source_image_id=source_image_id,
            )

        await self._settle(organization_id, reservation, outcome)
        return outcome

    async def generate_combination(
        self,
        organization_id: str,
        plant: Product,
        accessory: Accessory,
        plant_image_url: str,
        accessory_image_url: str,
        scene_prompt: str,
        aspect_ratio: str | None = None,
    ) -> SingleImageResult:
        """Compose a plant and an accessory into one lifestyle scene.

        Raises:
            UsageLimitExceededError: Quota exhausted
        """
        reservation = await self._reserve_one(organization_id)
        prompt = build_combination_prompt(plant, accessory, scene_prompt)
        started = time.perf_counter()

        try:
            plant_image, accessory_image = await asyncio.gather(
                self.client.url_to_base64(plant_image_url),
                self.client.url_to_base64(accessory_image_url),
            )
            result = await self.client.generate_multi_source(
                prompt=prompt,
                source_images=[plant_image, accessory_image],
                aspect_ratio=aspect_ratio or "1:1",
                temperature=COMBINATION_TEMPERATURE,
            )
            outcome = await self._store_result(
                organization_id,
                plant.id,
                COMBINATION_IMAGE_TYPE,
                result,
                prompt=prompt,
                seed=None,
                temperature=COMBINATION_TEMPERATURE,
                started=started,
            )
        except Exception as e:
            logger.error(
                "generation.combination.failed",
                organization_id=organization_id,
                product_id=plant.id,
                accessory=accessory.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            outcome = await self._store_failure(
                organization_id,
                plant.id,
                COMBINATION_IMAGE_TYPE,
                str(e) or type(e).__name__,
                prompt=prompt,
                seed=None,
                temperature=COMBINATION_TEMPERATURE,
                started=started,
            )

        await self._settle(organization_id, reservation, outcome)
        return outcome

    async def _reserve_one(self, organization_id: str) -> UsageReservation:
        reservation = await self.ledger.reserve(organization_id, 1)
        if not reservation.allowed:
            raise UsageLimitExceededError(reservation.used, reservation.limit, 1)
        return reservation

    async def _settle(
        self,
        organization_id: str,
        reservation: UsageReservation,
        outcome: SingleImageResult,
    ) -> None:
        if outcome.success:
            await self.ledger.track_usage(organization_id, 1, 0)
            return
        await self.ledger.track_usage(organization_id, 0, 1)
        if reservation.granted:
            await self.ledger.release(organization_id, 1)

    async def _store_result(
        self,
        organization_id: str,
        product_id: str,
        image_type: str,
        result: GenerationResult,
        *,
        prompt: str,
        seed: int | None,
        temperature: float,
        started: float,
        source_image_id: str | None = None,
    ) -> SingleImageResult:
        """Upload a successful result and record it; record failures as-is."""
        if not result.success or not result.image_base64:
            return await self._store_failure(
                organization_id,
                product_id,
                image_type,
                result.error or "Generation failed",
                prompt=prompt,
                seed=seed,
                temperature=temperature,
                started=started,
                source_image_id=source_image_id,
            )

        mime_type = result.mime_type or DEFAULT_MIME_TYPE
        path = generate_storage_path(
            organization_id, product_id, image_type, extension_for(mime_type)
        )
        image_url = await self.storage.upload(result.image_base64, mime_type, path)
        duration_ms = int((time.perf_counter() - started) * 1000)

        image_id = await self.store.create_generated_image(
            GeneratedImage(
                organization_id=organization_id,
                product_id=product_id,
                source_image_id=source_image_id,
                image_type=to_db_image_type(image_type),
                image_url=image_url,
                status=GeneratedImageStatus.COMPLETED,
                prompt_used=prompt,
                seed=seed,
                temperature=temperature,
                generation_duration_ms=duration_ms,
                generation_model=self.client.model,
            )
        )
        logger.info(
            "generation.single.completed",
            organization_id=organization_id,
            product_id=product_id,
            image_type=image_type,
            duration_ms=duration_ms,
        )
        return SingleImageResult(
            success=True,
            image_type=image_type,
            image_url=image_url,
            generated_image_id=image_id,
            duration_ms=duration_ms,
        )

    async def _store_failure(
        self,
        organization_id: str,
        product_id: str,
        image_type: str,
        error: str,
        *,
        prompt: str,
        seed: int | None,
        temperature: float,
        started: float,
        source_image_id: str | None = None,
    ) -> SingleImageResult:
        duration_ms = int((time.perf_counter() - started) * 1000)
        image_id = None
        try:
            image_id = await self.store.create_generated_image(
                GeneratedImage(
                    organization_id=organization_id,
                    product_id=product_id,
                    source_image_id=source_image_id,
                    image_type=to_db_image_type(image_type),
                    image_url="",
                    status=GeneratedImageStatus.FAILED,
                    prompt_used=prompt,
                    seed=seed,
                    temperature=temperature,
                    generation_duration_ms=duration_ms,
                    generation_model=self.client.model,
                    error=error,
                )
            )
        except Exception as e:
            logger.error(
                "generation.single.record_failed",
                product_id=product_id,
                image_type=image_type,
                error=str(e),
                error_type=type(e).__name__,
            )
        return SingleImageResult(
            success=False,
            image_type=image_type,
            generated_image_id=image_id,
            duration_ms=duration_ms,
            error=error,
        )
