"""Pipeline orchestrator - turns one source photo into the requested image variants.

Batch lifecycle: created → source fetched → white-background phase → remaining
types (strictly sequential) → finalized.

- White-background, when requested, is generated first from the original
  source. Its output becomes the source (and parent record) for the types that
  need a clean background.
- Every other type runs one at a time in request order, never concurrently.
- A job failure is recorded and reported; it never stops the remaining jobs.
- Only shared setup (job record creation, source fetch) can fail the batch as a
  whole, and then every job is reported failed and batch-complete is still sent.
"""

import time
from dataclasses import dataclass
from uuid import UUID

import structlog

from floragen.models.generated_image import GeneratedImage, GeneratedImageStatus
from floragen.models.generation_job import GenerationJob
from floragen.models.image_type import ImageType, to_db_image_type
from floragen.models.pipeline_job import PipelineJob, PipelineJobStatus
from floragen.models.product import Product
from floragen.services.generation.events import (
    BatchCompleteEvent,
    BatchStartEvent,
    EventHandler,
    JobCompleteEvent,
    JobErrorEvent,
    JobStartEvent,
    PipelineEvent,
)
from floragen.services.generation.store import GenerationStore
from floragen.services.image_generation.gemini_client import (
    DEFAULT_MIME_TYPE,
    GeminiClient,
    SourceImage,
)
from floragen.services.image_generation.prompts import (
    build_prompt,
    get_prompt_config,
    get_seed,
    requires_white_background,
)
from floragen.services.storage.object_storage import (
    ObjectStorage,
    extension_for,
    generate_storage_path,
)
from floragen.services.usage_ledger import UsageLedger

logger = structlog.get_logger(__name__)

WHITE_BACKGROUND = ImageType.WHITE_BACKGROUND.value


@dataclass(frozen=True)
class PipelineRequest:
    """Input of one batch run."""

    organization_id: str
    product: Product
    source_image_url: str
    image_types: tuple[str, ...]
    aspect_ratio: str | None = None
    image_size: str | None = None
    source_image_id: str | None = None
    created_by: str | None = None


@dataclass
class _Attempt:
    """Generation parameters of one job, kept for the failure record."""

    prompt: str | None = None
    seed: int | None = None
    temperature: float | None = None


class PipelineOrchestrator:
    """Runs one batch at a time per call; holds no state between runs."""

    def __init__(
        self,
        client: GeminiClient,
        storage: ObjectStorage,
        store: GenerationStore,
        ledger: UsageLedger,
    ):
        self.client = client
        self.storage = storage
        self.store = store
        self.ledger = ledger

    async def run(self, request: PipelineRequest, on_event: EventHandler) -> list[PipelineJob]:
        """Run a batch, emitting progress events through ``on_event``.

        Returns:
            Final job list in request order, transient payloads cleared
        """
        order = [
            PipelineJob.pending(index, image_type)
            for index, image_type in enumerate(request.image_types)
        ]
        jobs: dict[str, PipelineJob] = {job.id: job for job in order}
        log = logger.bind(
            organization_id=request.organization_id,
            product_id=request.product.id,
            total_jobs=len(jobs),
        )

        self._emit(on_event, BatchStartEvent(total_jobs=len(jobs)))
        log.info("pipeline.batch.started", image_types=list(request.image_types))

        record: GenerationJob | None = None
        try:
            record = await self.store.create_job(
                request.organization_id,
                request.product.id,
                request.image_types,
                created_by=request.created_by,
            )
            source = await self.client.url_to_base64(request.source_image_url)
        except Exception as e:
            log.error(
                "pipeline.batch.setup_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return await self._fail_batch(request, jobs, record, str(e), on_event)

        # Phase 1: white-background from the original source
        white_job = next((job for job in order if job.image_type == WHITE_BACKGROUND), None)
        white_source: SourceImage | None = None
        white_image_id: UUID | None = None

        if white_job is not None:
            finished = await self._run_job(white_job, request, source, None, on_event)
            jobs[finished.id] = finished
            if finished.status == PipelineJobStatus.COMPLETED and finished.image_base64:
                white_source = SourceImage(
                    base64=finished.image_base64,
                    mime_type=finished.image_mime_type or DEFAULT_MIME_TYPE,
                )
                white_image_id = finished.generated_image_id

        # Phase 2: everything else, one job at a time in request order
        for job in order:
            if white_job is not None and job.id == white_job.id:
                continue

            if white_source is not None and requires_white_background(job.image_type):
                finished = await self._run_job(
                    job, request, white_source, white_image_id, on_event
                )
            else:
                finished = await self._run_job(job, request, source, None, on_event)
            jobs[finished.id] = finished

        # Drop image buffers before the slow bookkeeping calls
        del source, white_source
        final = [jobs[job.id].without_payload() for job in order]

        success_count = sum(1 for job in final if job.status == PipelineJobStatus.COMPLETED)
        failed_count = len(final) - success_count

        await self._finalize_record(record, final)
        await self.ledger.track_usage(request.organization_id, success_count, failed_count)

        self._emit(
            on_event,
            BatchCompleteEvent(success_count=success_count, failed_count=failed_count),
        )
        log.info(
            "pipeline.batch.completed",
            success_count=success_count,
            failed_count=failed_count,
            job_id=str(record.id),
        )
        return final

    async def _run_job(
        self,
        job: PipelineJob,
        request: PipelineRequest,
        source: SourceImage,
        parent_image_id: UUID | None,
        on_event: EventHandler,
    ) -> PipelineJob:
        """Generate, upload and persist one job. Never raises."""
        self._emit(on_event, JobStartEvent(job_id=job.id, image_type=job.image_type))
        job = job.start()
        attempt = _Attempt()
        started = time.perf_counter()

        try:
            product = request.product
            attempt.prompt = build_prompt(job.image_type, product)
            config = get_prompt_config(job.image_type)
            attempt.temperature = config.temperature
            attempt.seed = get_seed(product.id, job.image_type)

            result = await self.client.generate(
                prompt=attempt.prompt,
                source_image_base64=source.base64,
                source_mime_type=source.mime_type,
                aspect_ratio=request.aspect_ratio or config.default_aspect_ratio,
                image_size=request.image_size,
                temperature=attempt.temperature,
                seed=attempt.seed,
            )

            if result.success and result.image_base64:
                mime_type = result.mime_type or DEFAULT_MIME_TYPE
                path = generate_storage_path(
                    request.organization_id,
                    product.id,
                    job.image_type,
                    extension_for(mime_type),
                )
                image_url = await self.storage.upload(result.image_base64, mime_type, path)
                image_id = await self.store.create_generated_image(
                    self._build_record(
                        request,
                        job,
                        attempt,
                        started,
                        parent_image_id,
                        status=GeneratedImageStatus.COMPLETED,
                        image_url=image_url,
                    )
                )
                finished = job.complete(
                    image_url=image_url,
                    prompt_used=attempt.prompt,
                    image_base64=result.image_base64,
                    image_mime_type=mime_type,
                    parent_image_id=parent_image_id,
                    generated_image_id=image_id,
                )
            else:
                error = result.error or "Unknown generation error"
                image_id = await self.store.create_generated_image(
                    self._build_record(
                        request,
                        job,
                        attempt,
                        started,
                        parent_image_id,
                        status=GeneratedImageStatus.FAILED,
                        error=error,
                    )
                )
                finished = job.fail(error, attempt.prompt, parent_image_id, image_id)

        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error(
                "pipeline.job.crashed",
                job_id=job.id,
                image_type=job.image_type,
                error=error,
                error_type=type(e).__name__,
            )
            image_id = await self._record_failure(
                request, job, attempt, started, parent_image_id, error
            )
            finished = job.fail(error, attempt.prompt, parent_image_id, image_id)

        if finished.status == PipelineJobStatus.COMPLETED:
            logger.info(
                "pipeline.job.completed",
                job_id=finished.id,
                image_type=finished.image_type,
                parent_image_id=str(parent_image_id) if parent_image_id else None,
            )
            self._emit(
                on_event,
                JobCompleteEvent(
                    job_id=finished.id,
                    image_type=finished.image_type,
                    image_url=finished.image_url or "",
                ),
            )
        else:
            logger.warning(
                "pipeline.job.failed",
                job_id=finished.id,
                image_type=finished.image_type,
                error=finished.error,
            )
            self._emit(
                on_event,
                JobErrorEvent(
                    job_id=finished.id,
                    image_type=finished.image_type,
                    error=finished.error or "Unknown error",
                ),
            )
        return finished

    def _build_record(
        self,
        request: PipelineRequest,
        job: PipelineJob,
        attempt: _Attempt,
        started: float,
        parent_image_id: UUID | None,
        status: GeneratedImageStatus,
        image_url: str = "",
        error: str | None = None,
    ) -> GeneratedImage:
        return GeneratedImage(
            organization_id=request.organization_id,
            product_id=request.product.id,
            source_image_id=request.source_image_id,
            parent_image_id=parent_image_id,
            image_type=to_db_image_type(job.image_type),
            image_url=image_url,
            status=status,
            prompt_used=attempt.prompt,
            seed=attempt.seed,
            temperature=attempt.temperature,
            generation_duration_ms=int((time.perf_counter() - started) * 1000),
            generation_model=self.client.model,
            error=error,
        )

    async def _record_failure(
        self,
        request: PipelineRequest,
        job: PipelineJob,
        attempt: _Attempt,
        started: float,
        parent_image_id: UUID | None,
        error: str,
    ) -> UUID | None:
        try:
            return await self.store.create_generated_image(
                self._build_record(
                    request,
                    job,
                    attempt,
                    started,
                    parent_image_id,
                    status=GeneratedImageStatus.FAILED,
                    error=error,
                )
            )
        except Exception as e:
            logger.error(
                "pipeline.job.record_failed",
                job_id=job.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    async def _finalize_record(
        self, record: GenerationJob | None, final: list[PipelineJob]
    ) -> None:
        if record is None:
            return
        for job in final:
            record.record_outcome(job.status == PipelineJobStatus.COMPLETED)
        record.finalize()
        try:
            await self.store.update_job(record)
        except Exception as e:
            logger.error(
                "pipeline.batch.record_update_failed",
                job_id=str(record.id),
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _fail_batch(
        self,
        request: PipelineRequest,
        jobs: dict[str, PipelineJob],
        record: GenerationJob | None,
        reason: str,
        on_event: EventHandler,
    ) -> list[PipelineJob]:
        """Report every job failed after a shared setup failure."""
        error = f"Batch setup failed: {reason}"
        final = []
        for job in jobs.values():
            failed = job.fail(error)
            final.append(failed)
            self._emit(
                on_event,
                JobErrorEvent(job_id=failed.id, image_type=failed.image_type, error=error),
            )

        await self._finalize_record(record, final)
        await self.ledger.track_usage(request.organization_id, 0, len(final))
        self._emit(on_event, BatchCompleteEvent(success_count=0, failed_count=len(final)))
        return final

    @staticmethod
    def _emit(on_event: EventHandler, event: PipelineEvent) -> None:
        try:
            on_event(event)
        except Exception as e:
            logger.warning(
                "pipeline.event.delivery_failed",
                event_type=event.type,
                error=str(e),
                error_type=type(e).__name__,
            )


async def run_pipeline(
    request: PipelineRequest,
    on_event: EventHandler,
    *,
    client: GeminiClient,
    storage: ObjectStorage,
    store: GenerationStore,
    ledger: UsageLedger,
) -> list[PipelineJob]:
    """Run one batch with a fresh orchestrator."""
    orchestrator = PipelineOrchestrator(client, storage, store, ledger)
    return await orchestrator.run(request, on_event)
