"""Generation store: durable GenerationJob and GeneratedImage writes."""

from typing import Awaitable, Callable, Protocol, Sequence
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError

from floragen.core.timezone import utc_now
from floragen.models.generated_image import GeneratedImage
from floragen.models.generation_job import GenerationJob
from floragen.uow import UnitOfWork

logger = structlog.get_logger(__name__)


class GenerationStore(Protocol):
    """Persistence contract used by the pipeline and the concurrency guard."""

    async def create_job(
        self,
        organization_id: str,
        product_id: str,
        image_types: Sequence[str],
        created_by: str | None = None,
    ) -> GenerationJob: ...

    async def update_job(self, job: GenerationJob) -> None: ...

    async def create_generated_image(self, image: GeneratedImage) -> UUID | None: ...

    async def has_active_job(self, organization_id: str) -> bool: ...


class SqlGenerationStore:
    """GenerationStore backed by the Unit of Work.

    Every call runs in its own short transaction, so per-job records are
    committed as soon as they are produced.
    """

    def __init__(self, uow_factory: Callable[[], Awaitable[UnitOfWork]]):
        self.uow_factory = uow_factory

    async def create_job(
        self,
        organization_id: str,
        product_id: str,
        image_types: Sequence[str],
        created_by: str | None = None,
    ) -> GenerationJob:
        job = GenerationJob(
            organization_id=organization_id,
            product_id=product_id,
            image_types_requested=list(image_types),
            total_images=len(image_types),
            created_by=created_by,
            started_at=utc_now(),
        )
        async with await self.uow_factory() as uow:
            await uow.generation_jobs.add(job)

        logger.info(
            "generation_job.created",
            job_id=str(job.id),
            organization_id=organization_id,
            product_id=product_id,
            total_images=job.total_images,
        )
        return job

    async def update_job(self, job: GenerationJob) -> None:
        async with await self.uow_factory() as uow:
            await uow.generation_jobs.save(job)

    async def create_generated_image(self, image: GeneratedImage) -> UUID | None:
        """Insert a generation record.

        Returns:
            The record id, or None if the write failed (logged)
        """
        try:
            async with await self.uow_factory() as uow:
                await uow.generated_images.add(image)
        except SQLAlchemyError as e:
            logger.error(
                "generated_image.insert_failed",
                product_id=image.product_id,
                image_type=image.image_type,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None
        return image.id

    async def has_active_job(self, organization_id: str) -> bool:
        async with await self.uow_factory() as uow:
            return await uow.generation_jobs.has_active_for_organization(organization_id)
