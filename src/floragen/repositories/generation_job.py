"""GenerationJob repository for floragen backend.

Provides data access methods for GenerationJob entities.
"""

from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from floragen.models.generation_job import GenerationJob, GenerationJobStatus


class GenerationJobRepository:
    """Repository for GenerationJob entities.

    Also answers the "is a batch already running" question for the
    concurrency guard.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: GenerationJob) -> GenerationJob:
        """Persist new generation job to database.

        Args:
            job: GenerationJob entity to persist

        Returns:
            Persisted job with generated ID
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: UUID) -> GenerationJob | None:
        """Retrieve generation job by UUID.

        Args:
            job_id: Job's unique identifier

        Returns:
            GenerationJob if found, None otherwise
        """
        result = await self.session.execute(
            select(GenerationJob).where(GenerationJob.id == job_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def save(self, job: GenerationJob) -> GenerationJob:
        """Write back progress counters and status of an existing job.

        Args:
            job: Detached or attached job carrying the new state

        Returns:
            The merged, session-attached job
        """
        merged = await self.session.merge(job)
        await self.session.flush()
        return merged

    async def has_active_for_organization(self, organization_id: str) -> bool:
        """Check whether the organization has a batch in processing state.

        Args:
            organization_id: Organization to check

        Returns:
            True if at least one job for the organization is processing
        """
        result = await self.session.execute(
            select(
                exists().where(
                    GenerationJob.organization_id == organization_id,  # type: ignore[arg-type]
                    GenerationJob.status == GenerationJobStatus.PROCESSING,  # type: ignore[arg-type]
                )
            )
        )
        return bool(result.scalar())

    async def get_by_organization(
        self, organization_id: str, limit: int = 20
    ) -> list[GenerationJob]:
        """Retrieve the most recent jobs for an organization (newest first).

        Args:
            organization_id: Organization to list jobs for
            limit: Maximum number of jobs to return (default: 20)

        Returns:
            List of jobs ordered by creation time (newest first)
        """
        result = await self.session.execute(
            select(GenerationJob)
            .where(GenerationJob.organization_id == organization_id)  # type: ignore[arg-type]
            .order_by(GenerationJob.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())
