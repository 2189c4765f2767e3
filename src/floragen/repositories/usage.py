"""Usage repository for floragen backend.

Quota reservation is a single INSERT ... ON CONFLICT DO UPDATE ... WHERE statement,
so two concurrent reservations against the same organization and period are
serialized by PostgreSQL's row lock and the ceiling is re-checked against the
committed counter. The caller never reads, computes and writes the counter itself.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from floragen.core.timezone import utc_now
from floragen.models.usage import GenerationUsage, OrganizationQuota

_usage = GenerationUsage.__table__  # type: ignore[attr-defined]


class UsageRepository:
    """Repository for GenerationUsage counters and OrganizationQuota limits."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_quota(self, organization_id: str) -> OrganizationQuota | None:
        """Retrieve the organization's quota row, if one exists."""
        result = await self.session.execute(
            select(OrganizationQuota).where(
                OrganizationQuota.organization_id == organization_id  # type: ignore[arg-type]
            )
        )
        return result.scalar_one_or_none()

    async def set_quota(self, organization_id: str, monthly_photo_limit: int | None) -> None:
        """Set the organization's monthly photo limit (UPSERT)."""
        now = utc_now()
        stmt = insert(OrganizationQuota).values(
            organization_id=organization_id,
            monthly_photo_limit=monthly_photo_limit,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["organization_id"],
            set_={"monthly_photo_limit": monthly_photo_limit, "updated_at": now},
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def reserve(
        self,
        organization_id: str,
        count: int,
        limit: int | None,
        period_start: datetime,
        period_end: datetime,
    ) -> int | None:
        """Atomically add ``count`` to the reserved counter if it stays within ``limit``.

        Query explanation:
        - INSERT: First reservation of the period creates the row with reserved=count
        - ON CONFLICT (organization_id, period_start): Row already exists
        - DO UPDATE ... WHERE reserved + count <= limit: Increment only below the ceiling
        - RETURNING: A row comes back only when the reservation was applied

        Args:
            organization_id: Organization to reserve for
            count: Number of photos to reserve (> 0)
            limit: Monthly ceiling, None for unlimited
            period_start: Start of the billing period
            period_end: End of the billing period

        Returns:
            New reserved total if the reservation was applied, None if denied
        """
        if limit is not None and count > limit:
            return None

        now = utc_now()
        stmt = insert(GenerationUsage).values(
            id=uuid4(),
            organization_id=organization_id,
            period_start=period_start,
            period_end=period_end,
            reserved_count=count,
            completed_count=0,
            failed_count=0,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["organization_id", "period_start"],
            set_={"reserved_count": _usage.c.reserved_count + count, "updated_at": now},
            where=(_usage.c.reserved_count + count <= limit) if limit is not None else None,
        ).returning(_usage.c.reserved_count)

        result = await self.session.execute(stmt)
        row = result.first()
        await self.session.flush()
        return int(row[0]) if row is not None else None

    async def release(self, organization_id: str, count: int, period_start: datetime) -> int:
        """Decrement the reserved counter, never below zero.

        Returns:
            Number of rows updated (0 if the period had no usage row)
        """
        result = await self.session.execute(
            update(GenerationUsage)
            .where(
                GenerationUsage.organization_id == organization_id,  # type: ignore[arg-type]
                GenerationUsage.period_start == period_start,  # type: ignore[arg-type]
            )
            .values(
                reserved_count=func.greatest(GenerationUsage.reserved_count - count, 0),
                updated_at=utc_now(),
            )
        )
        await self.session.flush()
        return result.rowcount  # type: ignore[attr-defined]

    async def track_usage(
        self,
        organization_id: str,
        succeeded: int,
        failed: int,
        period_start: datetime,
        period_end: datetime,
    ) -> None:
        """Add produced and failed photo counts to the period's billing counters (UPSERT)."""
        now = utc_now()
        stmt = insert(GenerationUsage).values(
            id=uuid4(),
            organization_id=organization_id,
            period_start=period_start,
            period_end=period_end,
            reserved_count=0,
            completed_count=succeeded,
            failed_count=failed,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["organization_id", "period_start"],
            set_={
                "completed_count": _usage.c.completed_count + succeeded,
                "failed_count": _usage.c.failed_count + failed,
                "updated_at": now,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def get_usage(
        self, organization_id: str, period_start: datetime
    ) -> GenerationUsage | None:
        """Retrieve the usage row for an organization and period."""
        result = await self.session.execute(
            select(GenerationUsage).where(
                GenerationUsage.organization_id == organization_id,  # type: ignore[arg-type]
                GenerationUsage.period_start == period_start,  # type: ignore[arg-type]
            )
        )
        return result.scalar_one_or_none()
