"""Usage accounting entities - monthly photo counters and organization quotas."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from floragen.core.timezone import utc_now


class GenerationUsage(SQLModel, table=True):
    """Per-organization usage counters for one billing period.

    ``reserved_count`` is the quota-enforced counter. ``completed_count`` and
    ``failed_count`` record what was actually produced, for billing.
    """

    __tablename__ = "generation_usage"  # type: ignore[assignment]
    __table_args__ = (
        UniqueConstraint("organization_id", "period_start", name="uq_generation_usage_period"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    organization_id: str = Field(index=True, max_length=64)
    period_start: datetime = Field(sa_type=DateTime(timezone=True))
    period_end: datetime = Field(sa_type=DateTime(timezone=True))
    reserved_count: int = Field(default=0, ge=0)
    completed_count: int = Field(default=0, ge=0)
    failed_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))


class OrganizationQuota(SQLModel, table=True):
    """Monthly photo limit of an organization's plan (None = unlimited)."""

    __tablename__ = "organization_quotas"  # type: ignore[assignment]

    organization_id: str = Field(primary_key=True, max_length=64)
    monthly_photo_limit: Optional[int] = Field(default=None, ge=0)
    updated_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
