"""GenerationJob entity - one batch request with progress tracking."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from floragen.core.timezone import utc_now


class GenerationJobStatus(str, Enum):
    """Batch lifecycle status."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid generation job state transition."""

    pass


class GenerationJob(SQLModel, table=True):
    """GenerationJob tracks one batch of requested image types for a product."""

    __tablename__ = "generation_jobs"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    organization_id: str = Field(index=True, max_length=64)
    product_id: str = Field(index=True, max_length=64)
    image_types_requested: list[str] = Field(sa_column=Column(JSON, nullable=False))
    total_images: int = Field(ge=0)
    completed_images: int = Field(default=0, ge=0)
    failed_images: int = Field(default=0, ge=0)
    status: GenerationJobStatus = Field(default=GenerationJobStatus.PROCESSING, index=True)
    created_by: Optional[str] = Field(default=None, max_length=64)
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    started_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    completed_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))

    @property
    def resolved_images(self) -> int:
        return self.completed_images + self.failed_images

    def record_outcome(self, succeeded: bool) -> None:
        """Count one resolved image type.

        Raises:
            InvalidStateTransition: If the job is terminal or every image is already resolved
        """
        if self.status != GenerationJobStatus.PROCESSING:
            raise InvalidStateTransition(
                f"Cannot record outcome on {self.status.value} job. Job must be processing."
            )
        if self.resolved_images >= self.total_images:
            raise InvalidStateTransition(
                f"All {self.total_images} images already resolved for job {self.id}."
            )
        if succeeded:
            self.completed_images += 1
        else:
            self.failed_images += 1

    def finalize(self) -> None:
        """Transition from processing to completed or failed.

        The job is failed only when every requested image failed.

        Raises:
            InvalidStateTransition: If the job is not processing
        """
        if self.status != GenerationJobStatus.PROCESSING:
            raise InvalidStateTransition(
                f"Cannot finalize from {self.status.value}. Job must be in processing state."
            )
        if self.total_images > 0 and self.failed_images == self.total_images:
            self.status = GenerationJobStatus.FAILED
        else:
            self.status = GenerationJobStatus.COMPLETED
        self.completed_at = utc_now()
