"""GeneratedImage entity - durable record of one generation outcome."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, Text
from sqlmodel import Field, SQLModel

from floragen.core.timezone import utc_now


class GeneratedImageStatus(str, Enum):
    """Outcome of a single generation."""

    COMPLETED = "completed"
    FAILED = "failed"


class ReviewStatus(str, Enum):
    """Human review state, changed only by the review workflow."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class GeneratedImage(SQLModel, table=True):
    """GeneratedImage stores one successful or failed generation.

    Failed generations are recorded too, with an empty URL and the error text.
    ``parent_image_id`` links a derived image to the generated image it was made from.
    """

    __tablename__ = "generated_images"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    organization_id: str = Field(index=True, max_length=64)
    product_id: str = Field(index=True, max_length=64)
    source_image_id: Optional[str] = Field(default=None, max_length=64)
    parent_image_id: Optional[UUID] = Field(default=None, foreign_key="generated_images.id")
    image_type: str = Field(max_length=50)  # stored with underscores, e.g. white_background
    image_url: str = Field(default="")
    status: GeneratedImageStatus = Field(index=True)
    prompt_used: Optional[str] = Field(default=None, sa_type=Text)
    seed: Optional[int] = Field(default=None, sa_type=BigInteger)
    temperature: Optional[float] = Field(default=None)
    generation_duration_ms: Optional[int] = Field(default=None)
    generation_model: Optional[str] = Field(default=None, max_length=100)
    review_status: ReviewStatus = Field(default=ReviewStatus.PENDING)
    error: Optional[str] = Field(default=None, sa_type=Text)
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
