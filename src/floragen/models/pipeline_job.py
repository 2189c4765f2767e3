"""PipelineJob - in-memory unit of work for one image type within a batch.

PipelineJob is immutable. Every transition returns a new instance so the
orchestrator can replace entries in its job table instead of patching shared
objects.
"""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class PipelineJobStatus(str, Enum):
    """Per-variant lifecycle status."""

    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class PipelineJob(BaseModel):
    """One requested image type within a batch."""

    model_config = ConfigDict(frozen=True)

    id: str
    image_type: str
    status: PipelineJobStatus = PipelineJobStatus.PENDING
    image_url: str | None = None
    error: str | None = None
    prompt_used: str | None = None
    # Transient payload, kept only until dependent jobs have used it
    image_base64: str | None = None
    image_mime_type: str | None = None
    parent_image_id: UUID | None = None
    generated_image_id: UUID | None = None

    @classmethod
    def pending(cls, index: int, image_type: str) -> "PipelineJob":
        return cls(id=f"job-{index}-{image_type}", image_type=image_type)

    @property
    def is_resolved(self) -> bool:
        return self.status in (PipelineJobStatus.COMPLETED, PipelineJobStatus.FAILED)

    def start(self) -> "PipelineJob":
        return self.model_copy(update={"status": PipelineJobStatus.GENERATING})

    def complete(
        self,
        image_url: str,
        prompt_used: str,
        image_base64: str | None,
        image_mime_type: str | None,
        parent_image_id: UUID | None = None,
        generated_image_id: UUID | None = None,
    ) -> "PipelineJob":
        return self.model_copy(
            update={
                "status": PipelineJobStatus.COMPLETED,
                "image_url": image_url,
                "error": None,
                "prompt_used": prompt_used,
                "image_base64": image_base64,
                "image_mime_type": image_mime_type,
                "parent_image_id": parent_image_id,
                "generated_image_id": generated_image_id,
            }
        )

    def fail(
        self,
        error: str,
        prompt_used: str | None = None,
        parent_image_id: UUID | None = None,
        generated_image_id: UUID | None = None,
    ) -> "PipelineJob":
        return self.model_copy(
            update={
                "status": PipelineJobStatus.FAILED,
                "image_url": None,
                "error": error,
                "prompt_used": prompt_used if prompt_used is not None else self.prompt_used,
                "image_base64": None,
                "image_mime_type": None,
                "parent_image_id": parent_image_id,
                "generated_image_id": generated_image_id,
            }
        )

    def without_payload(self) -> "PipelineJob":
        if self.image_base64 is None and self.image_mime_type is None:
            return self
        return self.model_copy(update={"image_base64": None, "image_mime_type": None})
