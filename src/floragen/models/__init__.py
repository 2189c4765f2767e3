"""SQLModel database entities and in-memory pipeline types.

Table models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from floragen.models.generated_image import GeneratedImage, GeneratedImageStatus, ReviewStatus
from floragen.models.generation_job import (
    GenerationJob,
    GenerationJobStatus,
    InvalidStateTransition,
)
from floragen.models.image_type import ImageType, from_db_image_type, to_db_image_type
from floragen.models.pipeline_job import PipelineJob, PipelineJobStatus
from floragen.models.product import Accessory, Carrier, Product
from floragen.models.usage import GenerationUsage, OrganizationQuota

__all__ = [
    "Accessory",
    "Carrier",
    "GeneratedImage",
    "GeneratedImageStatus",
    "GenerationJob",
    "GenerationJobStatus",
    "GenerationUsage",
    "ImageType",
    "InvalidStateTransition",
    "OrganizationQuota",
    "PipelineJob",
    "PipelineJobStatus",
    "Product",
    "ReviewStatus",
    "from_db_image_type",
    "to_db_image_type",
]
