"""Repository layer for floragen backend.

Provides data access abstractions for all domain entities.
Each repository is self-contained; there is no shared base class.
"""

from floragen.repositories.generated_image import GeneratedImageRepository
from floragen.repositories.generation_job import GenerationJobRepository
from floragen.repositories.usage import UsageRepository

__all__ = [
    "GeneratedImageRepository",
    "GenerationJobRepository",
    "UsageRepository",
]
