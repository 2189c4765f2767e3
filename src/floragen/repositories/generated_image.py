"""GeneratedImage repository for floragen backend."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from floragen.models.generated_image import GeneratedImage


class GeneratedImageRepository:
    """Repository for GeneratedImage entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, image: GeneratedImage) -> GeneratedImage:
        """Persist a generation record (successful or failed).

        Returns:
            Persisted record with generated ID
        """
        self.session.add(image)
        await self.session.flush()
        return image

    async def get_by_id(self, image_id: UUID) -> GeneratedImage | None:
        result = await self.session.execute(
            select(GeneratedImage).where(GeneratedImage.id == image_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_by_product(self, product_id: str) -> list[GeneratedImage]:
        """Retrieve all generation records for a product, newest first."""
        result = await self.session.execute(
            select(GeneratedImage)
            .where(GeneratedImage.product_id == product_id)  # type: ignore[arg-type]
            .order_by(GeneratedImage.created_at.desc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())
