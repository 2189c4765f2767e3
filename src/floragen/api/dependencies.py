"""FastAPI dependencies shared by the API routes."""

from typing import Annotated

from fastapi import Header, HTTPException, Request, status

from floragen.services.generation.service import GenerationService


def get_generation_service(request: Request) -> GenerationService:
    """Get the GenerationService built during app lifespan."""
    return request.app.state.generation_service


async def get_organization_id(
    x_organization_id: Annotated[str | None, Header()] = None,
) -> str:
    """Resolve the calling organization from the X-Organization-Id header.

    The value is an opaque identifier supplied by the fronting gateway.

    Raises:
        HTTPException: 400 Bad Request if the header is missing or blank
    """
    if not x_organization_id or not x_organization_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Missing X-Organization-Id header"
        )
    return x_organization_id.strip()
