from fastapi import APIRouter
from pydantic import BaseModel

router = APIRouter(tags=["gateway"])


class HealthResponse(BaseModel):
    status: str = "ok"


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Simple health check endpoint."""

    return HealthResponse()


__all__ = ["HealthResponse", "router"]
