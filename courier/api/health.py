"""
Health check endpoint.
"""

from fastapi import APIRouter, Request

from courier.models.schemas import HealthResponse
from courier.utils.helpers import now_iso

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Health check endpoint.

    Verifies:
    - API is running
    - Receiver key is configured
    """
    settings = request.app.state.settings
    return HealthResponse(
        status="healthy" if settings.receiver_key else "degraded",
        timestamp=now_iso(),
        version=settings.api_version
    )
