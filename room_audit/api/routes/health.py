# room_audit/api/routes/health.py
from datetime import datetime, timezone

from fastapi import APIRouter
from pydantic import BaseModel, Field

from room_audit.core.config import get_settings


router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    """
    Response schema for the health check endpoint.
    """

    status: str = Field(..., examples=["ok"])
    app_name: str = Field(..., examples=["Room Audit"])
    environment: str = Field(..., examples=["local"])
    graph_configured: bool = Field(
        ...,
        description="Whether Graph credentials are present (they are not validated).",
    )
    timestamp_utc: datetime = Field(..., examples=["2025-01-01T10:30:00Z"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check for the Room Audit service",
)
async def health_check() -> HealthResponse:
    """
    Report that the service is up.

    Does not call Graph, so it stays green while downstream systems are
    degraded.
    """
    settings = get_settings()
    return HealthResponse(
        status="ok",
        app_name=settings.APP_NAME,
        environment=settings.APP_ENV,
        graph_configured=settings.graph_configured,
        timestamp_utc=datetime.now(tz=timezone.utc),
    )
