"""Health check API endpoints."""

from fastapi import APIRouter
from pydantic import BaseModel, Field

from doclink.core.config import settings
from doclink.core.database import db_client, staging_db_client
from doclink.utils.logging import get_logger

LOGGER = get_logger(__name__)

router = APIRouter()


class HealthCheckResponse(BaseModel):
    status: str = Field(..., description="Health check status")
    version: str = Field(..., description="Running application version")
    service: str = Field(..., description="Service name")
    databases: dict = Field(default_factory=dict, description="Per-database health")


@router.get(
    "/",
    response_model=HealthCheckResponse,
    tags=["Health"],
    summary="Health check endpoint",
    description="Check if the service and both databases are reachable",
    operation_id="get_service_health_status",
)
async def health_check() -> HealthCheckResponse:
    """Health check endpoint."""
    databases = {}
    for client in (db_client, staging_db_client):
        databases[client.name] = await client.health_check()

    healthy = all(db["status"] == "healthy" for db in databases.values())
    return HealthCheckResponse(
        status="healthy" if healthy else "degraded",
        version=settings.app_version,
        service=settings.app_name,
        databases=databases,
    )
