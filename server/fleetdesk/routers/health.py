"""Health check router."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ..core.database import utcnow
from ..core.observability import SERVICE_NAME
from ..schemas.health import HealthResponse, HealthStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/health", tags=["health"])


@router.post("/ping", response_model=HealthResponse)
async def health_ping() -> JSONResponse:
    """
    Liveness check.

    Returns current service status and timestamp without touching the database.
    """
    response_data = HealthResponse(
        status=HealthStatus.HEALTHY,
        service=SERVICE_NAME,
        timestamp=utcnow(),
    )

    logger.debug("Health ping", extra={"status": response_data.status.value})

    return JSONResponse(
        status_code=200,
        content=response_data.model_dump(mode="json")
    )
