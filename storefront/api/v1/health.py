"""Health check endpoints."""

from fastapi import APIRouter

from storefront.core.config import settings
from storefront.core.deps import RecordStoreDep
from storefront.core.result import Err
from storefront.schemas.common import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(store: RecordStoreDep) -> HealthResponse:
    """
    Health check endpoint.

    Checks database connectivity and returns service status.
    """
    checks: dict[str, str] = {}
    status = "healthy"

    result = await store.ping()
    if isinstance(result, Err):
        status = "unhealthy"
        checks["database"] = f"unhealthy: {result.detail}"
    else:
        checks["database"] = "healthy"

    checks["email"] = "configured" if settings.resend_api_key else "not configured"

    return HealthResponse(
        status=status,
        version=settings.version,
        environment=settings.environment,
        checks=checks,
    )


@router.get("/health/live")
async def liveness_check() -> dict[str, str]:
    """
    Liveness probe for Kubernetes/container orchestration.

    Simple check that the service is running.
    """
    return {"status": "alive"}
