"""
Health check endpoints for the scmgate API server.

Provides /health (liveness) and /ready (readiness) endpoints.
"""

from fastapi import APIRouter, Response, status

from scmgate.api.dependencies import get_resolver_or_none
from scmgate.logging_config import get_logger
from scmgate.scm import get_registry_or_none

router = APIRouter(tags=["health"])
logger = get_logger(__name__)


@router.get("/health", status_code=status.HTTP_200_OK)
async def health() -> dict[str, str]:
    """Liveness probe endpoint."""
    return {"status": "healthy"}


@router.get("/ready", status_code=status.HTTP_200_OK)
async def ready(response: Response) -> dict[str, str | dict[str, str]]:
    """Readiness probe endpoint.

    Ready once the provider registry and repository resolver exist and at
    least one provider is registered.
    """
    checks: dict[str, str] = {}

    registry = get_registry_or_none()
    checks["providers"] = "healthy" if registry is not None and registry.types else "unhealthy"
    checks["repositories"] = "healthy" if get_resolver_or_none() is not None else "unhealthy"

    if not all(v == "healthy" for v in checks.values()):
        logger.warning("Readiness check failed", checks=checks)
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not ready", "checks": checks}

    return {"status": "ready", "checks": checks}
