"""
Health check endpoints.

Health checks are essential for:
- Load balancers to know if the service is alive
- Deployment systems to verify rollouts

We provide two endpoints:
- /health: Basic liveness check (is the process running?)
- /health/ready: Readiness check (can we serve traffic?)

The distinction matters in orchestration systems like Kubernetes
where liveness and readiness have different behaviors.
"""

import logging
from typing import Any

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..dependencies import ServicesDep, SettingsDep

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthResponse(BaseModel):
    """
    Health check response.

    Standardized format makes it easy for monitoring tools to parse.
    """
    status: str
    version: str
    details: dict[str, Any] = {}


class ReadinessCheck(BaseModel):
    """Individual readiness check result."""
    name: str
    status: str  # "ok" or "error"
    error: str | None = None


class ReadinessResponse(BaseModel):
    """Readiness check response with details."""
    status: str  # "ready" or "not_ready"
    version: str
    checks: list[ReadinessCheck]


@router.get(
    "",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
    description="Returns 200 if the service is running. Does not check dependencies.",
)
def health_check(settings: SettingsDep) -> HealthResponse:
    """
    Liveness check - is the process alive?

    This endpoint should be very fast and not check external dependencies.
    """
    return HealthResponse(
        status="ok",
        version=settings.api_version,
        details={
            "mock_mode": {
                "r2": settings.r2_mock_mode,
                "postgres": settings.postgres_mock_mode,
                "supabase": settings.supabase_mock_mode,
            }
        }
    )


def _ping(name: str, client: object) -> ReadinessCheck:
    ping = getattr(client, "ping", None)
    if ping is None:
        return ReadinessCheck(name=name, status="ok")
    try:
        ok = ping()
    except Exception as e:
        logger.error("Dependency health check failed", extra={"dependency": name, "error": str(e)})
        return ReadinessCheck(name=name, status="error", error=str(e))
    return ReadinessCheck(name=name, status="ok" if ok else "error", error=None if ok else "unreachable")


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    status_code=status.HTTP_200_OK,
    summary="Readiness check",
    description="Returns 200 if the service can handle traffic. Checks external dependencies.",
    responses={
        503: {
            "description": "Service not ready",
            "model": ReadinessResponse,
        }
    },
)
def readiness_check(settings: SettingsDep, services: ServicesDep):
    """
    Readiness check - can we serve traffic?

    Checks that configuration is complete and that the profile store and
    identity service answer. Returns 503 if any check fails, which tells
    load balancers not to route traffic here.
    """
    checks: list[ReadinessCheck] = []

    missing_fields = settings.validate_required_fields()
    if missing_fields:
        checks.append(ReadinessCheck(
            name="configuration",
            status="error",
            error=f"Missing required fields: {', '.join(missing_fields)}"
        ))
    else:
        checks.append(ReadinessCheck(name="configuration", status="ok"))

    checks.append(_ping("database", services.profiles))
    checks.append(_ping("identity", services.identities))

    all_ok = all(check.status == "ok" for check in checks)
    response = ReadinessResponse(
        status="ready" if all_ok else "not_ready",
        version=settings.api_version,
        checks=checks,
    )

    if not all_ok:
        logger.warning(
            "Readiness check failed",
            extra={
                "checks": [
                    {"name": c.name, "status": c.status, "error": c.error}
                    for c in checks
                ]
            }
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(),
        )

    return response
