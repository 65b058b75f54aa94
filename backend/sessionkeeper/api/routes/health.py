"""Liveness and readiness probes."""

import asyncio
from typing import Annotated, Any, Awaitable, Callable

from api.error_handling import error_response, success_response
from core.auth_helper import get_services
from core.errors import ErrorCode
from core.logging import logger
from fastapi import APIRouter, Depends
from services.container import AppServices

HEALTH_CHECK_TIMEOUT_SECONDS = 5.0

router = APIRouter(prefix="/health", tags=["health"])


async def _probe(label: str, check: Callable[[], Awaitable[None]]) -> bool:
    try:
        await asyncio.wait_for(check(), HEALTH_CHECK_TIMEOUT_SECONDS)
        return True
    except asyncio.TimeoutError:
        logger.error("Health check {} timed out", label)
    except Exception as exc:
        logger.error("Health check {} failed: {}", label, exc)
    return False


@router.get("/liveness")
async def liveness():
    """The process is up and serving requests."""
    return success_response({"status": "alive"})


@router.get("/readiness")
async def readiness(services: Annotated[AppServices, Depends(get_services)]):
    """Check storage and cache connectivity and report breaker states.

    Only a failing storage ping makes the service unready (503); a failing
    cache is reported as degraded.
    """
    storage_ok = await _probe("storage", services.storage_ping)
    cache_ok = await _probe("cache", services.cache.ping)
    checks: dict[str, Any] = {
        "storage": "healthy" if storage_ok else "unhealthy",
        "cache": "healthy" if cache_ok else "degraded",
        "breakers": services.breakers.snapshot(),
    }
    if not storage_ok:
        return error_response(
            503,
            ErrorCode.SERVICE_UNAVAILABLE.value,
            "Storage unavailable",
            [
                {"field": "storage", "message": checks["storage"]},
                {"field": "cache", "message": checks["cache"]},
            ],
        )
    return success_response({"status": "ready", "checks": checks})
