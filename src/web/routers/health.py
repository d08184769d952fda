"""
Health Check Endpoints

Provides:
1. /health - Record Store, local cache and journal status
2. /health/live - Simple liveness check (for k8s)
3. /health/ready - Readiness check (for k8s)
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Response
from fastapi.responses import JSONResponse

from config.settings import get_settings
from core.service_registry import services
from domain.entities import utc_now
from linking.services import LINKING_SERVICES

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

# Application start time for uptime calculation
_start_time = utc_now()


async def _check_record_store() -> Dict[str, Any]:
    linking = services.get(LINKING_SERVICES)
    if linking is None:
        return {"status": "unhealthy", "error": "services not initialised"}

    if await linking.store.ping():
        return {"status": "healthy"}
    return {"status": "unhealthy", "error": "Record Store unreachable"}


async def _check_local_cache() -> Dict[str, Any]:
    """Cache problems only degrade the service; the store stays authoritative."""
    linking = services.get(LINKING_SERVICES)
    cache = linking.cache if linking else None
    if cache is None:
        return {"status": "disabled"}
    if not cache.is_available:
        return {"status": "warning", "error": "local cache not connected"}

    pending = await cache.pending_writes()
    return {
        "status": "warning" if pending else "healthy",
        "device_id": cache.device_id,
        "pending_writes": len(pending),
    }


@router.get("/health")
async def health_check() -> JSONResponse:
    """
    Comprehensive health check endpoint.

    Returns 200 unless the Record Store is unreachable, 503 otherwise.
    Unconfirmed writes waiting in the journal report as degraded.
    """
    settings = get_settings()
    checks = {
        "record_store": await _check_record_store(),
        "local_cache": await _check_local_cache(),
    }

    uptime = utc_now() - _start_time
    uptime_str = str(uptime).split(".")[0]  # Remove microseconds

    statuses = [c.get("status", "unknown") for c in checks.values()]
    if "unhealthy" in statuses:
        overall_status = "unhealthy"
        status_code = 503
    elif "warning" in statuses:
        overall_status = "degraded"
        status_code = 200
    else:
        overall_status = "healthy"
        status_code = 200

    response = {
        "status": overall_status,
        "timestamp": utc_now().isoformat() + "Z",
        "uptime": uptime_str,
        "version": settings.version,
        "environment": settings.environment,
        "checks": checks,
    }
    return JSONResponse(content=response, status_code=status_code)


@router.get("/health/live")
async def liveness_check() -> Response:
    """Kubernetes liveness check. The process is up."""
    return Response(content="OK", media_type="text/plain")


@router.get("/health/ready")
async def readiness_check() -> JSONResponse:
    """Kubernetes readiness check. Ready once the Record Store answers."""
    store_check = await _check_record_store()
    if store_check["status"] != "healthy":
        return JSONResponse(content={"ready": False, "reason": store_check.get("error")}, status_code=503)
    return JSONResponse(content={"ready": True})
