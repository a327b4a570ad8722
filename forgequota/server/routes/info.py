"""Server information API routes."""

import logging
from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from forgequota import __version__
from forgequota.common.models import HealthResponse, ServerInfo
from forgequota.server.quota.enforcement import Operation
from forgequota.server.quota.service import QuotaService
from forgequota.server.quota.subjects import LimitSubject

logger = logging.getLogger("forgequota.server")


def create_info_router(service: QuotaService) -> APIRouter:
    """Create server info router.

    Args:
        service: Quota service (its config reflects hot reloads)

    Returns:
        FastAPI router
    """
    router = APIRouter(prefix="/api", tags=["Server Info"])

    @router.get("/info", response_model=ServerInfo)
    async def get_server_info() -> ServerInfo:
        """Get server information."""
        return ServerInfo(
            version=__version__,
            quota_enabled=service.enabled,
            default_groups=list(service.default_groups),
            subjects=[s.value for s in LimitSubject],
            operations=[o.value for o in Operation],
        )

    @router.get("/health", response_model=HealthResponse)
    async def health_check() -> Any:
        """Health check endpoint; also pings the database."""
        try:
            await service.db.ping()
        except Exception as exc:
            logger.error("Health check database ping failed: %s", exc)
            return JSONResponse(status_code=503, content={"status": "unhealthy", "database": "unreachable"})
        return HealthResponse()

    return router
