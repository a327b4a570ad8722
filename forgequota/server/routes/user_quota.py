"""Self-service quota routes for the authenticated principal."""

from typing import Optional

from fastapi import APIRouter, Request, Response

from forgequota.common.constants import API_PREFIX
from forgequota.server.middleware.auth import require_principal
from forgequota.server.quota.models import ArtifactUsage, AttachmentUsage, PackageUsage, QuotaInfo
from forgequota.server.quota.service import QuotaService
from forgequota.server.quota.subjects import parse_subject
from forgequota.server.routes.paging import page_window, set_total_count


def create_user_quota_router(service: QuotaService) -> APIRouter:
    """Create the self-service quota router.

    The caller is identified by the ``X-Forge-Principal`` header.
    """
    router = APIRouter(prefix=f"{API_PREFIX}/user/quota", tags=["Quota"])

    @router.get("", response_model=QuotaInfo)
    async def get_quota(request: Request) -> QuotaInfo:
        """Usage, groups and rules of the caller.

        ``used`` is null when usage could not be computed.
        """
        principal = require_principal(request)
        return await service.get_quota_info(principal, degrade=True)

    @router.get("/check", response_model=bool)
    async def check_quota(subject: str, request: Request) -> bool:
        """Whether a write under ``subject`` would currently be allowed."""
        principal = require_principal(request)
        return await service.check(principal, parse_subject(subject))

    @router.get("/attachments", response_model=list[AttachmentUsage])
    async def list_attachments(
        request: Request,
        response: Response,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> list[AttachmentUsage]:
        """Attachments counted against the caller, largest first."""
        principal = require_principal(request)
        offset, size = page_window(page, limit)
        total, items = await service.list_attachments(principal, offset, size)
        set_total_count(response, total)
        return items

    @router.get("/artifacts", response_model=list[ArtifactUsage])
    async def list_artifacts(
        request: Request,
        response: Response,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> list[ArtifactUsage]:
        principal = require_principal(request)
        offset, size = page_window(page, limit)
        total, items = await service.list_artifacts(principal, offset, size)
        set_total_count(response, total)
        return items

    @router.get("/packages", response_model=list[PackageUsage])
    async def list_packages(
        request: Request,
        response: Response,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> list[PackageUsage]:
        principal = require_principal(request)
        offset, size = page_window(page, limit)
        total, items = await service.list_packages(principal, offset, size)
        set_total_count(response, total)
        return items

    return router
