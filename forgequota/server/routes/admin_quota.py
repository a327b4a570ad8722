"""Quota administration API routes.

Rules, groups, group membership and per-principal quota introspection.
Every mutation runs in its own database transaction.
"""

from typing import Optional

from fastapi import APIRouter, Request, Response

from forgequota.common.constants import API_PREFIX
from forgequota.server.middleware.auth import require_admin_access
from forgequota.server.quota.models import (
    GroupCreate,
    GroupPublic,
    Principal,
    PrincipalKind,
    PrincipalPublic,
    QuotaInfo,
    RuleCreate,
    RuleEdit,
    RulePublic,
    SetGroups,
)
from forgequota.server.quota.service import QuotaService
from forgequota.server.routes.paging import page_window, set_total_count


def create_admin_quota_router(service: QuotaService) -> APIRouter:
    """Create the quota administration router.

    Args:
        service: Quota service (database + quota config)
    """
    router = APIRouter(prefix=f"{API_PREFIX}/admin", tags=["Quota Admin"])
    db = service.db

    # ── Rules ──────────────────────────────────────────────────

    @router.get("/quota/rules", response_model=list[RulePublic])
    async def list_rules(request: Request) -> list[RulePublic]:
        require_admin_access(request)
        return [RulePublic.from_rule(r) for r in await db.list_rules()]

    @router.post("/quota/rules", response_model=RulePublic, status_code=201)
    async def create_rule(body: RuleCreate, request: Request) -> RulePublic:
        """Create a rule. Unknown subjects and limits below -1 yield 422."""
        require_admin_access(request)
        rule = await db.create_rule(body.name, body.limit, body.subjects)
        return RulePublic.from_rule(rule)

    @router.get("/quota/rules/{rule_name}", response_model=RulePublic)
    async def get_rule(rule_name: str, request: Request) -> RulePublic:
        require_admin_access(request)
        return RulePublic.from_rule(await db.get_rule(rule_name))

    @router.patch("/quota/rules/{rule_name}", response_model=RulePublic)
    async def edit_rule(rule_name: str, body: RuleEdit, request: Request) -> RulePublic:
        """Update only the fields present in the body."""
        require_admin_access(request)
        rule = await db.edit_rule(rule_name, limit=body.limit, subjects=body.subjects)
        return RulePublic.from_rule(rule)

    @router.delete("/quota/rules/{rule_name}", status_code=204)
    async def delete_rule(rule_name: str, request: Request) -> Response:
        """Delete a rule and every group association it has."""
        require_admin_access(request)
        await db.delete_rule(rule_name)
        return Response(status_code=204)

    # ── Groups ─────────────────────────────────────────────────

    @router.get("/quota/groups", response_model=list[GroupPublic])
    async def list_groups(request: Request) -> list[GroupPublic]:
        """List all groups with their rules."""
        require_admin_access(request)
        return [g.to_public() for g in await db.list_groups()]

    @router.post("/quota/groups", response_model=GroupPublic, status_code=201)
    async def create_group(body: GroupCreate, request: Request) -> GroupPublic:
        require_admin_access(request)
        group = await db.create_group(body.name)
        return group.to_public()

    @router.get("/quota/groups/{group_name}", response_model=GroupPublic)
    async def get_group(group_name: str, request: Request) -> GroupPublic:
        require_admin_access(request)
        return (await db.get_group(group_name)).to_public()

    @router.delete("/quota/groups/{group_name}", status_code=204)
    async def delete_group(group_name: str, request: Request) -> Response:
        """Delete a group (409 while it still has members)."""
        require_admin_access(request)
        await db.delete_group(group_name)
        return Response(status_code=204)

    @router.put("/quota/groups/{group_name}/rules/{rule_name}", status_code=204)
    async def add_rule_to_group(group_name: str, rule_name: str, request: Request) -> Response:
        require_admin_access(request)
        await db.add_rule_to_group(group_name, rule_name)
        return Response(status_code=204)

    @router.delete("/quota/groups/{group_name}/rules/{rule_name}", status_code=204)
    async def remove_rule_from_group(group_name: str, rule_name: str, request: Request) -> Response:
        require_admin_access(request)
        await db.remove_rule_from_group(group_name, rule_name)
        return Response(status_code=204)

    # ── Group membership ──────────────────────────────────────

    @router.get("/quota/groups/{group_name}/users", response_model=list[PrincipalPublic])
    async def list_group_users(
        group_name: str,
        request: Request,
        response: Response,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> list[PrincipalPublic]:
        """List principals mapped to a group (paginated, total in X-Total-Count)."""
        require_admin_access(request)
        offset, size = page_window(page, limit)
        total, members = await db.list_group_members(group_name, offset, size)
        set_total_count(response, total)
        return [PrincipalPublic(kind=m.kind, id=m.id) for m in members]

    @router.put("/quota/groups/{group_name}/users/{principal_id}", status_code=204)
    async def add_user_to_group(
        group_name: str,
        principal_id: int,
        request: Request,
        kind: PrincipalKind = PrincipalKind.USER,
    ) -> Response:
        """Map a user (or, with ``?kind=org``, an organisation) into a group."""
        require_admin_access(request)
        await db.add_principal_to_group(group_name, Principal(kind=kind, id=principal_id))
        return Response(status_code=204)

    @router.delete("/quota/groups/{group_name}/users/{principal_id}", status_code=204)
    async def remove_user_from_group(
        group_name: str,
        principal_id: int,
        request: Request,
        kind: PrincipalKind = PrincipalKind.USER,
    ) -> Response:
        require_admin_access(request)
        await db.remove_principal_from_group(group_name, Principal(kind=kind, id=principal_id))
        return Response(status_code=204)

    # ── Per-principal quota ───────────────────────────────────

    @router.get("/users/{user_id}/quota", response_model=QuotaInfo)
    async def get_user_quota(user_id: int, request: Request) -> QuotaInfo:
        """Usage, groups and rules of a user."""
        require_admin_access(request)
        return await service.get_quota_info(Principal(kind=PrincipalKind.USER, id=user_id))

    @router.post("/users/{user_id}/quota/groups", response_model=list[GroupPublic])
    async def set_user_quota_groups(user_id: int, body: SetGroups, request: Request) -> list[GroupPublic]:
        """Replace the user's group set; an unknown group aborts the whole change."""
        require_admin_access(request)
        groups = await db.set_principal_groups(Principal(kind=PrincipalKind.USER, id=user_id), body.groups)
        return [g.to_public() for g in groups]

    @router.get("/orgs/{org_id}/quota", response_model=QuotaInfo)
    async def get_org_quota(org_id: int, request: Request) -> QuotaInfo:
        require_admin_access(request)
        return await service.get_quota_info(Principal(kind=PrincipalKind.ORG, id=org_id))

    @router.post("/orgs/{org_id}/quota/groups", response_model=list[GroupPublic])
    async def set_org_quota_groups(org_id: int, body: SetGroups, request: Request) -> list[GroupPublic]:
        require_admin_access(request)
        groups = await db.set_principal_groups(Principal(kind=PrincipalKind.ORG, id=org_id), body.groups)
        return [g.to_public() for g in groups]

    return router
