"""Usage accounting queries.

Materialize a :class:`Used` snapshot for one principal from the forge's
asset tables. Every figure is a ``SUM`` aggregate; the sum of no rows is 0,
never an error. All queries run on the caller's session so they share its
read transaction.
"""

from typing import Any, Optional

from sqlalchemy import Result, and_, case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from forgequota.server.forge.models import (
    ActionArtifact,
    Attachment,
    Package,
    PackageBlob,
    PackageFile,
    PackageVersion,
    Repository,
)
from forgequota.server.quota.models import (
    ArtifactUsage,
    AttachmentUsage,
    PackageUsage,
    Principal,
)
from forgequota.server.quota.used import Used, UsedAssets, UsedAttachments, UsedGit, UsedRepos


def _sum(column: Any) -> Any:
    return func.coalesce(func.sum(column), 0)


def _owned_repos(principal: Principal) -> Any:
    return select(Repository.id).where(Repository.owner_id == principal.id)  # type: ignore[arg-type]


async def _scalar(session: AsyncSession, statement: Any) -> int:
    result: Result[Any] = await session.execute(statement)
    return int(result.scalar_one() or 0)


async def get_git_used(session: AsyncSession, principal: Principal) -> tuple[UsedGit, UsedRepos]:
    repo_size = Repository.git_size + Repository.lfs_size
    result: Result[Any] = await session.execute(
        select(
            _sum(Repository.git_size),
            _sum(Repository.lfs_size),
            _sum(case((Repository.is_private, 0), else_=repo_size)),  # type: ignore[arg-type]
            _sum(case((Repository.is_private, repo_size), else_=0)),  # type: ignore[arg-type]
        ).where(Repository.owner_id == principal.id)  # type: ignore[arg-type]
    )
    code, lfs, public, private = result.one()
    return (
        UsedGit(code=int(code or 0), lfs=int(lfs or 0)),
        UsedRepos(public=int(public or 0), private=int(private or 0)),
    )


async def get_attachments_used(session: AsyncSession, principal: Principal) -> UsedAttachments:
    owned = Attachment.repo_id.in_(_owned_repos(principal))  # type: ignore[attr-defined]
    # Anything not attached to a release counts as an issue attachment,
    # including uploads not yet linked to an issue or comment.
    issues = await _scalar(
        session,
        select(_sum(Attachment.size)).where(owned, Attachment.release_id.is_(None)),  # type: ignore[union-attr]
    )
    releases = await _scalar(
        session,
        select(_sum(Attachment.size)).where(owned, Attachment.release_id.is_not(None)),  # type: ignore[union-attr]
    )
    return UsedAttachments(issues=issues, releases=releases)


async def get_artifacts_used(session: AsyncSession, principal: Principal) -> int:
    # Charged to the owner of the repository the run belongs to.
    return await _scalar(
        session,
        select(_sum(ActionArtifact.file_compressed_size)).where(
            ActionArtifact.repo_id.in_(_owned_repos(principal))  # type: ignore[attr-defined]
        ),
    )


def _packages_owned_by(principal: Principal) -> Any:
    return or_(
        Package.repo_id.in_(_owned_repos(principal)),  # type: ignore[union-attr]
        and_(Package.owner_id == principal.id, Package.repo_id.is_(None)),  # type: ignore[union-attr]
    )


async def get_packages_used(session: AsyncSession, principal: Principal) -> int:
    return await _scalar(
        session,
        select(_sum(PackageBlob.size))
        .select_from(PackageBlob)
        .join(PackageFile, PackageFile.blob_id == PackageBlob.id)  # type: ignore[arg-type]
        .join(PackageVersion, PackageFile.version_id == PackageVersion.id)  # type: ignore[arg-type]
        .join(Package, PackageVersion.package_id == Package.id)  # type: ignore[arg-type]
        .where(_packages_owned_by(principal)),
    )


async def get_used_for_principal(session: AsyncSession, principal: Principal) -> Used:
    """Materialize the usage snapshot of ``principal``."""
    git, repos = await get_git_used(session, principal)
    attachments = await get_attachments_used(session, principal)
    artifacts = await get_artifacts_used(session, principal)
    packages = await get_packages_used(session, principal)
    return Used(
        git=git,
        repos=repos,
        assets=UsedAssets(attachments=attachments, artifacts=artifacts, packages=packages),
    )


# ── Per-asset listings ────────────────────────────────────────


async def list_attachments(
    session: AsyncSession,
    principal: Principal,
    offset: int = 0,
    limit: Optional[int] = None,
) -> tuple[int, list[AttachmentUsage]]:
    """Attachments counted against ``principal``, largest first."""
    where = Attachment.repo_id.in_(_owned_repos(principal))  # type: ignore[attr-defined]
    total = await _scalar(session, select(func.count()).select_from(Attachment).where(where))
    statement = (
        select(Attachment)
        .where(where)
        .order_by(Attachment.size.desc(), Attachment.id)  # type: ignore[attr-defined]
        .offset(offset)
        .limit(limit)
    )
    result: Result[Any] = await session.execute(statement)
    items = [
        AttachmentUsage(
            id=a.id,
            uuid=a.uuid,
            name=a.name,
            size=a.size,
            repo_id=a.repo_id,
            kind="release" if a.release_id is not None else "issue",
        )
        for a in result.scalars().all()
    ]
    return total, items


async def list_artifacts(
    session: AsyncSession,
    principal: Principal,
    offset: int = 0,
    limit: Optional[int] = None,
) -> tuple[int, list[ArtifactUsage]]:
    where = ActionArtifact.repo_id.in_(_owned_repos(principal))  # type: ignore[attr-defined]
    total = await _scalar(session, select(func.count()).select_from(ActionArtifact).where(where))
    statement = (
        select(ActionArtifact)
        .where(where)
        .order_by(ActionArtifact.file_compressed_size.desc(), ActionArtifact.id)  # type: ignore[attr-defined]
        .offset(offset)
        .limit(limit)
    )
    result: Result[Any] = await session.execute(statement)
    items = [
        ArtifactUsage(
            id=a.id,
            name=a.artifact_name,
            size=a.file_compressed_size,
            repo_id=a.repo_id,
            run_id=a.run_id,
        )
        for a in result.scalars().all()
    ]
    return total, items


async def list_packages(
    session: AsyncSession,
    principal: Principal,
    offset: int = 0,
    limit: Optional[int] = None,
) -> tuple[int, list[PackageUsage]]:
    """Package versions counted against ``principal`` with their blob totals."""
    where = _packages_owned_by(principal)
    size = _sum(PackageBlob.size)
    base = (
        select(PackageVersion.id, Package.name, Package.type, PackageVersion.version, size.label("size"))
        .select_from(PackageVersion)
        .join(Package, PackageVersion.package_id == Package.id)  # type: ignore[arg-type]
        .outerjoin(PackageFile, PackageFile.version_id == PackageVersion.id)  # type: ignore[arg-type]
        .outerjoin(PackageBlob, PackageFile.blob_id == PackageBlob.id)  # type: ignore[arg-type]
        .where(where)
        .group_by(PackageVersion.id, Package.name, Package.type, PackageVersion.version)
    )
    total = await _scalar(session, select(func.count()).select_from(base.subquery()))
    result: Result[Any] = await session.execute(
        base.order_by(size.desc(), PackageVersion.id).offset(offset).limit(limit)  # type: ignore[arg-type]
    )
    items = [
        PackageUsage(id=row[0], name=row[1], type=row[2], version=row[3], size=int(row[4] or 0))
        for row in result.all()
    ]
    return total, items
