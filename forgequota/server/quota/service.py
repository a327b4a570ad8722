"""Quota service: the per-request evaluation pipeline.

Rules, groups and usage for one request are read inside a single read
transaction so the evaluator sees one consistent snapshot.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from forgequota.server.quota import accounting
from forgequota.server.quota.db import QuotaDB, rules_of
from forgequota.server.quota.evaluator import Evaluation, evaluate
from forgequota.server.quota.models import (
    ArtifactUsage,
    AttachmentUsage,
    PackageUsage,
    Principal,
    PrincipalPublic,
    QuotaInfo,
    RulePublic,
)
from forgequota.server.quota.subjects import LimitSubject
from forgequota.server.quota.used import Used

logger = logging.getLogger("forgequota.server.quota")


@dataclass(frozen=True)
class QuotaConfig:
    """Process-wide quota switches, passed explicitly into the pipeline."""

    enabled: bool = False
    default_groups: tuple[str, ...] = ()

    @classmethod
    def from_settings(cls, settings: Any) -> "QuotaConfig":
        return cls(
            enabled=bool(settings.quota_enabled),
            default_groups=tuple(settings.quota_default_groups or ()),
        )


class QuotaService:
    """Evaluate, enforce and report quotas for principals."""

    def __init__(self, db: QuotaDB, config: Optional[QuotaConfig] = None) -> None:
        self.db = db
        self.config = config or QuotaConfig()

    def update_config(self, config: QuotaConfig) -> None:
        if config != self.config:
            logger.info(
                "Quota config updated: enabled=%s default_groups=%s",
                config.enabled,
                list(config.default_groups),
            )
        self.config = config

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def default_groups(self) -> Sequence[str]:
        return self.config.default_groups

    # ── Evaluation ────────────────────────────────────────────

    async def evaluate(self, principal: Principal, subject: LimitSubject) -> Evaluation:
        """Evaluate a write under ``subject`` for ``principal`` on one snapshot."""
        async with self.db.snapshot() as session:
            rules = await self.db.get_rules_for_principal(principal, self.default_groups, session)
            if not rules:
                return Evaluation(subject=subject)
            used = await accounting.get_used_for_principal(session, principal)
        return evaluate(used, subject, rules)

    async def check(self, principal: Principal, subject: LimitSubject) -> bool:
        """Would a write under ``subject`` be allowed right now?

        Always ``True`` while quota enforcement is disabled.
        """
        if not self.enabled:
            return True
        return (await self.evaluate(principal, subject)).allowed

    async def enforce(self, principal: Principal, subject: LimitSubject) -> Evaluation:
        """Raise :class:`QuotaExceededError` if the write is not allowed."""
        if not self.enabled:
            return Evaluation(subject=subject)

        result = await self.evaluate(principal, subject)
        if not result.allowed:
            logger.info(
                "Quota exceeded for %s on %s: %s",
                principal,
                subject.value,
                ", ".join(f"{v.rule.name} ({v.used}/{v.limit})" for v in result.violations),
            )
        result.raise_for_status()
        return result

    # ── Introspection ─────────────────────────────────────────

    async def get_used(self, principal: Principal) -> Used:
        async with self.db.snapshot() as session:
            return await accounting.get_used_for_principal(session, principal)

    async def get_quota_info(self, principal: Principal, degrade: bool = False) -> QuotaInfo:
        """Usage, groups and effective rules of ``principal``.

        Args:
            degrade: Report ``used=None`` instead of failing when the usage
                queries fail. Meant for read-only self introspection.
        """
        async with self.db.snapshot() as session:
            groups = await self.db.get_groups_for_principal(principal, self.default_groups, session)
            used: Optional[Used]
            if degrade:
                try:
                    used = await accounting.get_used_for_principal(session, principal)
                except Exception:
                    logger.exception("Usage lookup failed for %s", principal)
                    used = None
            else:
                used = await accounting.get_used_for_principal(session, principal)

        return QuotaInfo(
            principal=PrincipalPublic(kind=principal.kind, id=principal.id),
            used=used,
            usage=used.summary() if used is not None else None,
            groups=[g.to_public() for g in groups],
            rules=[RulePublic.from_rule(r) for r in rules_of(groups)],
        )

    async def list_attachments(
        self, principal: Principal, offset: int = 0, limit: Optional[int] = None
    ) -> tuple[int, list[AttachmentUsage]]:
        async with self.db.snapshot() as session:
            return await accounting.list_attachments(session, principal, offset, limit)

    async def list_artifacts(
        self, principal: Principal, offset: int = 0, limit: Optional[int] = None
    ) -> tuple[int, list[ArtifactUsage]]:
        async with self.db.snapshot() as session:
            return await accounting.list_artifacts(session, principal, offset, limit)

    async def list_packages(
        self, principal: Principal, offset: int = 0, limit: Optional[int] = None
    ) -> tuple[int, list[PackageUsage]]:
        async with self.db.snapshot() as session:
            return await accounting.list_packages(session, principal, offset, limit)
