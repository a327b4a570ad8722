"""Data models for the quota system.

SQLModel table models double as both SQLAlchemy ORM models and Pydantic models.
The same engine works with SQLite, MySQL, PostgreSQL, etc.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from pydantic import BaseModel, field_validator
from pydantic import Field as PydanticField
from sqlalchemy import BigInteger, Column, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

from forgequota.server.quota.rule import Rule
from forgequota.server.quota.subjects import LimitSubject, parse_subjects
from forgequota.server.quota.used import Used

# ── Enums ─────────────────────────────────────────────────────


class PrincipalKind(str, Enum):
    """Kinds of principal a quota group can be mapped to."""

    USER = "user"
    ORG = "org"


# ── SQLModel table models (ORM) ──────────────────────────────


class QuotaRuleTable(SQLModel, table=True):
    """Quota rule, keyed by name.

    ``subjects`` holds a JSON list of canonical subject strings.
    """

    __tablename__ = "quota_rule"

    name: str = Field(sa_column=Column(String(255), primary_key=True))
    limit: int = Field(sa_column=Column("limit", BigInteger, nullable=False))
    subjects: str = Field(default="[]", sa_column=Column(Text, nullable=False))

    def to_rule(self) -> Rule:
        return Rule(name=self.name, limit=self.limit, subjects=parse_subjects(json.loads(self.subjects or "[]")))

    @staticmethod
    def encode_subjects(subjects: tuple[LimitSubject, ...]) -> str:
        return json.dumps([s.value for s in subjects])


class QuotaGroupTable(SQLModel, table=True):
    """Named collection of rules that principals are mapped to."""

    __tablename__ = "quota_group"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(sa_column=Column(String(255), unique=True, nullable=False))


class QuotaGroupRuleLink(SQLModel, table=True):
    """Many-to-many link between groups and rules."""

    __tablename__ = "quota_group_rule"

    group_id: int = Field(
        sa_column=Column(Integer, ForeignKey("quota_group.id", ondelete="CASCADE"), primary_key=True),
    )
    rule_name: str = Field(
        sa_column=Column(String(255), ForeignKey("quota_rule.name", ondelete="CASCADE"), primary_key=True),
    )


class QuotaMappingTable(SQLModel, table=True):
    """Membership of a user or organisation in a quota group."""

    __tablename__ = "quota_mapping"
    __table_args__ = (
        UniqueConstraint("kind", "mapped_id", "quota_group_id", name="uq_quota_mapping"),
        Index("idx_quota_mapping_principal", "kind", "mapped_id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    kind: str = Field(sa_column=Column(String(16), nullable=False))
    mapped_id: int = Field(sa_column=Column(BigInteger, nullable=False))
    quota_group_id: int = Field(
        sa_column=Column(Integer, ForeignKey("quota_group.id", ondelete="CASCADE"), nullable=False),
    )


# ── Domain views ──────────────────────────────────────────────


class Principal(BaseModel):
    """A user or organisation, identified by the forge's owner ID."""

    kind: PrincipalKind = PrincipalKind.USER
    id: int

    model_config = {"frozen": True}

    @classmethod
    def parse(cls, value: str) -> "Principal":
        """Parse ``"user:42"`` / ``"org:7"`` (a bare number means a user)."""
        text = value.strip()
        kind, _, ident = text.rpartition(":")
        return cls(kind=PrincipalKind(kind or PrincipalKind.USER.value), id=int(ident))

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


@dataclass
class Group:
    """A quota group with its rules loaded."""

    name: str
    id: Optional[int] = None
    rules: list[Rule] = field(default_factory=list)

    def to_public(self) -> "GroupPublic":
        return GroupPublic(name=self.name, rules=[RulePublic.from_rule(r) for r in self.rules])


# ── Pydantic models (API request/response) ────────────────────


class RulePublic(BaseModel):
    """Public rule info."""

    name: str
    limit: int = PydanticField(..., description="Byte ceiling; -1 = unlimited, 0 = deny")
    subjects: list[str] = PydanticField(default_factory=list)

    @classmethod
    def from_rule(cls, rule: Rule) -> "RulePublic":
        return cls(name=rule.name, limit=rule.limit, subjects=[s.value for s in rule.subjects])


class RuleCreate(BaseModel):
    """Request to create a rule."""

    name: str = PydanticField(..., min_length=1)
    limit: int
    subjects: list[str] = PydanticField(default_factory=list)


class RuleEdit(BaseModel):
    """Partial rule update; omitted fields are left unchanged."""

    limit: Optional[int] = None
    subjects: Optional[list[str]] = None


class GroupCreate(BaseModel):
    """Request to create a group."""

    name: str = PydanticField(..., min_length=1)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("group name must not be empty")
        return value


class GroupPublic(BaseModel):
    """Public group info with its rules."""

    name: str
    rules: list[RulePublic] = PydanticField(default_factory=list)


class SetGroups(BaseModel):
    """Replace a principal's group set."""

    groups: list[str] = PydanticField(default_factory=list)


class PrincipalPublic(BaseModel):
    kind: PrincipalKind
    id: int


class QuotaInfo(BaseModel):
    """Usage, groups and effective rules for one principal."""

    principal: PrincipalPublic
    used: Optional[Used] = PydanticField(None, description="None when usage could not be computed")
    usage: Optional[dict[str, int]] = PydanticField(None, description="Bytes per subject")
    groups: list[GroupPublic] = PydanticField(default_factory=list)
    rules: list[RulePublic] = PydanticField(default_factory=list)


class EnforceRequest(BaseModel):
    """Service-to-service enforcement request."""

    kind: PrincipalKind = PrincipalKind.USER
    id: int
    operation: Optional[str] = None
    subject: Optional[str] = None
    visibility: Optional[str] = None


class AttachmentUsage(BaseModel):
    id: int
    uuid: str
    name: str
    size: int
    repo_id: int
    kind: str = PydanticField(..., description="issue or release")


class ArtifactUsage(BaseModel):
    id: int
    name: str
    size: int
    repo_id: int
    run_id: int


class PackageUsage(BaseModel):
    id: int
    name: str
    type: str
    version: str
    size: int
