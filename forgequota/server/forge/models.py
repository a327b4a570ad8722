"""Forge asset tables measured by the quota accounting queries.

These bind the subset of the forge schema that carries sizes. In a real
deployment they already exist and are owned by the forge; ``create_all``
only creates them for a standalone or test database.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, Column, DateTime, Index, String
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Repository(SQLModel, table=True):
    """A repository; ``owner_id`` is the owning user or organisation."""

    __tablename__ = "repository"
    __table_args__ = (Index("idx_repository_owner", "owner_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: int = Field(sa_column=Column(BigInteger, nullable=False))
    name: str = Field(sa_column=Column(String(255), nullable=False))
    is_private: bool = Field(default=False)
    git_size: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, default=0))
    lfs_size: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, default=0))


class Attachment(SQLModel, table=True):
    """Uploaded file attached to an issue, comment or release.

    Release attachments carry ``release_id``. Everything else, including
    uploads not yet linked to an issue or comment, is an issue attachment.
    """

    __tablename__ = "attachment"
    __table_args__ = (Index("idx_attachment_repo", "repo_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    uuid: str = Field(sa_column=Column(String(40), unique=True, nullable=False))
    repo_id: int = Field(sa_column=Column(BigInteger, nullable=False))
    issue_id: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    comment_id: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    release_id: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    uploader_id: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, default=0))
    name: str = Field(sa_column=Column(String(255), nullable=False))
    size: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, default=0))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class ActionArtifact(SQLModel, table=True):
    """CI artifact produced by a workflow run in ``repo_id``."""

    __tablename__ = "action_artifact"
    __table_args__ = (Index("idx_action_artifact_repo", "repo_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    run_id: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, default=0))
    repo_id: int = Field(sa_column=Column(BigInteger, nullable=False))
    owner_id: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, default=0))
    artifact_name: str = Field(sa_column=Column(String(255), nullable=False))
    file_compressed_size: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, default=0))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class Package(SQLModel, table=True):
    """A registry package, either linked to a repository or owner-attached."""

    __tablename__ = "package"
    __table_args__ = (Index("idx_package_owner", "owner_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: int = Field(sa_column=Column(BigInteger, nullable=False))
    repo_id: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    type: str = Field(default="generic", sa_column=Column(String(32), nullable=False))
    name: str = Field(sa_column=Column(String(255), nullable=False))


class PackageVersion(SQLModel, table=True):
    __tablename__ = "package_version"

    id: Optional[int] = Field(default=None, primary_key=True)
    package_id: int = Field(foreign_key="package.id", index=True)
    version: str = Field(sa_column=Column(String(255), nullable=False))


class PackageBlob(SQLModel, table=True):
    __tablename__ = "package_blob"

    id: Optional[int] = Field(default=None, primary_key=True)
    size: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, default=0))
    hash_sha256: str = Field(default="", sa_column=Column(String(64), nullable=False, default=""))


class PackageFile(SQLModel, table=True):
    __tablename__ = "package_file"

    id: Optional[int] = Field(default=None, primary_key=True)
    version_id: int = Field(foreign_key="package_version.id", index=True)
    blob_id: int = Field(foreign_key="package_blob.id", index=True)
    name: str = Field(sa_column=Column(String(255), nullable=False))
