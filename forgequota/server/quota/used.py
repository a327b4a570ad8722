"""Storage usage snapshot for one principal.

``Used`` is a passive value: the accounting queries fill it in once per
request and every subject lookup afterwards is a constant-time read.
"""

from pydantic import BaseModel, Field

from forgequota.server.quota.subjects import LimitSubject


class UsedGit(BaseModel):
    code: int = Field(0, ge=0, description="Git object storage in bytes")
    lfs: int = Field(0, ge=0, description="Git LFS object storage in bytes")


class UsedRepos(BaseModel):
    """Repository storage (code + LFS) partitioned by visibility."""

    public: int = Field(0, ge=0)
    private: int = Field(0, ge=0)


class UsedAttachments(BaseModel):
    issues: int = Field(0, ge=0, description="Attachments not linked to a release")
    releases: int = Field(0, ge=0, description="Attachments on releases")


class UsedAssets(BaseModel):
    attachments: UsedAttachments = Field(default_factory=UsedAttachments)
    artifacts: int = Field(0, ge=0, description="CI artifacts (compressed size)")
    packages: int = Field(0, ge=0, description="Package registry blobs")


class Used(BaseModel):
    """Bytes a principal currently occupies, per storage category."""

    git: UsedGit = Field(default_factory=UsedGit)
    repos: UsedRepos = Field(default_factory=UsedRepos)
    assets: UsedAssets = Field(default_factory=UsedAssets)

    def git_size(self) -> int:
        return self.git.code + self.git.lfs

    def attachments_size(self) -> int:
        return self.assets.attachments.issues + self.assets.attachments.releases

    def assets_size(self) -> int:
        return self.attachments_size() + self.assets.artifacts + self.assets.packages

    def total(self) -> int:
        return self.git_size() + self.assets_size()

    def for_subject(self, subject: LimitSubject) -> int:
        """Usage counted against ``subject``.

        Roll-ups are never smaller than anything they contain. The wiki has
        no backing storage yet and always reads as 0.
        """
        if subject == LimitSubject.SIZE_ALL:
            return self.total()
        if subject in (LimitSubject.SIZE_REPOS_ALL, LimitSubject.SIZE_GIT_ALL):
            return self.git_size()
        if subject == LimitSubject.SIZE_REPOS_PUBLIC:
            return self.repos.public
        if subject == LimitSubject.SIZE_REPOS_PRIVATE:
            return self.repos.private
        if subject == LimitSubject.SIZE_GIT_LFS:
            return self.git.lfs
        if subject == LimitSubject.SIZE_ASSETS_ALL:
            return self.assets_size()
        if subject == LimitSubject.SIZE_ASSETS_ATTACHMENTS_ALL:
            return self.attachments_size()
        if subject == LimitSubject.SIZE_ASSETS_ATTACHMENTS_ISSUES:
            return self.assets.attachments.issues
        if subject == LimitSubject.SIZE_ASSETS_ATTACHMENTS_RELEASES:
            return self.assets.attachments.releases
        if subject == LimitSubject.SIZE_ASSETS_ARTIFACTS:
            return self.assets.artifacts
        if subject == LimitSubject.SIZE_ASSETS_PACKAGES_ALL:
            return self.assets.packages
        return 0

    def summary(self) -> dict[str, int]:
        """Flat ``{subject: bytes}`` view used by the quota info endpoints."""
        return {subject.value: self.for_subject(subject) for subject in LimitSubject}
