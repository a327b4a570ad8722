"""Operation classification for quota enforcement.

Maps forge write operations to the leaf subject they consume, and HTTP
requests to operations. Reads and deletions are never classified, so they
are never gated.
"""

import re
from enum import Enum
from typing import NamedTuple, Optional, Pattern

from forgequota.server.quota.subjects import LimitSubject


class Operation(str, Enum):
    """Forge write operations that consume storage."""

    GIT_PUSH = "git.push"
    LFS_UPLOAD = "lfs.upload"
    ISSUE_ATTACHMENT = "attachment.issue"
    RELEASE_ATTACHMENT = "attachment.release"
    ARTIFACT_UPLOAD = "artifact.upload"
    PACKAGE_UPLOAD = "package.upload"
    REPO_CREATE = "repo.create"
    REPO_FORK = "repo.fork"


OPERATION_SUBJECTS: dict[Operation, LimitSubject] = {
    Operation.GIT_PUSH: LimitSubject.SIZE_GIT_ALL,
    Operation.LFS_UPLOAD: LimitSubject.SIZE_GIT_LFS,
    Operation.ISSUE_ATTACHMENT: LimitSubject.SIZE_ASSETS_ATTACHMENTS_ISSUES,
    Operation.RELEASE_ATTACHMENT: LimitSubject.SIZE_ASSETS_ATTACHMENTS_RELEASES,
    Operation.ARTIFACT_UPLOAD: LimitSubject.SIZE_ASSETS_ARTIFACTS,
    Operation.PACKAGE_UPLOAD: LimitSubject.SIZE_ASSETS_PACKAGES_ALL,
    Operation.REPO_CREATE: LimitSubject.SIZE_REPOS_ALL,
    Operation.REPO_FORK: LimitSubject.SIZE_REPOS_ALL,
}

_PUSH_BY_VISIBILITY = {
    "public": LimitSubject.SIZE_REPOS_PUBLIC,
    "private": LimitSubject.SIZE_REPOS_PRIVATE,
}


def parse_operation(value: str) -> Operation:
    try:
        return Operation(value.strip().lower())
    except ValueError:
        raise ValueError(f"unknown operation: {value}") from None


def classify(operation: Operation, visibility: Optional[str] = None) -> LimitSubject:
    """Leaf subject consumed by ``operation``.

    A push lands on ``size:repos:public`` / ``size:repos:private`` when the
    target repository's visibility is known, ``size:git:all`` otherwise.
    """
    if operation is Operation.GIT_PUSH and visibility:
        subject = _PUSH_BY_VISIBILITY.get(visibility.strip().lower())
        if subject is not None:
            return subject
    return OPERATION_SUBJECTS[operation]


# ── HTTP route table ──────────────────────────────────────────


class GatedRoute(NamedTuple):
    method: str
    pattern: Pattern[str]
    operation: Operation


def _route(method: str, path: str, operation: Operation) -> GatedRoute:
    # ``{name}`` matches one path segment
    regex = re.sub(r"\\\{[^}]+\\\}", "[^/]+", re.escape(path))
    return GatedRoute(method, re.compile(f"^{regex}/?$"), operation)


DEFAULT_GATED_ROUTES: tuple[GatedRoute, ...] = (
    _route("POST", "/{owner}/{repo}.git/git-receive-pack", Operation.GIT_PUSH),
    _route("POST", "/{owner}/{repo}.git/info/lfs/objects/batch", Operation.LFS_UPLOAD),
    _route("PUT", "/{owner}/{repo}.git/info/lfs/objects/{oid}", Operation.LFS_UPLOAD),
    _route("POST", "/api/v1/repos/{owner}/{repo}/issues/{index}/assets", Operation.ISSUE_ATTACHMENT),
    _route("POST", "/api/v1/repos/{owner}/{repo}/issues/comments/{id}/assets", Operation.ISSUE_ATTACHMENT),
    _route("POST", "/api/v1/repos/{owner}/{repo}/releases/{id}/assets", Operation.RELEASE_ATTACHMENT),
    _route("PUT", "/api/actions_pipeline/_apis/pipelines/workflows/{run}/artifacts", Operation.ARTIFACT_UPLOAD),
    _route("PUT", "/api/packages/{owner}/{type}/{name}/{version}", Operation.PACKAGE_UPLOAD),
    _route("PUT", "/api/packages/{owner}/{type}/{name}/{version}/{file}", Operation.PACKAGE_UPLOAD),
    _route("POST", "/api/v1/user/repos", Operation.REPO_CREATE),
    _route("POST", "/api/v1/orgs/{org}/repos", Operation.REPO_CREATE),
    _route("POST", "/api/v1/repos/migrate", Operation.REPO_CREATE),
    _route("POST", "/api/v1/repos/{owner}/{repo}/forks", Operation.REPO_FORK),
)


def match_operation(
    method: str,
    path: str,
    routes: tuple[GatedRoute, ...] = DEFAULT_GATED_ROUTES,
) -> Optional[Operation]:
    """Operation a request performs, or ``None`` when it is not gated."""
    method = method.upper()
    for route in routes:
        if route.method == method and route.pattern.match(path):
            return route.operation
    return None
