"""Operation classification and HTTP route matching."""

import pytest

from forgequota.server.quota.enforcement import (
    OPERATION_SUBJECTS,
    Operation,
    classify,
    match_operation,
    parse_operation,
)
from forgequota.server.quota.subjects import LimitSubject, is_leaf

S = LimitSubject


@pytest.mark.parametrize(
    "operation, subject",
    [
        (Operation.LFS_UPLOAD, S.SIZE_GIT_LFS),
        (Operation.ISSUE_ATTACHMENT, S.SIZE_ASSETS_ATTACHMENTS_ISSUES),
        (Operation.RELEASE_ATTACHMENT, S.SIZE_ASSETS_ATTACHMENTS_RELEASES),
        (Operation.ARTIFACT_UPLOAD, S.SIZE_ASSETS_ARTIFACTS),
        (Operation.PACKAGE_UPLOAD, S.SIZE_ASSETS_PACKAGES_ALL),
        (Operation.REPO_CREATE, S.SIZE_REPOS_ALL),
        (Operation.REPO_FORK, S.SIZE_REPOS_ALL),
    ],
)
def test_classify(operation, subject):
    assert classify(operation) is subject


def test_every_operation_is_classified():
    assert set(OPERATION_SUBJECTS) == set(Operation)


def test_push_uses_visibility_when_known():
    assert classify(Operation.GIT_PUSH) is S.SIZE_GIT_ALL
    assert classify(Operation.GIT_PUSH, "public") is S.SIZE_REPOS_PUBLIC
    assert classify(Operation.GIT_PUSH, " Private ") is S.SIZE_REPOS_PRIVATE
    assert classify(Operation.GIT_PUSH, "internal") is S.SIZE_GIT_ALL
    assert is_leaf(classify(Operation.GIT_PUSH, "public"))


def test_visibility_ignored_for_other_operations():
    assert classify(Operation.LFS_UPLOAD, "private") is S.SIZE_GIT_LFS


def test_parse_operation():
    assert parse_operation(" LFS.Upload ") is Operation.LFS_UPLOAD
    with pytest.raises(ValueError, match="unknown operation"):
        parse_operation("wiki.edit")


@pytest.mark.parametrize(
    "method, path, operation",
    [
        ("POST", "/alice/proj.git/git-receive-pack", Operation.GIT_PUSH),
        ("post", "/alice/proj.git/info/lfs/objects/batch", Operation.LFS_UPLOAD),
        ("PUT", "/alice/proj.git/info/lfs/objects/abc123", Operation.LFS_UPLOAD),
        ("POST", "/api/v1/repos/alice/proj/issues/3/assets", Operation.ISSUE_ATTACHMENT),
        ("POST", "/api/v1/repos/alice/proj/issues/comments/9/assets", Operation.ISSUE_ATTACHMENT),
        ("POST", "/api/v1/repos/alice/proj/releases/1/assets", Operation.RELEASE_ATTACHMENT),
        ("PUT", "/api/actions_pipeline/_apis/pipelines/workflows/12/artifacts", Operation.ARTIFACT_UPLOAD),
        ("PUT", "/api/packages/alice/generic/tool/1.0/tool.bin", Operation.PACKAGE_UPLOAD),
        ("POST", "/api/v1/user/repos", Operation.REPO_CREATE),
        ("POST", "/api/v1/orgs/acme/repos/", Operation.REPO_CREATE),
        ("POST", "/api/v1/repos/migrate", Operation.REPO_CREATE),
        ("POST", "/api/v1/repos/alice/proj/forks", Operation.REPO_FORK),
    ],
)
def test_match_operation(method, path, operation):
    assert match_operation(method, path) is operation


@pytest.mark.parametrize(
    "method, path",
    [
        ("GET", "/alice/proj.git/info/lfs/objects/abc123"),
        ("DELETE", "/api/v1/repos/alice/proj/releases/1/assets"),
        ("GET", "/api/v1/user/repos"),
        ("POST", "/alice/proj.git/git-upload-pack"),
        ("POST", "/api/v1/repos/alice/proj/issues/3/assets/extra"),
        ("POST", "/alice/proj/sub.git/git-receive-pack"),
    ],
)
def test_reads_and_unknown_paths_not_gated(method, path):
    assert match_operation(method, path) is None
