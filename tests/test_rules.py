"""Unit tests for Rule evaluation and the evaluator.

Covers the intersection semantics end to end with literal byte counts.
"""

import pytest

from forgequota.server.quota.errors import InvalidLimitError, QuotaExceededError
from forgequota.server.quota.evaluator import evaluate
from forgequota.server.quota.rule import Rule, validate_limit
from forgequota.server.quota.subjects import LimitSubject, direct_subjects
from forgequota.server.quota.used import Used, UsedAssets, UsedAttachments, UsedGit, UsedRepos

S = LimitSubject
MB = 1024 * 1024


def _rule(name: str, limit: int, *subjects: LimitSubject) -> Rule:
    return Rule.create(name, limit, subjects)


# ── Rule construction ─────────────────────────────────────────


def test_create_rejects_empty_subjects():
    with pytest.raises(InvalidLimitError):
        Rule.create("empty", 100, [])


def test_create_rejects_limit_below_unlimited():
    with pytest.raises(InvalidLimitError) as exc_info:
        Rule.create("bad", -2, [S.SIZE_ALL])
    assert exc_info.value.details() == {"limit": -2}


def test_create_rejects_blank_name():
    with pytest.raises(InvalidLimitError):
        Rule.create("   ", 1, [S.SIZE_ALL])


def test_create_dedupes_subjects():
    rule = Rule.create("r", 10, [S.SIZE_ALL, S.SIZE_ALL, S.SIZE_GIT_LFS])
    assert rule.subjects == (S.SIZE_ALL, S.SIZE_GIT_LFS)


@pytest.mark.parametrize("limit", [-1, 0, 1, 2**62])
def test_validate_limit_accepts(limit):
    assert validate_limit(limit) == limit


# ── Rule.evaluate ─────────────────────────────────────────────


def test_unlimited_always_applies_and_passes():
    rule = _rule("free", -1, S.SIZE_GIT_LFS)
    used = Used(git=UsedGit(code=10**12, lfs=10**12))
    for subject in LimitSubject:
        assert rule.evaluate(used, subject) == (True, True)


def test_direct_match():
    rule = _rule("lfs", 100, S.SIZE_GIT_LFS)
    assert rule.evaluate(Used(git=UsedGit(lfs=100)), S.SIZE_GIT_LFS) == (True, True)
    assert rule.evaluate(Used(git=UsedGit(lfs=101)), S.SIZE_GIT_LFS) == (False, True)


def test_rollup_match():
    rule = _rule("assets", 100, S.SIZE_ASSETS_ALL)
    used = Used(assets=UsedAssets(artifacts=60, packages=50))
    # The roll-up total is checked, not the leaf alone
    assert rule.evaluate(used, S.SIZE_ASSETS_ARTIFACTS) == (False, True)


def test_mute_rule():
    rule = _rule("lfs", 1, S.SIZE_GIT_LFS)
    assert rule.evaluate(Used(), S.SIZE_ASSETS_PACKAGES_ALL) == (True, False)
    # A leaf does not cover its parent
    assert rule.evaluate(Used(), S.SIZE_GIT_ALL) == (True, False)


def test_zero_limit_denies_even_with_zero_usage():
    rule = _rule("deny", 0, S.SIZE_ALL)
    assert rule.evaluate(Used(), S.SIZE_WIKI) == (False, True)


def test_multiple_declarations_must_all_pass():
    rule = _rule("mixed", 100, S.SIZE_ALL, S.SIZE_ASSETS_ALL)
    used = Used(git=UsedGit(code=90), assets=UsedAssets(packages=20))
    # assets:all = 20 passes, all = 110 fails
    assert rule.evaluate(used, S.SIZE_ASSETS_PACKAGES_ALL) == (False, True)


def test_direct_declaration_takes_precedence():
    rule = _rule("issues", 50, S.SIZE_ASSETS_ATTACHMENTS_ISSUES, S.SIZE_ALL)
    used = Used(git=UsedGit(code=1000), assets=UsedAssets(attachments=UsedAttachments(issues=10)))
    assert rule.evaluate(used, S.SIZE_ASSETS_ATTACHMENTS_ISSUES) == (True, True)


@pytest.mark.parametrize("declared", list(LimitSubject))
@pytest.mark.parametrize("subject", list(LimitSubject))
def test_applied_iff_declared_or_covering(declared, subject):
    rule = _rule("r", 10**15, declared)
    _, applied = rule.evaluate(Used(), subject)
    assert applied == (declared == subject or subject in direct_subjects(declared))


# ── Evaluator scenarios ───────────────────────────────────────


def test_no_rules_any_write_allowed():
    result = evaluate(Used(git=UsedGit(code=100 * MB)), S.SIZE_GIT_ALL, [])
    assert result.allowed is True
    assert result.applied == []
    result.raise_for_status()


def test_hard_deny():
    deny_all = _rule("deny-all", 0, S.SIZE_ALL)
    result = evaluate(Used(), S.SIZE_ASSETS_ATTACHMENTS_ISSUES, [deny_all])
    assert result.allowed is False
    assert [(a.rule.name, a.limit) for a in result.applied] == [("deny-all", 0)]
    with pytest.raises(QuotaExceededError) as exc_info:
        result.raise_for_status()
    assert exc_info.value.status_code == 413
    assert exc_info.value.rule_name == "deny-all"


def test_rollup_binds_leaf():
    repo_size = _rule("repo-size", 15728640, S.SIZE_REPOS_ALL)

    before = evaluate(Used(git=UsedGit(code=15000000)), S.SIZE_REPOS_PUBLIC, [repo_size])
    assert before.allowed is True
    assert [(a.rule.name, a.limit) for a in before.applied] == [("repo-size", 15728640)]

    after = evaluate(Used(git=UsedGit(code=16048576)), S.SIZE_REPOS_PUBLIC, [repo_size])
    assert after.allowed is False
    assert [(a.rule.name, a.limit) for a in after.applied] == [("repo-size", 15728640)]
    assert after.violations[0].used == 16048576
    assert after.violations[0].subject is S.SIZE_REPOS_ALL


def test_unlimited_does_not_rescue_sibling_deny():
    rules = [_rule("deny-all", 0, S.SIZE_ALL), _rule("allow-all", -1, S.SIZE_ALL)]
    result = evaluate(Used(), S.SIZE_GIT_LFS, rules)
    assert result.allowed is False
    assert {a.rule.name: a.allowed for a in result.applied} == {"deny-all": False, "allow-all": True}


def test_mute_rule_not_reported():
    lfs_cap = _rule("lfs-cap", 1024 * MB, S.SIZE_GIT_LFS)
    result = evaluate(Used(git=UsedGit(lfs=10 * 1024 * MB)), S.SIZE_ASSETS_PACKAGES_ALL, [lfs_cap])
    assert result.allowed is True
    assert result.applied == []


def test_total_over_limit():
    free_tier = _rule("free-tier", 100 * MB, S.SIZE_ALL)
    used = Used(git=UsedGit(code=104857601))
    assert used.total() == 104857601
    assert evaluate(used, S.SIZE_ASSETS_ARTIFACTS, [free_tier]).allowed is False


def test_all_violations_collected():
    rules = [
        _rule("small", 10, S.SIZE_ASSETS_ALL),
        _rule("big", 10**9, S.SIZE_ALL),
        _rule("tiny", 5, S.SIZE_ASSETS_PACKAGES_ALL),
    ]
    used = Used(assets=UsedAssets(packages=20))
    result = evaluate(used, S.SIZE_ASSETS_PACKAGES_ALL, rules)
    assert result.allowed is False
    assert [v.rule.name for v in result.violations] == ["small", "tiny"]
    assert len(result.applied) == 3


def test_exceeded_message_names_rule_and_usage():
    asset_size = _rule("asset-size", 15728640, S.SIZE_ASSETS_ALL)
    used = Used(assets=UsedAssets(attachments=UsedAttachments(releases=15824123)))
    result = evaluate(used, S.SIZE_ASSETS_ATTACHMENTS_RELEASES, [asset_size])
    with pytest.raises(QuotaExceededError) as exc_info:
        result.raise_for_status()
    assert str(exc_info.value) == "asset-size: 15728640 bytes exceeded (current 15824123)"
    assert exc_info.value.details() == {
        "subject": "size:assets:attachments:releases",
        "rules": [{"rule": "asset-size", "subject": "size:assets:all", "limit": 15728640, "used": 15824123}],
    }


def test_visibility_partitions_checked_separately():
    private_cap = _rule("private-cap", 100, S.SIZE_REPOS_PRIVATE)
    used = Used(git=UsedGit(code=500), repos=UsedRepos(public=450, private=50))
    assert evaluate(used, S.SIZE_REPOS_PRIVATE, [private_cap]).allowed is True
    assert evaluate(used, S.SIZE_REPOS_PUBLIC, [private_cap]).applied == []
