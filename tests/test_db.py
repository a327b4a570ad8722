"""QuotaDB tests: rule/group CRUD, memberships and the principal -> rules pipeline.

Each test runs against a fresh SQLite database in ``tmp_path``.
"""

import asyncio
from pathlib import Path

import pytest
import pytest_asyncio

from forgequota.server.quota.db import QuotaDB, build_database_url, isolation_level, rules_of
from forgequota.server.quota.errors import (
    GroupAlreadyExistsError,
    GroupInUseError,
    GroupNotFoundError,
    InvalidLimitError,
    RuleAlreadyExistsError,
    RuleAlreadyInGroupError,
    RuleNotFoundError,
    RuleNotInGroupError,
    UnknownSubjectError,
    UserAlreadyInGroupError,
    UserNotInGroupError,
)
from forgequota.server.quota.models import Principal, PrincipalKind, QuotaGroupTable
from forgequota.server.quota.subjects import LimitSubject

ALICE = Principal(kind=PrincipalKind.USER, id=1)
BOB = Principal(kind=PrincipalKind.USER, id=2)
ACME = Principal(kind=PrincipalKind.ORG, id=1)


@pytest_asyncio.fixture
async def db(tmp_path: Path):
    quota_db = QuotaDB(f"sqlite+aiosqlite:///{tmp_path / 'quota.db'}")
    await quota_db.connect()
    yield quota_db
    await quota_db.disconnect()


# ── Rules ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_and_get_rule(db: QuotaDB):
    rule = await db.create_rule("repo-size", 15728640, ["size:repos:all"])
    assert rule.name == "repo-size"
    assert rule.subjects == (LimitSubject.SIZE_REPOS_ALL,)

    fetched = await db.get_rule("repo-size")
    assert fetched == rule


@pytest.mark.asyncio
async def test_create_rule_duplicate(db: QuotaDB):
    await db.create_rule("r", 1, ["size:all"])
    with pytest.raises(RuleAlreadyExistsError):
        await db.create_rule("r", 2, ["size:git:lfs"])
    assert (await db.get_rule("r")).limit == 1


@pytest.mark.asyncio
async def test_create_rule_validation(db: QuotaDB):
    with pytest.raises(UnknownSubjectError):
        await db.create_rule("r", 1, ["size:everything"])
    with pytest.raises(InvalidLimitError):
        await db.create_rule("r", -7, ["size:all"])
    with pytest.raises(InvalidLimitError):
        await db.create_rule("r", 1, [])
    assert await db.list_rules() == []


@pytest.mark.asyncio
async def test_get_missing_rule(db: QuotaDB):
    with pytest.raises(RuleNotFoundError):
        await db.get_rule("nope")


@pytest.mark.asyncio
async def test_list_rules_sorted(db: QuotaDB):
    await db.create_rule("b", 1, ["size:all"])
    await db.create_rule("a", 2, ["size:all"])
    assert [r.name for r in await db.list_rules()] == ["a", "b"]


@pytest.mark.asyncio
async def test_edit_rule_partial(db: QuotaDB):
    await db.create_rule("r", 100, ["size:all"])

    edited = await db.edit_rule("r", limit=200)
    assert edited.limit == 200
    assert edited.subjects == (LimitSubject.SIZE_ALL,)

    edited = await db.edit_rule("r", subjects=["size:git:lfs", "size:assets:all"])
    assert edited.limit == 200
    assert edited.subjects == (LimitSubject.SIZE_GIT_LFS, LimitSubject.SIZE_ASSETS_ALL)

    assert await db.get_rule("r") == edited


@pytest.mark.asyncio
async def test_edit_rule_validation_leaves_rule_unchanged(db: QuotaDB):
    await db.create_rule("r", 100, ["size:all"])
    with pytest.raises(InvalidLimitError):
        await db.edit_rule("r", limit=-3)
    with pytest.raises(InvalidLimitError):
        await db.edit_rule("r", subjects=[])
    with pytest.raises(RuleNotFoundError):
        await db.edit_rule("missing", limit=1)
    rule = await db.get_rule("r")
    assert rule.limit == 100
    assert rule.subjects == (LimitSubject.SIZE_ALL,)


@pytest.mark.asyncio
async def test_delete_rule_removes_group_links(db: QuotaDB):
    await db.create_rule("r", 1, ["size:all"])
    await db.create_rule("keep", 2, ["size:all"])
    for name in ("g1", "g2"):
        await db.create_group(name)
        await db.add_rule_to_group(name, "r")
        await db.add_rule_to_group(name, "keep")

    await db.delete_rule("r")

    with pytest.raises(RuleNotFoundError):
        await db.get_rule("r")
    for name in ("g1", "g2"):
        assert [r.name for r in (await db.get_group(name)).rules] == ["keep"]
    with pytest.raises(RuleNotFoundError):
        await db.delete_rule("r")


# ── Groups ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_group_and_duplicate(db: QuotaDB):
    group = await db.create_group("free-tier")
    assert group.name == "free-tier"
    assert group.rules == []
    with pytest.raises(GroupAlreadyExistsError):
        await db.create_group("free-tier")


@pytest.mark.asyncio
async def test_get_group_with_rules(db: QuotaDB):
    await db.create_group("g")
    await db.create_rule("b", 2, ["size:git:lfs"])
    await db.create_rule("a", 1, ["size:all"])
    await db.add_rule_to_group("g", "b")
    await db.add_rule_to_group("g", "a")

    group = await db.get_group("g")
    assert [r.name for r in group.rules] == ["a", "b"]

    with pytest.raises(GroupNotFoundError):
        await db.get_group("missing")


@pytest.mark.asyncio
async def test_list_groups(db: QuotaDB):
    await db.create_rule("r", 1, ["size:all"])
    await db.create_group("z")
    await db.create_group("a")
    await db.add_rule_to_group("z", "r")
    groups = await db.list_groups()
    assert [(g.name, [r.name for r in g.rules]) for g in groups] == [("a", []), ("z", ["r"])]


@pytest.mark.asyncio
async def test_rule_group_association_errors(db: QuotaDB):
    await db.create_group("g")
    await db.create_rule("r", 1, ["size:all"])

    with pytest.raises(RuleNotFoundError):
        await db.add_rule_to_group("g", "missing")
    with pytest.raises(GroupNotFoundError):
        await db.add_rule_to_group("missing", "r")

    await db.add_rule_to_group("g", "r")
    with pytest.raises(RuleAlreadyInGroupError):
        await db.add_rule_to_group("g", "r")
    assert len((await db.get_group("g")).rules) == 1

    await db.remove_rule_from_group("g", "r")
    with pytest.raises(RuleNotInGroupError):
        await db.remove_rule_from_group("g", "r")
    # The rule outlives the association
    assert (await db.get_rule("r")).name == "r"


@pytest.mark.asyncio
async def test_delete_group_requires_no_members(db: QuotaDB):
    await db.create_group("g")
    await db.add_principal_to_group("g", ALICE)

    with pytest.raises(GroupInUseError) as exc_info:
        await db.delete_group("g")
    assert exc_info.value.members == 1

    await db.remove_principal_from_group("g", ALICE)
    await db.delete_group("g")
    with pytest.raises(GroupNotFoundError):
        await db.get_group("g")


@pytest.mark.asyncio
async def test_delete_group_keeps_rules(db: QuotaDB):
    await db.create_group("g")
    await db.create_rule("r", 1, ["size:all"])
    await db.add_rule_to_group("g", "r")
    await db.delete_group("g")
    assert [r.name for r in await db.list_rules()] == ["r"]


# ── Membership ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_add_principal_twice_is_rejected_without_change(db: QuotaDB):
    await db.create_group("g")
    await db.add_principal_to_group("g", ALICE)
    with pytest.raises(UserAlreadyInGroupError):
        await db.add_principal_to_group("g", ALICE)
    total, members = await db.list_group_members("g")
    assert total == 1
    assert members == [ALICE]


@pytest.mark.asyncio
async def test_user_and_org_with_same_id_are_distinct(db: QuotaDB):
    await db.create_group("g")
    await db.add_principal_to_group("g", ALICE)
    await db.add_principal_to_group("g", ACME)
    total, members = await db.list_group_members("g")
    assert total == 2
    assert set(members) == {ALICE, ACME}


@pytest.mark.asyncio
async def test_remove_principal_not_in_group(db: QuotaDB):
    await db.create_group("g")
    with pytest.raises(UserNotInGroupError):
        await db.remove_principal_from_group("g", BOB)
    with pytest.raises(GroupNotFoundError):
        await db.remove_principal_from_group("missing", BOB)


@pytest.mark.asyncio
async def test_list_group_members_paginated(db: QuotaDB):
    await db.create_group("g")
    for uid in range(1, 6):
        await db.add_principal_to_group("g", Principal(id=uid))

    total, first = await db.list_group_members("g", offset=0, limit=2)
    assert total == 5
    assert [p.id for p in first] == [1, 2]
    total, last = await db.list_group_members("g", offset=4, limit=2)
    assert [p.id for p in last] == [5]


@pytest.mark.asyncio
async def test_set_principal_groups_replaces(db: QuotaDB):
    for name in ("a", "b", "c"):
        await db.create_group(name)
    await db.add_principal_to_group("a", ALICE)

    groups = await db.set_principal_groups(ALICE, ["b", "c"])
    assert [g.name for g in groups] == ["b", "c"]
    assert [g.name for g in await db.get_groups_for_principal(ALICE)] == ["b", "c"]

    await db.set_principal_groups(ALICE, [])
    assert await db.get_groups_for_principal(ALICE) == []


@pytest.mark.asyncio
async def test_set_principal_groups_unknown_group_rolls_back(db: QuotaDB):
    await db.create_group("a")
    await db.create_group("b")
    await db.add_principal_to_group("a", ALICE)

    with pytest.raises(GroupNotFoundError):
        await db.set_principal_groups(ALICE, ["b", "missing"])

    assert [g.name for g in await db.get_groups_for_principal(ALICE)] == ["a"]


@pytest.mark.asyncio
async def test_cancelled_transaction_rolls_back(db: QuotaDB):
    written = asyncio.Event()

    async def half_done() -> None:
        async with db.transaction() as session:
            session.add(QuotaGroupTable(name="half"))
            await session.flush()
            written.set()
            await asyncio.Event().wait()

    task = asyncio.create_task(half_done())
    await asyncio.wait_for(written.wait(), timeout=5)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert await db.list_groups() == []
    with pytest.raises(GroupNotFoundError):
        await db.get_group("half")
    # The database is usable again afterwards
    assert (await db.create_group("half")).name == "half"

# ── Principal -> rules pipeline ───────────────────────────────


@pytest.mark.asyncio
async def test_rules_for_principal_dedupes_shared_rules(db: QuotaDB):
    await db.create_rule("shared", 10, ["size:all"])
    await db.create_rule("only-b", 20, ["size:git:lfs"])
    await db.create_group("a")
    await db.create_group("b")
    await db.add_rule_to_group("a", "shared")
    await db.add_rule_to_group("b", "shared")
    await db.add_rule_to_group("b", "only-b")
    await db.add_principal_to_group("a", ALICE)
    await db.add_principal_to_group("b", ALICE)

    rules = await db.get_rules_for_principal(ALICE)
    assert sorted(r.name for r in rules) == ["only-b", "shared"]


@pytest.mark.asyncio
async def test_default_groups_used_only_without_mapping(db: QuotaDB):
    await db.create_rule("free", 100, ["size:all"])
    await db.create_rule("paid", 1000, ["size:all"])
    await db.create_group("free-tier")
    await db.create_group("paid")
    await db.add_rule_to_group("free-tier", "free")
    await db.add_rule_to_group("paid", "paid")

    defaults = ["missing", "free-tier"]
    assert [r.name for r in await db.get_rules_for_principal(ALICE, defaults)] == ["free"]

    await db.add_principal_to_group("paid", ALICE)
    assert [r.name for r in await db.get_rules_for_principal(ALICE, defaults)] == ["paid"]


@pytest.mark.asyncio
async def test_no_mapping_no_defaults_no_rules(db: QuotaDB):
    assert await db.get_rules_for_principal(BOB) == []
    assert await db.get_rules_for_principal(BOB, ["missing"]) == []


@pytest.mark.asyncio
async def test_default_groups_keep_config_order(db: QuotaDB):
    await db.create_rule("r1", 1, ["size:all"])
    await db.create_rule("r2", 2, ["size:all"])
    await db.create_group("second")
    await db.create_group("first")
    await db.add_rule_to_group("first", "r1")
    await db.add_rule_to_group("second", "r2")

    groups = await db.get_groups_for_principal(ALICE, ["second", "first"])
    assert [g.name for g in groups] == ["second", "first"]
    assert [r.name for r in rules_of(groups)] == ["r2", "r1"]


# ── Misc ──────────────────────────────────────────────────────


def test_build_database_url_sqlite(tmp_path: Path):
    url = build_database_url(sqlite_path=str(tmp_path / "sub" / "q.db"))
    assert url == f"sqlite+aiosqlite:///{tmp_path / 'sub' / 'q.db'}"
    assert (tmp_path / "sub").is_dir()


def test_build_database_url_servers():
    assert (
        build_database_url(backend="mysql", host="db", port=3306, user="u", password="p", database="q")
        == "mysql+aiomysql://u:p@db:3306/q"
    )
    assert (
        build_database_url(backend="postgresql", host="db", port=5432, user="u", database="q")
        == "postgresql+asyncpg://u@db:5432/q"
    )


def test_safe_url_masks_password():
    pytest.importorskip("asyncpg")
    db = QuotaDB("postgresql+asyncpg://u:secret@db:5432/q")
    assert "secret" not in db._safe_url()


def test_isolation_levels():
    assert isolation_level("sqlite+aiosqlite:///q.db") is None
    assert isolation_level("sqlite+aiosqlite:///q.db", write=True) is None
    assert isolation_level("postgresql+asyncpg://u@db/q") == "REPEATABLE READ"
    assert isolation_level("postgresql+asyncpg://u@db/q", write=True) == "SERIALIZABLE"
    assert isolation_level("mysql+aiomysql://u@db/q") == "REPEATABLE READ"


def test_server_backend_engines_carry_isolation():
    pytest.importorskip("asyncpg")
    db = QuotaDB("postgresql+asyncpg://u:p@db:5432/q")
    assert db._read_engine.get_execution_options()["isolation_level"] == "REPEATABLE READ"
    assert db._write_engine.get_execution_options()["isolation_level"] == "SERIALIZABLE"
