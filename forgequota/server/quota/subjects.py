"""Quota limit subjects.

A subject names a storage category. Leaves are physically disjoint asset
classes; roll-ups are unions of other subjects. The canonical string form
(``size:git:lfs`` ...) is what gets persisted and exchanged over the API,
never the enum position.

The containment lattice is declared once as a parent -> children table.
The child -> ancestors table used during rule evaluation is derived from it
at import time so the two directions can never disagree.
"""

from enum import Enum

from forgequota.server.quota.errors import UnknownSubjectError


class LimitSubject(str, Enum):
    """Storage categories a quota rule can target."""

    SIZE_ALL = "size:all"
    SIZE_REPOS_ALL = "size:repos:all"
    SIZE_REPOS_PUBLIC = "size:repos:public"
    SIZE_REPOS_PRIVATE = "size:repos:private"
    SIZE_GIT_ALL = "size:git:all"
    SIZE_GIT_LFS = "size:git:lfs"
    SIZE_ASSETS_ALL = "size:assets:all"
    SIZE_ASSETS_ATTACHMENTS_ALL = "size:assets:attachments:all"
    SIZE_ASSETS_ATTACHMENTS_ISSUES = "size:assets:attachments:issues"
    SIZE_ASSETS_ATTACHMENTS_RELEASES = "size:assets:attachments:releases"
    SIZE_ASSETS_ARTIFACTS = "size:assets:artifacts"
    SIZE_ASSETS_PACKAGES_ALL = "size:assets:packages:all"
    SIZE_WIKI = "size:assets:wiki"

    def __str__(self) -> str:
        return self.value


# parent -> direct children
_CHILDREN: dict[LimitSubject, tuple[LimitSubject, ...]] = {
    LimitSubject.SIZE_ALL: (
        LimitSubject.SIZE_REPOS_ALL,
        LimitSubject.SIZE_ASSETS_ALL,
        LimitSubject.SIZE_WIKI,
    ),
    LimitSubject.SIZE_REPOS_ALL: (
        LimitSubject.SIZE_REPOS_PUBLIC,
        LimitSubject.SIZE_REPOS_PRIVATE,
        LimitSubject.SIZE_GIT_ALL,
    ),
    LimitSubject.SIZE_GIT_ALL: (LimitSubject.SIZE_GIT_LFS,),
    LimitSubject.SIZE_ASSETS_ALL: (
        LimitSubject.SIZE_ASSETS_ATTACHMENTS_ALL,
        LimitSubject.SIZE_ASSETS_ARTIFACTS,
        LimitSubject.SIZE_ASSETS_PACKAGES_ALL,
    ),
    LimitSubject.SIZE_ASSETS_ATTACHMENTS_ALL: (
        LimitSubject.SIZE_ASSETS_ATTACHMENTS_ISSUES,
        LimitSubject.SIZE_ASSETS_ATTACHMENTS_RELEASES,
    ),
}


def _derive_ancestors() -> dict[LimitSubject, frozenset[LimitSubject]]:
    parents: dict[LimitSubject, set[LimitSubject]] = {s: set() for s in LimitSubject}
    for parent, children in _CHILDREN.items():
        for child in children:
            parents[child].add(parent)

    ancestors: dict[LimitSubject, frozenset[LimitSubject]] = {}

    def walk(subject: LimitSubject) -> frozenset[LimitSubject]:
        if subject not in ancestors:
            found: set[LimitSubject] = set()
            for parent in parents[subject]:
                found.add(parent)
                found |= walk(parent)
            ancestors[subject] = frozenset(found)
        return ancestors[subject]

    for subject in LimitSubject:
        walk(subject)
    return ancestors


def _derive_descendants(
    ancestors: dict[LimitSubject, frozenset[LimitSubject]],
) -> dict[LimitSubject, frozenset[LimitSubject]]:
    descendants: dict[LimitSubject, set[LimitSubject]] = {s: set() for s in LimitSubject}
    for subject, covers in ancestors.items():
        for cover in covers:
            descendants[cover].add(subject)
    return {s: frozenset(d) for s, d in descendants.items()}


# child -> every roll-up whose union closure contains it
_ANCESTORS = _derive_ancestors()
_DESCENDANTS = _derive_descendants(_ANCESTORS)

LEAF_SUBJECTS: frozenset[LimitSubject] = frozenset(s for s in LimitSubject if s not in _CHILDREN)
ROLLUP_SUBJECTS: frozenset[LimitSubject] = frozenset(_CHILDREN)


def parse_subject(value: str) -> LimitSubject:
    """Parse the canonical string form of a subject.

    Raises:
        UnknownSubjectError: ``value`` is not one of the known subjects.
    """
    try:
        return LimitSubject(value.strip())
    except (ValueError, AttributeError):
        raise UnknownSubjectError(str(value)) from None


def parse_subjects(values: list[str]) -> tuple[LimitSubject, ...]:
    """Parse a list of subject strings, dropping duplicates but keeping order."""
    seen: dict[LimitSubject, None] = {}
    for value in values:
        seen[parse_subject(value)] = None
    return tuple(seen)


def indirect_covers(subject: LimitSubject) -> frozenset[LimitSubject]:
    """Every roll-up whose union closure contains ``subject`` (excluding itself).

    ``indirect_covers(SIZE_ASSETS_ATTACHMENTS_ISSUES)`` is
    ``{SIZE_ASSETS_ATTACHMENTS_ALL, SIZE_ASSETS_ALL, SIZE_ALL}``.
    """
    return _ANCESTORS[subject]


def direct_subjects(rollup: LimitSubject) -> frozenset[LimitSubject]:
    """Every subject contained in ``rollup`` (inverse of :func:`indirect_covers`).

    Leaves contain nothing and return an empty set.
    """
    return _DESCENDANTS[rollup]


def is_leaf(subject: LimitSubject) -> bool:
    return subject in LEAF_SUBJECTS


def covers(outer: LimitSubject, inner: LimitSubject) -> bool:
    """True when ``outer`` is ``inner`` or one of its roll-ups."""
    return outer == inner or outer in _ANCESTORS[inner]
