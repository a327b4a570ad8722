"""Quota rules and their evaluation against a usage snapshot."""

from dataclasses import dataclass
from typing import Iterable

from forgequota.common.constants import LIMIT_DENY, LIMIT_UNLIMITED
from forgequota.server.quota.errors import InvalidLimitError
from forgequota.server.quota.subjects import LimitSubject, indirect_covers
from forgequota.server.quota.used import Used


def validate_limit(limit: int) -> int:
    """Reject limits below the ``-1`` (unlimited) sentinel."""
    if limit < LIMIT_UNLIMITED:
        raise InvalidLimitError(f"invalid limit: {limit} (use -1 for unlimited, 0 to deny)", limit)
    return limit


def validate_subjects(subjects: Iterable[LimitSubject]) -> tuple[LimitSubject, ...]:
    result = tuple(dict.fromkeys(subjects))
    if not result:
        raise InvalidLimitError("a rule needs at least one subject")
    return result


@dataclass(frozen=True)
class Rule:
    """A named ``(limit, subjects)`` policy.

    ``limit`` is a byte ceiling; ``-1`` means unlimited and ``0`` means deny.
    """

    name: str
    limit: int
    subjects: tuple[LimitSubject, ...]

    @classmethod
    def create(cls, name: str, limit: int, subjects: Iterable[LimitSubject]) -> "Rule":
        """Build a validated rule."""
        name = name.strip()
        if not name:
            raise InvalidLimitError("rule name must not be empty")
        return cls(name=name, limit=validate_limit(limit), subjects=validate_subjects(subjects))

    @property
    def is_unlimited(self) -> bool:
        return self.limit == LIMIT_UNLIMITED

    def matching_subjects(self, for_subject: LimitSubject) -> list[LimitSubject]:
        """The declared subjects this rule checks when writing to ``for_subject``.

        A direct declaration wins; otherwise every declared roll-up that
        contains ``for_subject`` is returned. Empty means the rule is mute.
        """
        if for_subject in self.subjects:
            return [for_subject]
        covering = indirect_covers(for_subject)
        return [s for s in self.subjects if s in covering]

    def within(self, amount: int) -> bool:
        if self.limit == LIMIT_DENY:
            return False
        return amount <= self.limit

    def evaluate(self, used: Used, for_subject: LimitSubject) -> tuple[bool, bool]:
        """Evaluate the rule for a write classified under ``for_subject``.

        Returns:
            ``(allowed, applied)``. Unlimited rules always apply and pass; a
            rule that neither declares ``for_subject`` nor one of its roll-ups
            returns ``(True, False)``. Several matching roll-ups must all pass.
        """
        if self.is_unlimited:
            return True, True

        matches = self.matching_subjects(for_subject)
        if not matches:
            return True, False

        allowed = all(self.within(used.for_subject(subject)) for subject in matches)
        return allowed, True
