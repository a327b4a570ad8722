"""Combine a principal's rules with its usage snapshot.

Every applied rule must pass: the most restrictive rule binds, and an
unlimited rule cannot rescue a write that a sibling rule denies.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, NamedTuple

from forgequota.server.quota.errors import QuotaExceededError
from forgequota.server.quota.rule import Rule
from forgequota.server.quota.subjects import LimitSubject
from forgequota.server.quota.used import Used


class AppliedLimit(NamedTuple):
    """One rule that applied to the evaluated subject."""

    rule: Rule
    limit: int
    allowed: bool
    subject: LimitSubject
    used: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "rule": self.rule.name,
            "subject": self.subject.value,
            "limit": self.limit,
            "used": self.used,
        }


@dataclass
class Evaluation:
    subject: LimitSubject
    allowed: bool = True
    applied: list[AppliedLimit] = field(default_factory=list)

    @property
    def violations(self) -> list[AppliedLimit]:
        return [a for a in self.applied if not a.allowed]

    def raise_for_status(self) -> None:
        """Raise :class:`QuotaExceededError` when the write is not allowed."""
        if not self.allowed:
            raise QuotaExceededError(self.subject.value, [v.as_dict() for v in self.violations])


def _applied_limit(rule: Rule, used: Used, subject: LimitSubject, allowed: bool) -> AppliedLimit:
    matches = rule.matching_subjects(subject) or [subject]
    # Report the first failing declaration; otherwise the most specific match.
    reported = next((s for s in matches if not rule.within(used.for_subject(s))), matches[0])
    if rule.is_unlimited:
        reported = subject
    return AppliedLimit(rule, rule.limit, allowed, reported, used.for_subject(reported))


def evaluate(used: Used, for_subject: LimitSubject, rules: Iterable[Rule]) -> Evaluation:
    """Evaluate ``rules`` for a write classified under ``for_subject``.

    No rules, or no rule that applies, means no limit. Evaluation continues
    after the first failure so every applied rule is reported.
    """
    result = Evaluation(subject=for_subject)
    for rule in rules:
        allowed, applied = rule.evaluate(used, for_subject)
        if not applied:
            continue
        result.applied.append(_applied_limit(rule, used, for_subject, allowed))
        if not allowed:
            result.allowed = False
    return result
