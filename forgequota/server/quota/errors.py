"""Quota error taxonomy.

Each error knows the HTTP status it maps to so the routers and the
enforcement middleware can render it without a lookup table of their own.
"""

from typing import Any, Optional


class QuotaError(Exception):
    """Base class for quota subsystem errors."""

    status_code = 500
    error = "QuotaError"

    def details(self) -> dict[str, Any]:
        return {}


# ── Rules ─────────────────────────────────────────────────────


class RuleAlreadyExistsError(QuotaError):
    status_code = 409
    error = "RuleAlreadyExists"

    def __init__(self, name: str) -> None:
        super().__init__(f"rule already exists: [name: {name}]")
        self.name = name

    def details(self) -> dict[str, Any]:
        return {"rule": self.name}


class RuleNotFoundError(QuotaError):
    status_code = 404
    error = "RuleNotFound"

    def __init__(self, name: str) -> None:
        super().__init__(f"rule not found: [name: {name}]")
        self.name = name

    def details(self) -> dict[str, Any]:
        return {"rule": self.name}


class InvalidLimitError(QuotaError):
    """Limit below -1, or a rule without subjects."""

    status_code = 422
    error = "InvalidLimit"

    def __init__(self, message: str, limit: Optional[int] = None) -> None:
        super().__init__(message)
        self.limit = limit

    def details(self) -> dict[str, Any]:
        return {"limit": self.limit} if self.limit is not None else {}


class UnknownSubjectError(QuotaError):
    status_code = 422
    error = "UnknownSubject"

    def __init__(self, subject: str) -> None:
        super().__init__(f"unrecognized limit subject: {subject}")
        self.subject = subject

    def details(self) -> dict[str, Any]:
        return {"subject": self.subject}


# ── Groups ────────────────────────────────────────────────────


class GroupAlreadyExistsError(QuotaError):
    status_code = 409
    error = "GroupAlreadyExists"

    def __init__(self, name: str) -> None:
        super().__init__(f"group already exists: [name: {name}]")
        self.name = name

    def details(self) -> dict[str, Any]:
        return {"group": self.name}


class GroupNotFoundError(QuotaError):
    status_code = 404
    error = "GroupNotFound"

    def __init__(self, name: str) -> None:
        super().__init__(f"group not found: [group: {name}]")
        self.name = name

    def details(self) -> dict[str, Any]:
        return {"group": self.name}


class GroupInUseError(QuotaError):
    status_code = 409
    error = "GroupInUse"

    def __init__(self, name: str, members: int) -> None:
        super().__init__(f"group still has members: [group: {name}, members: {members}]")
        self.name = name
        self.members = members

    def details(self) -> dict[str, Any]:
        return {"group": self.name, "members": self.members}


class UserAlreadyInGroupError(QuotaError):
    status_code = 409
    error = "UserAlreadyInGroup"

    def __init__(self, group: str, kind: str, principal_id: int) -> None:
        super().__init__(f"{kind} already in group: [group: {group}, id: {principal_id}]")
        self.group = group
        self.kind = kind
        self.principal_id = principal_id

    def details(self) -> dict[str, Any]:
        return {"group": self.group, "kind": self.kind, "id": self.principal_id}


class UserNotInGroupError(QuotaError):
    status_code = 404
    error = "UserNotInGroup"

    def __init__(self, group: str, kind: str, principal_id: int) -> None:
        super().__init__(f"{kind} not in group: [group: {group}, id: {principal_id}]")
        self.group = group
        self.kind = kind
        self.principal_id = principal_id

    def details(self) -> dict[str, Any]:
        return {"group": self.group, "kind": self.kind, "id": self.principal_id}


class RuleAlreadyInGroupError(QuotaError):
    status_code = 409
    error = "RuleAlreadyInGroup"

    def __init__(self, group: str, rule: str) -> None:
        super().__init__(f"rule already in group: [group: {group}, rule: {rule}]")
        self.group = group
        self.rule = rule

    def details(self) -> dict[str, Any]:
        return {"group": self.group, "rule": self.rule}


class RuleNotInGroupError(QuotaError):
    status_code = 404
    error = "RuleNotInGroup"

    def __init__(self, group: str, rule: str) -> None:
        super().__init__(f"rule not in group: [group: {group}, rule: {rule}]")
        self.group = group
        self.rule = rule

    def details(self) -> dict[str, Any]:
        return {"group": self.group, "rule": self.rule}


# ── Enforcement ───────────────────────────────────────────────


class QuotaExceededError(QuotaError):
    """Raised when a write would exceed at least one applied rule.

    ``violations`` holds one entry per violated rule, each a dict with
    ``rule``, ``subject``, ``limit`` and ``used``.
    """

    status_code = 413
    error = "QuotaExceeded"

    def __init__(self, subject: str, violations: list[dict[str, Any]]) -> None:
        self.subject = subject
        self.violations = violations
        if violations:
            message = "; ".join(
                f"{v['rule']}: {v['limit']} bytes exceeded (current {v['used']})" for v in violations
            )
        else:
            message = f"quota exceeded for {subject}"
        super().__init__(message)

    @property
    def rule_name(self) -> Optional[str]:
        return self.violations[0]["rule"] if self.violations else None

    @property
    def limit(self) -> Optional[int]:
        return self.violations[0]["limit"] if self.violations else None

    @property
    def used(self) -> Optional[int]:
        return self.violations[0]["used"] if self.violations else None

    def details(self) -> dict[str, Any]:
        return {"subject": self.subject, "rules": self.violations}
