"""
Permission evaluator: pure decision function over a profile and a requirement.

Evaluation order is fixed:

1. inactive user -> deny ("user disabled"), before anything else;
2. super admin (role ``ADMIN``) -> allow, before any criterion, custom
   checks included;
3. each criterion in ``CRITERIA`` yields True/False, or None when the
   requirement does not populate it;
4. nothing populated -> allow;
5. per-criterion results are combined with the requirement's mode.

Any exception raised while evaluating produces a deny. The evaluator never
raises for an ordinary denial.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from .profile import AuthorizationProfile
from .requirement import Mode, Requirement

logger = logging.getLogger(__name__)

REASON_USER_DISABLED = "user disabled"
REASON_PERMISSION = "permission insufficient"
REASON_ROLE = "role insufficient"
REASON_LEVEL = "role level insufficient"
REASON_ORGANIZATION = "organization membership required"
REASON_DEPARTMENT = "department membership required"
REASON_RESOURCE = "resource access denied"
REASON_CUSTOM = "custom check failed"
REASON_ERROR = "permission check failed"


@dataclass(frozen=True)
class Decision:
    """Outcome of one evaluation. ``reason`` is only set on deny."""

    allowed: bool
    reason: str | None = None
    level: int | None = None

    @classmethod
    def allow(cls, level: int | None = None) -> Decision:
        return cls(allowed=True, level=level)

    @classmethod
    def deny(cls, reason: str, level: int | None = None) -> Decision:
        return cls(allowed=False, reason=reason, level=level)

    def to_dict(self) -> dict[str, object]:
        return {"allowed": self.allowed, "reason": self.reason, "level": self.level}


CriterionCheck = Callable[[AuthorizationProfile, Requirement], bool | None]


@dataclass(frozen=True)
class Criterion:
    name: str
    reason: str
    check: CriterionCheck


# ---- Criteria ------------------------------------------------------------------------


def _membership(required: list[str], held: frozenset[str], mode: Mode) -> bool | None:
    if not required:
        return None
    return mode.combine([code in held for code in required])


def check_permissions(profile: AuthorizationProfile, requirement: Requirement) -> bool | None:
    return _membership(requirement.permissions, profile.permission_codes, requirement.mode)


def check_roles(profile: AuthorizationProfile, requirement: Requirement) -> bool | None:
    # Role lists are always any-of, whatever the requirement's mode.
    if not requirement.roles:
        return None
    return any(code in profile.role_codes for code in requirement.roles)


def check_level(profile: AuthorizationProfile, requirement: Requirement) -> bool | None:
    if requirement.level is None:
        return None
    return profile.role_level <= requirement.level


def check_organizations(profile: AuthorizationProfile, requirement: Requirement) -> bool | None:
    return _membership(requirement.organizations, profile.organization_codes, requirement.mode)


def check_departments(profile: AuthorizationProfile, requirement: Requirement) -> bool | None:
    return _membership(requirement.departments, profile.department_codes, requirement.mode)


def check_resource(profile: AuthorizationProfile, requirement: Requirement) -> bool | None:
    if requirement.resource is None or requirement.action is None:
        return None
    return profile.has_resource_access(requirement.resource, requirement.action)


def check_custom(profile: AuthorizationProfile, requirement: Requirement) -> bool | None:
    if requirement.custom_check is None:
        return None
    return bool(requirement.custom_check(profile.user_id))


CRITERIA: tuple[Criterion, ...] = (
    Criterion("permissions", REASON_PERMISSION, check_permissions),
    Criterion("roles", REASON_ROLE, check_roles),
    Criterion("level", REASON_LEVEL, check_level),
    Criterion("organizations", REASON_ORGANIZATION, check_organizations),
    Criterion("departments", REASON_DEPARTMENT, check_departments),
    Criterion("resource", REASON_RESOURCE, check_resource),
    Criterion("custom", REASON_CUSTOM, check_custom),
)


# ---- Main decision API ---------------------------------------------------------------


def evaluate(profile: AuthorizationProfile, requirement: Requirement) -> Decision:
    """Decide whether ``profile`` satisfies ``requirement``."""

    try:
        if not profile.active:
            return Decision.deny(REASON_USER_DISABLED)

        if profile.is_super_admin:
            return Decision.allow()

        results: list[tuple[Criterion, bool]] = []
        for criterion in CRITERIA:
            outcome = criterion.check(profile, requirement)
            if outcome is not None:
                results.append((criterion, outcome))

        if not results:
            return Decision.allow()

        if requirement.mode.combine([ok for _, ok in results]):
            return Decision.allow()

        failed = next(criterion for criterion, ok in results if not ok)
        logger.debug(
            "Authz: denied user_id=%s criterion=%s mode=%s",
            profile.user_id,
            failed.name,
            requirement.mode.value,
        )
        return Decision.deny(failed.reason)
    except Exception:
        logger.exception("Authz: evaluation failed user_id=%s; denying", profile.user_id)
        return Decision.deny(REASON_ERROR)
