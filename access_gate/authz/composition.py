"""
Composition helpers for presentation-layer guards.

Each helper runs one independent check and reports ``CheckOutcome`` instead of
raising, so a guard can run several checks and combine them. Errors always
count as denied.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from .requirement import Mode
from .service import PermissionService

logger = logging.getLogger(__name__)

NOT_AUTHENTICATED = "not authenticated"


@dataclass(frozen=True)
class CheckOutcome:
    allowed: bool
    error: str | None = None


def _guarded(user_id: str | None, label: str, check: Callable[[str], bool]) -> CheckOutcome:
    if user_id is None:
        return CheckOutcome(allowed=False, error=NOT_AUTHENTICATED)
    try:
        return CheckOutcome(allowed=check(user_id))
    except Exception as exc:
        logger.error("%s check failed user_id=%s error=%s", label, user_id, exc)
        return CheckOutcome(allowed=False, error=str(exc) or type(exc).__name__)


def permission_check(service: PermissionService, user_id: str | None, code: str | None) -> CheckOutcome:
    """Single permission; no code means nothing to check."""
    if user_id is not None and not code:
        return CheckOutcome(allowed=True)
    return _guarded(user_id, "Permission", lambda uid: service.check_permission(uid, code).allowed)


def permissions_check(
    service: PermissionService,
    user_id: str | None,
    codes: Sequence[str],
    mode: Mode | str = Mode.AND,
) -> CheckOutcome:
    mode = Mode.coerce(mode)
    if user_id is not None and not codes:
        return CheckOutcome(allowed=True)
    return _guarded(
        user_id,
        "Multi-permission",
        lambda uid: service.check_multiple_permissions(uid, codes, mode).allowed,
    )


def role_check(
    service: PermissionService,
    user_id: str | None,
    roles: Sequence[str],
    mode: Mode | str = Mode.OR,
) -> CheckOutcome:
    mode = Mode.coerce(mode)
    # An empty role list never grants access.
    if user_id is not None and not roles:
        return CheckOutcome(allowed=False)
    return _guarded(user_id, "Role", lambda uid: service.check_role(uid, roles, mode).allowed)


def level_check(service: PermissionService, user_id: str | None, level: int) -> CheckOutcome:
    return _guarded(user_id, "Role level", lambda uid: service.check_role_level(uid, level).allowed)


def combine_outcomes(outcomes: Iterable[CheckOutcome], mode: Mode | str = Mode.AND) -> CheckOutcome:
    """
    Combine independent checks.

    Any errored outcome denies and surfaces the first error. No outcomes
    means nothing was required.
    """

    mode = Mode.coerce(mode)
    collected = list(outcomes)
    if not collected:
        return CheckOutcome(allowed=True)
    first_error = next((o.error for o in collected if o.error), None)
    if first_error is not None:
        return CheckOutcome(allowed=False, error=first_error)
    return CheckOutcome(allowed=mode.combine([o.allowed for o in collected]))


@dataclass(frozen=True)
class Guard:
    """
    Declarative bundle of checks, e.g. "permission X and role Y".

    Only populated checks run; an unpopulated guard allows.
    """

    permission: str | None = None
    permissions: tuple[str, ...] = ()
    permission_mode: Mode = Mode.AND
    roles: tuple[str, ...] = ()
    role_mode: Mode = Mode.OR
    level: int | None = None
    combine_mode: Mode = Mode.AND

    def check(self, service: PermissionService, user_id: str | None) -> CheckOutcome:
        outcomes: list[CheckOutcome] = []
        if self.permission:
            outcomes.append(permission_check(service, user_id, self.permission))
        if self.permissions:
            outcomes.append(permissions_check(service, user_id, self.permissions, self.permission_mode))
        if self.roles:
            outcomes.append(role_check(service, user_id, self.roles, self.role_mode))
        if self.level is not None:
            outcomes.append(level_check(service, user_id, self.level))
        return combine_outcomes(outcomes, self.combine_mode)
