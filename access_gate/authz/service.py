"""
Permission service: profile lookup through the cache plus single-purpose checks.

The loader is the only slow collaborator. It runs on a worker thread so the
call can be bounded by ``timeout_seconds``; a timed-out or failing load raises
``ProfileLoadError`` and the caller decides how to deny.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .cache import PermissionCache
from .errors import ProfileLoadError, ProfileLoadTimeout
from .evaluator import REASON_PERMISSION, REASON_ROLE, Decision, evaluate
from .loader import ProfileLoader
from .profile import AuthorizationProfile, MenuNode
from .requirement import Mode, Requirement

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0


class ChangeEvent(str, Enum):
    """Permission-affecting changes reported by the rest of the system."""

    USER_ROLE_CHANGED = "USER_ROLE_CHANGED"
    USER_PERMISSION_CHANGED = "USER_PERMISSION_CHANGED"
    USER_ORGANIZATION_CHANGED = "USER_ORGANIZATION_CHANGED"
    USER_DEPARTMENT_CHANGED = "USER_DEPARTMENT_CHANGED"
    USER_ACTIVATED = "USER_ACTIVATED"
    USER_DEACTIVATED = "USER_DEACTIVATED"
    ROLE_PERMISSION_CHANGED = "ROLE_PERMISSION_CHANGED"
    PERMISSION_UPDATED = "PERMISSION_UPDATED"
    ORGANIZATION_UPDATED = "ORGANIZATION_UPDATED"
    DEPARTMENT_UPDATED = "DEPARTMENT_UPDATED"


# These change facts shared by many users, so one user's entry is not enough.
_GLOBAL_EVENTS = frozenset(
    {
        ChangeEvent.ROLE_PERMISSION_CHANGED,
        ChangeEvent.PERMISSION_UPDATED,
        ChangeEvent.ORGANIZATION_UPDATED,
        ChangeEvent.DEPARTMENT_UPDATED,
    }
)


@dataclass(frozen=True)
class MultiCheckResult:
    allowed: bool
    mode: Mode
    results: dict[str, Decision] = field(default_factory=dict)


class PermissionService:
    """
    Entry point for permission checks against cached profiles.

    Usage:
        service = PermissionService(SqlProfileLoader(SessionLocal), PermissionCache())
        service.check_permission("user-1", "orders.view").allowed
    """

    def __init__(
        self,
        loader: ProfileLoader,
        cache: PermissionCache,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_workers: int = 4,
    ) -> None:
        self._loader = loader
        self._cache = cache
        self._timeout = timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="profile-loader")

    @property
    def cache(self) -> PermissionCache:
        return self._cache

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    # ---- Profile lookup -------------------------------------------------------------

    def get_profile(self, user_id: str) -> tuple[AuthorizationProfile | None, bool]:
        """
        Return ``(profile, from_cache)``.

        ``profile`` is None when the loader reports an unknown user. Unknown
        users are not cached.
        """

        cached = self._cache.get(user_id)
        if cached is not None:
            return cached, True

        # An invalidation during the load must win over the loaded profile.
        generation = self._cache.generation
        profile = self._load(user_id)
        if profile is not None:
            self._cache.put(user_id, profile, generation=generation)
        return profile, False

    def _load(self, user_id: str) -> AuthorizationProfile | None:
        future = self._executor.submit(self._loader.load, user_id)
        try:
            return future.result(timeout=self._timeout)
        except FutureTimeoutError as exc:
            future.cancel()
            logger.error("Profile load timed out user_id=%s timeout=%.2fs", user_id, self._timeout)
            raise ProfileLoadTimeout(f"profile load timed out after {self._timeout}s") from exc
        except Exception as exc:
            logger.error("Profile load failed user_id=%s error=%s", user_id, type(exc).__name__)
            raise ProfileLoadError(f"profile load failed: {exc}") from exc

    # ---- Checks ---------------------------------------------------------------------

    def evaluate(self, user_id: str, requirement: Requirement) -> Decision:
        profile, _ = self.get_profile(user_id)
        if profile is None:
            return Decision.deny(REASON_PERMISSION)
        return evaluate(profile, requirement)

    def check_permission(self, user_id: str, code: str) -> Decision:
        profile, _ = self.get_profile(user_id)
        return self._check_code(profile, code)

    def _check_code(self, profile: AuthorizationProfile | None, code: str) -> Decision:
        if profile is None:
            return Decision.deny(REASON_PERMISSION)
        decision = evaluate(profile, Requirement(permissions=[code]))
        if not decision.allowed:
            return decision
        if profile.is_super_admin:
            return Decision.allow(level=0)
        return Decision.allow(level=profile.permission_level(code))

    def check_multiple_permissions(
        self,
        user_id: str,
        codes: Iterable[str],
        mode: Mode | str = Mode.AND,
    ) -> MultiCheckResult:
        mode = Mode.coerce(mode)
        profile, _ = self.get_profile(user_id)
        results = {code: self._check_code(profile, code) for code in codes}
        allowed = bool(results) and mode.combine([d.allowed for d in results.values()])
        return MultiCheckResult(allowed=allowed, mode=mode, results=results)

    def check_role(self, user_id: str, roles: Iterable[str], mode: Mode | str = Mode.OR) -> Decision:
        mode = Mode.coerce(mode)
        role_list = list(roles)
        if not role_list:
            return Decision.deny(REASON_ROLE)
        if mode is Mode.AND and len(role_list) > 1:
            logger.debug("Role check with mode=AND is evaluated as any-of roles=%s", role_list)
        return self.evaluate(user_id, Requirement(roles=role_list))

    def check_role_level(self, user_id: str, level: int) -> Decision:
        profile, _ = self.get_profile(user_id)
        if profile is None:
            return Decision.deny(REASON_PERMISSION)
        decision = evaluate(profile, Requirement(level=level))
        return Decision(allowed=decision.allowed, reason=decision.reason, level=profile.role_level)

    def check_resource_access(self, user_id: str, resource: str, action: str = "read") -> Decision:
        return self.evaluate(user_id, Requirement(resource=resource, action=action))

    def check_organization(self, user_id: str, code: str) -> Decision:
        return self.evaluate(user_id, Requirement(organizations=[code]))

    def check_department(self, user_id: str, code: str) -> Decision:
        return self.evaluate(user_id, Requirement(departments=[code]))

    def get_menu_permissions(self, user_id: str) -> list[str] | None:
        profile, _ = self.get_profile(user_id)
        if profile is None:
            return None
        return profile.menu_codes()

    def get_menu_tree(self, user_id: str) -> list[MenuNode] | None:
        profile, _ = self.get_profile(user_id)
        if profile is None:
            return None
        return profile.menu_tree()

    def get_data_filters(self, user_id: str, resource: str) -> list[dict[str, Any]] | None:
        """
        Row-level conditions the caller must apply when reading ``resource``.

        An empty list means no restriction (super admin, or no rule for the
        resource). None means the user is unknown and nothing may be read.
        """
        profile, _ = self.get_profile(user_id)
        if profile is None:
            return None
        return profile.data_conditions(resource)

    # ---- Invalidation ---------------------------------------------------------------

    def invalidate(self, user_id: str) -> bool:
        return self._cache.invalidate(user_id)

    def invalidate_all(self) -> int:
        return self._cache.invalidate_all()

    def notify_change(self, user_id: str | None, event: ChangeEvent) -> None:
        """Drop cached profiles made stale by ``event``."""
        if event in _GLOBAL_EVENTS or user_id is None:
            logger.info("Permission change event=%s; clearing all cached profiles", event.value)
            self.invalidate_all()
            return
        logger.info("Permission change event=%s user_id=%s", event.value, user_id)
        self.invalidate(user_id)
