from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from access_gate.models.security import DataPermissionRule, Permission, Role, User, UserDataPermission, UserPermission

from .profile import AuthorizationProfile, DataRule, PermissionGrant, RoleGrant

logger = logging.getLogger(__name__)


class ProfileLoader(Protocol):
    """Anything that can build a user's profile from persistent storage."""

    def load(self, user_id: str) -> AuthorizationProfile | None:
        """Return the profile, or None when the user does not exist."""
        ...


def _permission_grant(permission: Permission) -> PermissionGrant:
    return PermissionGrant(
        code=permission.code,
        resource=permission.resource,
        action=permission.action,
        active=permission.active,
        level=permission.level,
        name=permission.name,
        parent_code=permission.parent.code if permission.parent is not None else None,
        sort_order=permission.sort_order,
    )


def _data_rule(rule: DataPermissionRule) -> DataRule:
    return DataRule(code=rule.code, resource=rule.resource, condition=dict(rule.condition or {}), active=rule.active)


class SqlProfileLoader:
    """
    Build profiles from the SQLAlchemy user/role/permission tables.

    Permissions are the union of role permissions and directly granted user
    permissions, deduplicated by id. Inactive roles contribute no permissions
    and direct rows with ``granted=False`` are ignored. Only active
    organizations and departments count. Data rules follow the same union
    (granted user rows plus active roles, deduplicated by id).
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def load(self, user_id: str) -> AuthorizationProfile | None:
        with self._session_factory() as db:
            user = db.execute(
                select(User)
                .where(User.id == user_id)
                .options(
                    selectinload(User.roles).selectinload(Role.permissions),
                    selectinload(User.roles).selectinload(Role.data_rules),
                    selectinload(User.direct_permissions).selectinload(UserPermission.permission),
                    selectinload(User.data_permissions).selectinload(UserDataPermission.rule),
                    selectinload(User.organizations),
                    selectinload(User.departments),
                )
            ).scalar_one_or_none()

            if user is None:
                logger.debug("Profile loader: no such user user_id=%s", user_id)
                return None

            permissions: dict[int, Permission] = {}
            for role in user.roles:
                if not role.active:
                    continue
                for permission in role.permissions:
                    permissions.setdefault(permission.id, permission)
            for direct in user.direct_permissions:
                if direct.granted:
                    permissions.setdefault(direct.permission.id, direct.permission)

            rules: dict[int, DataPermissionRule] = {}
            for direct_rule in user.data_permissions:
                if direct_rule.granted:
                    rules.setdefault(direct_rule.rule.id, direct_rule.rule)
            for role in user.roles:
                if role.active:
                    for rule in role.data_rules:
                        rules.setdefault(rule.id, rule)

            return AuthorizationProfile.build(
                user.id,
                active=user.active,
                roles=[RoleGrant(code=r.code, level=r.level, active=r.active) for r in user.roles],
                permissions=[_permission_grant(p) for p in permissions.values()],
                organizations=[o.code for o in user.organizations if o.active],
                departments=[d.code for d in user.departments if d.active],
                data_rules=[_data_rule(r) for r in rules.values()],
            )
