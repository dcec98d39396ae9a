"""
Authorization profile: the snapshot of one user's access-control facts.

A profile is built once from the loader's grants and never mutated. When a
user's roles or permissions change the whole profile is replaced (on cache
expiry or explicit invalidation).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

SUPER_ADMIN_ROLE = "ADMIN"
NO_ROLE_LEVEL = 999
MENU_RESOURCE = "MENU"
WILDCARD_ACTION = "*"


@dataclass(frozen=True)
class PermissionGrant:
    """Single permission assigned to a user, directly or through a role."""

    code: str
    resource: str | None = None
    action: str | None = None
    active: bool = True
    level: int | None = None
    name: str | None = None
    parent_code: str | None = None
    sort_order: int = 0

    def allows(self, resource: str, action: str) -> bool:
        if not self.active or self.resource != resource:
            return False
        return self.action == action or self.action == WILDCARD_ACTION


@dataclass(frozen=True)
class RoleGrant:
    """Role assigned to a user. Lower level means more privileged."""

    code: str
    level: int
    active: bool = True


@dataclass(frozen=True)
class DataRule:
    """
    Row-level data restriction on one resource, e.g. ``{"region": "EU"}``.

    The condition is opaque here; the data layer that owns ``resource``
    interprets it.
    """

    code: str
    resource: str
    condition: dict[str, Any] = field(default_factory=dict)
    active: bool = True


@dataclass(frozen=True)
class MenuNode:
    """One entry of a user's menu tree."""

    code: str
    name: str | None
    sort_order: int
    children: tuple[MenuNode, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {
            "code": self.code,
            "name": self.name,
            "sort_order": self.sort_order,
            "children": [child.to_dict() for child in self.children],
        }


@dataclass(frozen=True)
class AuthorizationProfile:
    """Immutable access-control snapshot for one user."""

    user_id: str
    active: bool
    permission_codes: frozenset[str]
    role_codes: frozenset[str]
    role_level: int
    organization_codes: frozenset[str]
    department_codes: frozenset[str]
    permissions: tuple[PermissionGrant, ...] = ()
    roles: tuple[RoleGrant, ...] = ()
    data_rules: tuple[DataRule, ...] = ()

    @classmethod
    def build(
        cls,
        user_id: str,
        *,
        active: bool = True,
        roles: Iterable[RoleGrant] = (),
        permissions: Iterable[PermissionGrant] = (),
        organizations: Iterable[str] = (),
        departments: Iterable[str] = (),
        data_rules: Iterable[DataRule] = (),
    ) -> AuthorizationProfile:
        """
        Derive the code sets and the role level from raw grants.

        Inactive roles and permissions are kept on the profile (for display)
        but do not contribute codes or level.
        """

        role_grants = tuple(roles)
        permission_grants = tuple(permissions)
        active_roles = [r for r in role_grants if r.active]

        return cls(
            user_id=str(user_id),
            active=bool(active),
            permission_codes=frozenset(p.code for p in permission_grants if p.active),
            role_codes=frozenset(r.code for r in active_roles),
            role_level=min((r.level for r in active_roles), default=NO_ROLE_LEVEL),
            organization_codes=frozenset(organizations),
            department_codes=frozenset(departments),
            permissions=permission_grants,
            roles=role_grants,
            data_rules=tuple(data_rules),
        )

    @property
    def is_super_admin(self) -> bool:
        return SUPER_ADMIN_ROLE in self.role_codes

    def permission_level(self, code: str) -> int | None:
        for grant in self.permissions:
            if grant.active and grant.code == code:
                return grant.level
        return None

    def has_resource_access(self, resource: str, action: str) -> bool:
        return any(grant.allows(resource, action) for grant in self.permissions)

    def menu_codes(self) -> list[str]:
        return [p.code for p in self.permissions if p.active and p.resource == MENU_RESOURCE]

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serializable dict."""
        return {
            "user_id": self.user_id,
            "active": self.active,
            "role_level": self.role_level,
            "roles": sorted(self.role_codes),
            "permissions": sorted(self.permission_codes),
            "organizations": sorted(self.organization_codes),
            "departments": sorted(self.department_codes),
        }

    def menu_tree(self) -> list[MenuNode]:
        """
        Arrange the menu grants into a tree by ``parent_code``.

        A grant whose parent is not among the user's menu grants becomes a
        root. Siblings are ordered by ``sort_order``, then code.
        """

        menu = {p.code: p for p in self.permissions if p.active and p.resource == MENU_RESOURCE}
        children: dict[str | None, list[PermissionGrant]] = {}
        for grant in menu.values():
            parent = grant.parent_code if grant.parent_code in menu else None
            children.setdefault(parent, []).append(grant)

        def build(parent: str | None) -> tuple[MenuNode, ...]:
            siblings = sorted(children.get(parent, []), key=lambda g: (g.sort_order, g.code))
            return tuple(
                MenuNode(code=g.code, name=g.name, sort_order=g.sort_order, children=build(g.code))
                for g in siblings
            )

        return list(build(None))

    def data_conditions(self, resource: str) -> list[dict[str, Any]]:
        """Conditions of the active data rules on ``resource``; none for super admins."""
        if self.is_super_admin:
            return []
        return [dict(rule.condition) for rule in self.data_rules if rule.active and rule.resource == resource]
