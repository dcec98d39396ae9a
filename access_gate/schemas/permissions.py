from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from access_gate.authz.requirement import Mode

ROLE_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")
MAX_ROLES = 10


def validate_role_names(roles: list[str]) -> list[str]:
    bad = [role for role in roles if not ROLE_PATTERN.match(role)]
    if bad:
        raise ValueError(
            f"role names must be upper-case letters, digits and underscores, "
            f"starting with a letter or underscore: {bad}"
        )
    return roles


class CheckPermissionIn(BaseModel):
    permission: str = Field(min_length=1)


class CheckPermissionOut(BaseModel):
    has_permission: bool
    reason: str | None = None
    level: int | None = None
    user_id: str
    permission: str


class CheckMultipleIn(BaseModel):
    permissions: list[str] = Field(min_length=1)
    mode: Mode = Mode.AND

    @field_validator("permissions")
    @classmethod
    def _non_blank(cls, value: list[str]) -> list[str]:
        if any(not code.strip() for code in value):
            raise ValueError("permission codes must not be blank")
        return value


class PermissionResultOut(BaseModel):
    has_permission: bool
    reason: str | None = None
    level: int | None = None


class CheckMultipleOut(BaseModel):
    has_permission: bool
    mode: Mode
    results: dict[str, PermissionResultOut]
    user_id: str


class CheckRoleIn(BaseModel):
    roles: list[str] = Field(min_length=1, max_length=MAX_ROLES)
    mode: Mode = Mode.OR

    @field_validator("roles")
    @classmethod
    def _role_names(cls, value: list[str]) -> list[str]:
        return validate_role_names(value)


class CheckRoleOut(BaseModel):
    has_role: bool
    roles: list[str]
    mode: Mode
    user_id: str


class CheckLevelIn(BaseModel):
    level: int = Field(ge=0)


class CheckLevelOut(BaseModel):
    has_level: bool
    required_level: int
    user_level: int | None = None
    user_id: str


class ProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    active: bool
    role_level: int
    roles: list[str]
    permissions: list[str]
    organizations: list[str]
    departments: list[str]


class MenuOut(BaseModel):
    user_id: str
    menu_permissions: list[str]


class MenuNodeOut(BaseModel):
    code: str
    name: str | None = None
    sort_order: int = 0
    children: list[MenuNodeOut] = Field(default_factory=list)


class MenuTreeOut(BaseModel):
    user_id: str
    menu: list[MenuNodeOut]


class DataFiltersOut(BaseModel):
    user_id: str
    resource: str
    # Empty means no row-level restriction.
    filters: list[dict[str, Any]]


class CacheClearedOut(BaseModel):
    cleared: int
