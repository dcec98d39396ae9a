from __future__ import annotations

from collections.abc import Callable
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Mode(str, Enum):
    """How multiple values (and multiple criterion kinds) combine."""

    AND = "AND"
    OR = "OR"

    @classmethod
    def coerce(cls, value: Mode | str) -> Mode:
        """Accept a ``Mode`` or its name in any case."""
        if isinstance(value, str) and not isinstance(value, Mode):
            value = value.strip().upper()
        return cls(value)

    def combine(self, results: list[bool]) -> bool:
        if self is Mode.AND:
            return all(results)
        return any(results)


class Requirement(BaseModel):
    """
    Declarative access rule attached to a page or an API operation.

    Empty lists count as "not populated". A requirement with nothing
    populated places no restriction on an active user.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    permissions: list[str] = Field(default_factory=list)
    roles: list[str] = Field(default_factory=list)
    level: int | None = Field(default=None, ge=0)
    organizations: list[str] = Field(default_factory=list)
    departments: list[str] = Field(default_factory=list)
    resource: str | None = None
    action: str | None = None
    custom_check: Callable[[str], bool] | None = Field(default=None, exclude=True)
    mode: Mode = Mode.AND
    description: str | None = None

    @field_validator("mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @model_validator(mode="after")
    def _resource_needs_action(self) -> Requirement:
        if (self.resource is None) != (self.action is None):
            raise ValueError("resource and action must be given together")
        return self

    def is_empty(self) -> bool:
        return not (
            self.permissions
            or self.roles
            or self.level is not None
            or self.organizations
            or self.departments
            or self.resource is not None
            or self.custom_check is not None
        )
