"""
Route/operation permission table and YAML loader.

Two tables are kept:

- pages, keyed by path: ``/dashboard/users``
- operations, keyed by HTTP method and path: ``GET /api/users``

Lookup is exact match first, then the path is shortened one segment at a time
until a registered key is found, so the longest registered prefix wins. There
is no wildcard or template matching. A total miss means "no restriction".
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from .errors import RequirementConfigError
from .requirement import Requirement

logger = logging.getLogger(__name__)

API_PREFIX = "/api/"


class AccessRulesModel(BaseModel):
    pages: dict[str, Requirement] = Field(default_factory=dict)
    operations: dict[str, Requirement] = Field(default_factory=dict)


def operation_key(method: str, path: str) -> str:
    return f"{method.strip().upper()} {path}"


def _normalize_operation_key(raw_key: str) -> str:
    parts = raw_key.split()
    if len(parts) != 2 or not parts[1].startswith("/"):
        raise RequirementConfigError(f"operation key {raw_key!r} must look like 'METHOD /path'")
    return operation_key(parts[0], parts[1])


def path_prefixes(path: str) -> Iterator[str]:
    """
    Yield ``path`` and then each shorter segment prefix.

    Example:
        /dashboard/users/create  ->  /dashboard/users/create, /dashboard/users, /dashboard
    """

    yield path
    segments = [s for s in path.split("/") if s]
    for i in range(len(segments), 0, -1):
        candidate = "/" + "/".join(segments[:i])
        if candidate != path:
            yield candidate


def is_api_path(path: str) -> bool:
    return path.startswith(API_PREFIX)


class RuleTable:
    """
    Runtime helper around the page and operation requirement tables.

    Usage:
        table = load_access_rules(Path("config/access_rules.yaml"))
        requirement = table.resolve("GET", "/api/users")
    """

    def __init__(
        self,
        pages: Mapping[str, Requirement] | None = None,
        operations: Mapping[str, Requirement] | None = None,
    ) -> None:
        self._pages: dict[str, Requirement] = dict(pages or {})
        self._operations: dict[str, Requirement] = {}
        for key, requirement in (operations or {}).items():
            self._operations[_normalize_operation_key(key)] = requirement

    @property
    def pages(self) -> Mapping[str, Requirement]:
        return dict(self._pages)

    @property
    def operations(self) -> Mapping[str, Requirement]:
        return dict(self._operations)

    # ---- Registration ---------------------------------------------------------------

    def add_page_rule(self, path: str, requirement: Requirement) -> None:
        self._pages[path] = requirement

    def add_operation_rule(self, method: str, path: str, requirement: Requirement) -> None:
        self._operations[operation_key(method, path)] = requirement

    # ---- Resolution -----------------------------------------------------------------

    def resolve_page(self, path: str) -> Requirement | None:
        for candidate in path_prefixes(path):
            requirement = self._pages.get(candidate)
            if requirement is not None:
                return requirement
        return None

    def resolve_operation(self, method: str, path: str) -> Requirement | None:
        for candidate in path_prefixes(path):
            requirement = self._operations.get(operation_key(method, candidate))
            if requirement is not None:
                return requirement
        return None

    def resolve(self, method: str, path: str) -> Requirement | None:
        """Operation lookup for ``/api/`` paths, page lookup for everything else."""
        if is_api_path(path):
            return self.resolve_operation(method, path)
        return self.resolve_page(path)


def load_access_rules(path: Path) -> RuleTable:
    """
    Load and validate the access rules YAML from disk.

    Expected shape (simplified):

        access:
          pages:
            /dashboard/users:
              permissions: [user.view]
              level: 3
          operations:
            GET /api/users:
              permissions: [users.view]
    """

    raw_text = path.read_text(encoding="utf-8")
    raw: dict[str, Any] = yaml.safe_load(raw_text) or {}

    if "access" not in raw:
        raise RequirementConfigError(f"Missing top-level 'access' key in rules file: {path}")

    try:
        model = AccessRulesModel.model_validate(raw["access"] or {})
    except ValidationError as exc:
        raise RequirementConfigError(f"Invalid access rules in {path}: {exc}") from exc

    table = RuleTable(pages=model.pages, operations=model.operations)
    logger.debug(
        "Loaded access rules path=%s pages=%d operations=%d",
        path,
        len(model.pages),
        len(model.operations),
    )
    return table
