from __future__ import annotations

from collections.abc import Callable
from typing import Any

from access_gate.authz.requirement import Requirement

REQUIREMENT_ATTR = "__access_requirement__"


def requires(**criteria: Any) -> Callable:
    """
    Attach an access requirement to an endpoint.

    The decorator does NOT perform any check itself. It stores a
    ``Requirement`` on the function, and the global ``enforce_access``
    dependency reads it after routing. An endpoint requirement takes
    precedence over the rule table entry for the same path.

    Example:
        @router.delete("/cache")
        @requires(level=1)
        def clear_cache(...): ...
    """

    requirement = Requirement(**criteria)

    def decorator(fn: Callable) -> Callable:
        setattr(fn, REQUIREMENT_ATTR, requirement)
        return fn

    return decorator


def endpoint_requirement(endpoint: Callable | None) -> Requirement | None:
    if endpoint is None:
        return None
    return getattr(endpoint, REQUIREMENT_ATTR, None)
