"""
Framework-free authorization engine.

This package has no dependency on FastAPI. Build a ``PermissionService`` from a
profile loader and a ``PermissionCache``, then either call its checks directly
or wrap it in an ``AuthorizationGate`` for route-level decisions.
"""

from .cache import PermissionCache
from .errors import AuthzError, ConfigurationError, ProfileLoadError, ProfileLoadTimeout, RequirementConfigError
from .evaluator import Decision, evaluate
from .gate import AuthorizationGate, GateConfig, GateDecision
from .profile import AuthorizationProfile, PermissionGrant, RoleGrant
from .requirement import Mode, Requirement
from .rules import RuleTable, load_access_rules
from .service import ChangeEvent, PermissionService

__all__ = [
    "AuthorizationGate",
    "AuthorizationProfile",
    "AuthzError",
    "ChangeEvent",
    "ConfigurationError",
    "Decision",
    "GateConfig",
    "GateDecision",
    "Mode",
    "PermissionCache",
    "PermissionGrant",
    "PermissionService",
    "ProfileLoadError",
    "ProfileLoadTimeout",
    "Requirement",
    "RequirementConfigError",
    "RoleGrant",
    "RuleTable",
    "evaluate",
    "load_access_rules",
]
