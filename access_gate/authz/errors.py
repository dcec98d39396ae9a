"""Exceptions raised by the authorization engine.

Denials are ordinary return values. These exceptions cover the conditions
that cannot produce a decision at all; the gate converts them into a deny.
"""

from __future__ import annotations


class AuthzError(Exception):
    """Base class for authorization engine failures."""


class ProfileLoadError(AuthzError):
    """Raised when the profile loader fails or cannot be reached."""


class ProfileLoadTimeout(ProfileLoadError):
    """Raised when the profile loader does not answer within the timeout."""


class RequirementConfigError(ValueError):
    """Raised when an access rule or requirement descriptor is malformed."""


class ConfigurationError(RuntimeError):
    """Raised when required runtime configuration (e.g. a secret) is missing."""
