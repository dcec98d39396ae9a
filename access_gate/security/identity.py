from __future__ import annotations

import logging

import jwt
from fastapi import Request

from access_gate.authz.errors import ConfigurationError
from access_gate.settings import Settings

logger = logging.getLogger(__name__)

ALGORITHMS = ["HS256"]


def resolve_user_id(request: Request, settings: Settings) -> str | None:
    """
    Resolve the caller's user id from a bearer token.

    - Input: ``Authorization: Bearer <jwt>`` signed with ``auth_secret`` (HS256)
    - Output: the ``sub`` claim, or None when the header is missing or the
      token does not validate. Never logs the token itself.
    """

    if not settings.auth_secret:
        raise ConfigurationError("ACCESS_GATE_AUTH_SECRET is not set")

    header_name = settings.authorization_header
    raw = request.headers.get(header_name)
    if not raw:
        logger.debug("No %s header path=%s method=%s", header_name, request.url.path, request.method)
        return None

    prefix = f"{settings.bearer_prefix} "
    if not raw.startswith(prefix):
        logger.warning("Invalid %s header format path=%s method=%s", header_name, request.url.path, request.method)
        return None

    token = raw[len(prefix) :].strip()
    if not token:
        logger.warning("Empty bearer token path=%s method=%s", request.url.path, request.method)
        return None

    try:
        payload = jwt.decode(
            token,
            settings.auth_secret,
            algorithms=ALGORITHMS,
            options={"require": ["sub"]},
        )
    except jwt.ExpiredSignatureError:
        logger.info("Expired bearer token path=%s method=%s", request.url.path, request.method)
        return None
    except jwt.InvalidTokenError as exc:
        logger.warning("Rejected bearer token path=%s reason=%s", request.url.path, type(exc).__name__)
        return None

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        logger.warning("Bearer token has no usable sub claim path=%s", request.url.path)
        return None
    return subject
