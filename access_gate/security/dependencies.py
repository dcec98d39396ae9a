from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request, status

from access_gate.authz.errors import ConfigurationError
from access_gate.authz.gate import AuthorizationGate
from access_gate.authz.service import PermissionService
from access_gate.security.decorators import endpoint_requirement
from access_gate.security.identity import resolve_user_id
from access_gate.settings import Settings, get_settings

logger = logging.getLogger(__name__)

CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


def get_gate(request: Request) -> AuthorizationGate:
    gate = getattr(request.app.state, "gate", None)
    if gate is None:
        raise RuntimeError("Authorization gate not initialized. Did app startup run?")
    return gate


def get_permission_service(request: Request) -> PermissionService:
    service = getattr(request.app.state, "permission_service", None)
    if service is None:
        raise RuntimeError("Permission service not initialized. Did app startup run?")
    return service


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_current_user_id(request: Request) -> str:
    user_id = getattr(request.state, "user_id", None)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "authentication required", "code": "UNAUTHENTICATED", "reason": None},
        )
    return user_id


def enforce_access(
    request: Request,
    gate: AuthorizationGate = Depends(get_gate),
    settings: Settings = Depends(get_app_settings),
) -> None:
    """
    Global access dependency.

    Runs after routing, so an endpoint's ``@requires(...)`` metadata is
    visible here. Without it the gate falls back to the rule table entry for
    the request's method and path.
    """

    path = request.url.path
    method = request.method.upper()

    if gate.is_public(path):
        # Public endpoints may still use the caller's identity when one is sent.
        request.state.user_id = _optional_user_id(request, settings)
        return

    try:
        user_id = resolve_user_id(request, settings)
    except ConfigurationError as exc:
        logger.error("Access check misconfigured path=%s error=%s", path, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "server misconfigured", "code": CONFIGURATION_ERROR, "reason": str(exc)},
        ) from exc

    requirement = endpoint_requirement(request.scope.get("endpoint"))
    decision = gate.authorize(method, path, user_id, requirement)
    request.state.user_id = user_id

    if decision.allowed:
        return

    if decision.redirect_to is not None:
        raise HTTPException(
            status_code=status.HTTP_303_SEE_OTHER,
            headers={"Location": decision.redirect_to},
        )
    raise HTTPException(status_code=decision.status_code, detail=decision.error_body())


def _optional_user_id(request: Request, settings: Settings) -> str | None:
    try:
        return resolve_user_id(request, settings)
    except ConfigurationError:
        return None
