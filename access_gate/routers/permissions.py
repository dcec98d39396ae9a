from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import ValidationError

from access_gate.authz.errors import ProfileLoadError
from access_gate.authz.gate import AuthorizationGate
from access_gate.authz.requirement import Mode
from access_gate.authz.service import PermissionService
from access_gate.schemas.permissions import (
    CacheClearedOut,
    CheckLevelIn,
    CheckLevelOut,
    CheckMultipleIn,
    CheckMultipleOut,
    CheckPermissionIn,
    CheckPermissionOut,
    CheckRoleIn,
    CheckRoleOut,
    DataFiltersOut,
    MenuNodeOut,
    MenuOut,
    MenuTreeOut,
    PermissionResultOut,
    ProfileOut,
)
from access_gate.security.decorators import requires
from access_gate.security.dependencies import get_current_user_id, get_gate, get_permission_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/permissions", tags=["permissions"])

# Holders of this permission may inspect other users' profiles, menus and data filters.
VIEW_OTHERS_PERMISSION = "permissions.view"


def _check_failed(exc: ProfileLoadError) -> HTTPException:
    logger.error("Permission endpoint failed: %s", exc)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": "permission check failed", "code": "PERMISSION_CHECK_ERROR", "reason": None},
    )


def _ensure_can_view(service: PermissionService, caller_id: str, target_id: str) -> None:
    if caller_id == target_id:
        return
    if not service.check_permission(caller_id, VIEW_OTHERS_PERMISSION).allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "insufficient permissions",
                "code": "INSUFFICIENT_PERMISSIONS",
                "reason": "permission insufficient",
            },
        )


# ---- Checks for the current user ---------------------------------------------------


@router.post("/check", response_model=CheckPermissionOut)
def check_permission(
    body: CheckPermissionIn,
    user_id: str = Depends(get_current_user_id),
    service: PermissionService = Depends(get_permission_service),
) -> CheckPermissionOut:
    try:
        decision = service.check_permission(user_id, body.permission)
    except ProfileLoadError as exc:
        raise _check_failed(exc) from exc
    return CheckPermissionOut(
        has_permission=decision.allowed,
        reason=decision.reason,
        level=decision.level,
        user_id=user_id,
        permission=body.permission,
    )


@router.post("/check-multiple", response_model=CheckMultipleOut)
def check_multiple(
    body: CheckMultipleIn,
    user_id: str = Depends(get_current_user_id),
    service: PermissionService = Depends(get_permission_service),
) -> CheckMultipleOut:
    try:
        result = service.check_multiple_permissions(user_id, body.permissions, body.mode)
    except ProfileLoadError as exc:
        raise _check_failed(exc) from exc
    return CheckMultipleOut(
        has_permission=result.allowed,
        mode=result.mode,
        results={
            code: PermissionResultOut(has_permission=d.allowed, reason=d.reason, level=d.level)
            for code, d in result.results.items()
        },
        user_id=user_id,
    )


def _check_role(service: PermissionService, user_id: str, body: CheckRoleIn) -> CheckRoleOut:
    try:
        decision = service.check_role(user_id, body.roles, body.mode)
    except ProfileLoadError as exc:
        raise _check_failed(exc) from exc
    return CheckRoleOut(has_role=decision.allowed, roles=body.roles, mode=body.mode, user_id=user_id)


@router.post("/check-role", response_model=CheckRoleOut)
def check_role(
    body: CheckRoleIn,
    user_id: str = Depends(get_current_user_id),
    service: PermissionService = Depends(get_permission_service),
) -> CheckRoleOut:
    return _check_role(service, user_id, body)


@router.get("/check-role", response_model=CheckRoleOut)
def check_role_query(
    roles: str = Query(min_length=1, description="Comma-separated role codes"),
    mode: Mode = Query(default=Mode.OR),
    user_id: str = Depends(get_current_user_id),
    service: PermissionService = Depends(get_permission_service),
) -> CheckRoleOut:
    role_list = [role.strip() for role in roles.split(",") if role.strip()]
    try:
        body = CheckRoleIn(roles=role_list, mode=mode)
    except ValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail=exc.errors(include_url=False, include_context=False),
        ) from exc
    return _check_role(service, user_id, body)


def _check_level(service: PermissionService, user_id: str, level: int) -> CheckLevelOut:
    try:
        decision = service.check_role_level(user_id, level)
    except ProfileLoadError as exc:
        raise _check_failed(exc) from exc
    return CheckLevelOut(
        has_level=decision.allowed,
        required_level=level,
        user_level=decision.level,
        user_id=user_id,
    )


@router.post("/check-level", response_model=CheckLevelOut)
def check_level(
    body: CheckLevelIn,
    user_id: str = Depends(get_current_user_id),
    service: PermissionService = Depends(get_permission_service),
) -> CheckLevelOut:
    return _check_level(service, user_id, body.level)


@router.get("/check-level", response_model=CheckLevelOut)
def check_level_query(
    level: int = Query(ge=0),
    user_id: str = Depends(get_current_user_id),
    service: PermissionService = Depends(get_permission_service),
) -> CheckLevelOut:
    return _check_level(service, user_id, level)


# ---- Profile and menu --------------------------------------------------------------


@router.get("/user/{target_id}", response_model=ProfileOut)
def get_user_profile(
    target_id: str,
    user_id: str = Depends(get_current_user_id),
    service: PermissionService = Depends(get_permission_service),
) -> ProfileOut:
    try:
        _ensure_can_view(service, user_id, target_id)
        profile, _ = service.get_profile(target_id)
    except ProfileLoadError as exc:
        raise _check_failed(exc) from exc
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return ProfileOut(**profile.to_dict())


@router.get("/menu/{target_id}", response_model=MenuOut)
def get_menu(
    target_id: str,
    user_id: str = Depends(get_current_user_id),
    service: PermissionService = Depends(get_permission_service),
) -> MenuOut:
    try:
        _ensure_can_view(service, user_id, target_id)
        menu = service.get_menu_permissions(target_id)
    except ProfileLoadError as exc:
        raise _check_failed(exc) from exc
    if menu is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return MenuOut(user_id=target_id, menu_permissions=menu)


@router.get("/menu-tree/{target_id}", response_model=MenuTreeOut)
def get_menu_tree(
    target_id: str,
    user_id: str = Depends(get_current_user_id),
    service: PermissionService = Depends(get_permission_service),
) -> MenuTreeOut:
    try:
        _ensure_can_view(service, user_id, target_id)
        tree = service.get_menu_tree(target_id)
    except ProfileLoadError as exc:
        raise _check_failed(exc) from exc
    if tree is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return MenuTreeOut(user_id=target_id, menu=[MenuNodeOut(**node.to_dict()) for node in tree])


@router.get("/data-filters/{target_id}", response_model=DataFiltersOut)
def get_data_filters(
    target_id: str,
    resource: str = Query(min_length=1),
    user_id: str = Depends(get_current_user_id),
    service: PermissionService = Depends(get_permission_service),
) -> DataFiltersOut:
    try:
        _ensure_can_view(service, user_id, target_id)
        filters = service.get_data_filters(target_id, resource)
    except ProfileLoadError as exc:
        raise _check_failed(exc) from exc
    if filters is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return DataFiltersOut(user_id=target_id, resource=resource, filters=filters)


# ---- Cache administration ----------------------------------------------------------


@router.get("/cache")
@requires(level=1, description="Read permission cache and audit statistics")
def cache_stats(gate: AuthorizationGate = Depends(get_gate)) -> dict[str, Any]:
    return gate.stats()


@router.delete("/cache", response_model=CacheClearedOut)
@requires(level=1, description="Clear all cached profiles")
def clear_cache(gate: AuthorizationGate = Depends(get_gate)) -> CacheClearedOut:
    cleared = gate.invalidate_all()
    logger.info("Permission cache cleared entries=%d", cleared)
    return CacheClearedOut(cleared=cleared)


@router.delete("/cache/{target_id}", response_model=CacheClearedOut)
@requires(level=1, description="Drop one user's cached profile")
def clear_user_cache(target_id: str, gate: AuthorizationGate = Depends(get_gate)) -> CacheClearedOut:
    removed = gate.invalidate(target_id)
    logger.info("Permission cache entry dropped user_id=%s removed=%s", target_id, removed)
    return CacheClearedOut(cleared=1 if removed else 0)
