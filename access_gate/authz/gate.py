"""
Request/route authorization gate.

Wires (method, path, user id) to a requirement, asks the permission service
for a decision and translates it into something a transport can act on:

- page routes: allow, or redirect (sign-in page / unauthorized page);
- API routes (``/api/...``): allow, or a structured error with a stable code.

This module is pure Python and has no FastAPI dependency. ``access_gate.security``
plugs it into FastAPI as a global dependency.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict

from .evaluator import REASON_PERMISSION, Decision, evaluate
from .requirement import Requirement
from .rules import RuleTable, is_api_path
from .service import PermissionService

if TYPE_CHECKING:
    from access_gate.settings import Settings

logger = logging.getLogger(__name__)

UNAUTHENTICATED = "UNAUTHENTICATED"
INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
PERMISSION_CHECK_ERROR = "PERMISSION_CHECK_ERROR"

RECENT_CHECKS_LIMIT = 100


class GateConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    public_paths: tuple[str, ...] = ("/auth", "/api/auth", "/")
    unauthorized_path: str = "/dashboard/unauthorized"
    signin_path: str = "/auth/signin"
    detailed_logging: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> GateConfig:
        return cls(
            public_paths=tuple(settings.public_paths),
            unauthorized_path=settings.unauthorized_path,
            signin_path=settings.signin_path,
            detailed_logging=settings.detailed_logging,
        )


@dataclass(frozen=True)
class GateDecision:
    """What the transport should do with the request."""

    allowed: bool
    status_code: int = 200
    redirect_to: str | None = None
    error_code: str | None = None
    reason: str | None = None
    from_cache: bool = False

    def error_body(self) -> dict[str, object]:
        return {
            "error": _ERROR_MESSAGES.get(self.error_code or "", "access denied"),
            "code": self.error_code,
            "reason": self.reason,
        }


_ERROR_MESSAGES = {
    UNAUTHENTICATED: "authentication required",
    INSUFFICIENT_PERMISSIONS: "insufficient permissions",
    PERMISSION_CHECK_ERROR: "permission check failed",
}


@dataclass(frozen=True)
class AuditRecord:
    user_id: str
    path: str
    method: str
    result: bool
    reason: str | None
    duration_ms: float
    from_cache: bool
    timestamp: float


AuditSink = Callable[[AuditRecord], None]


class GateStats:
    """Running counters over the gate's decisions."""

    def __init__(self, recent_limit: int = RECENT_CHECKS_LIMIT) -> None:
        self._lock = threading.Lock()
        self._total = 0
        self._cache_hits = 0
        self._denied = 0
        self._total_duration_ms = 0.0
        self._recent: deque[AuditRecord] = deque(maxlen=recent_limit)

    def record(self, record: AuditRecord) -> None:
        with self._lock:
            self._total += 1
            self._total_duration_ms += record.duration_ms
            if record.from_cache:
                self._cache_hits += 1
            if not record.result:
                self._denied += 1
            self._recent.append(record)

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            total = self._total
            return {
                "total_checks": total,
                "cache_hits": self._cache_hits,
                "cache_hit_rate": (self._cache_hits / total) if total else 0.0,
                "denied_count": self._denied,
                "average_check_time_ms": (self._total_duration_ms / total) if total else 0.0,
                "recent_checks": [
                    {
                        "user_id": r.user_id,
                        "path": r.path,
                        "method": r.method,
                        "result": r.result,
                        "timestamp": r.timestamp,
                        "duration_ms": r.duration_ms,
                    }
                    for r in self._recent
                ],
            }


def _matches_prefix(path: str, prefix: str) -> bool:
    # "/" would otherwise match every path.
    if prefix == "/":
        return path == "/"
    prefix = prefix.rstrip("/")
    return path == prefix or path.startswith(prefix + "/")


class AuthorizationGate:
    """
    Route-level authorization.

    Usage:
        gate = AuthorizationGate(load_access_rules(path), service, GateConfig())
        decision = gate.authorize("GET", "/dashboard/orders", user_id)
    """

    def __init__(
        self,
        rules: RuleTable,
        service: PermissionService,
        config: GateConfig | None = None,
        audit_sink: AuditSink | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._rules = rules
        self._service = service
        self._config = config or GateConfig()
        self._audit_sink = audit_sink
        self._clock = clock
        self._stats = GateStats()

    @property
    def config(self) -> GateConfig:
        return self._config

    @property
    def rules(self) -> RuleTable:
        return self._rules

    @property
    def service(self) -> PermissionService:
        return self._service

    # ---- Public vs protected --------------------------------------------------------

    def is_public(self, path: str) -> bool:
        cfg = self._config
        if path in (cfg.signin_path, cfg.unauthorized_path):
            return True
        return any(_matches_prefix(path, prefix) for prefix in cfg.public_paths)

    # ---- Main decision API ----------------------------------------------------------

    def authorize(
        self,
        method: str,
        path: str,
        user_id: str | None,
        requirement: Requirement | None = None,
    ) -> GateDecision:
        """
        Decide what to do with a request.

        Algorithm:
        1. Public path -> allow.
        2. No identity -> sign-in redirect (pages) or 401 (API).
        3. Requirement from the caller, else from the rule table; none -> allow.
        4. Profile via cache/loader, evaluate, translate.
        Any exception along the way denies.
        """

        method = method.upper()
        if self.is_public(path):
            return GateDecision(allowed=True)

        api = is_api_path(path)
        if user_id is None:
            if self._config.detailed_logging:
                logger.info("Gate: unauthenticated access path=%s method=%s", path, method)
            return self._unauthenticated(path, api)

        started = self._clock()
        from_cache = False
        try:
            if requirement is None:
                requirement = self._rules.resolve(method, path)
            if requirement is None:
                logger.debug("Gate: no rule for method=%s path=%s; allowing", method, path)
                return GateDecision(allowed=True)

            profile, from_cache = self._service.get_profile(user_id)
            if profile is None:
                decision = Decision.deny(REASON_PERMISSION)
            else:
                decision = evaluate(profile, requirement)
        except Exception:
            logger.exception("Gate: permission check failed user_id=%s method=%s path=%s", user_id, method, path)
            self._audit(user_id, path, method, False, PERMISSION_CHECK_ERROR, started, from_cache)
            if api:
                return GateDecision(
                    allowed=False,
                    status_code=500,
                    error_code=PERMISSION_CHECK_ERROR,
                )
            return GateDecision(allowed=False, status_code=303, redirect_to=self._config.unauthorized_path)

        self._audit(user_id, path, method, decision.allowed, decision.reason, started, from_cache)

        if decision.allowed:
            return GateDecision(allowed=True, from_cache=from_cache)
        if api:
            return GateDecision(
                allowed=False,
                status_code=403,
                error_code=INSUFFICIENT_PERMISSIONS,
                reason=decision.reason,
                from_cache=from_cache,
            )
        return GateDecision(
            allowed=False,
            status_code=303,
            redirect_to=self._config.unauthorized_path,
            reason=decision.reason,
            from_cache=from_cache,
        )

    def _unauthenticated(self, path: str, api: bool) -> GateDecision:
        if api:
            return GateDecision(allowed=False, status_code=401, error_code=UNAUTHENTICATED)
        target = f"{self._config.signin_path}?{urlencode({'callbackUrl': path})}"
        return GateDecision(allowed=False, status_code=303, redirect_to=target)

    def _audit(
        self,
        user_id: str,
        path: str,
        method: str,
        result: bool,
        reason: str | None,
        started: float,
        from_cache: bool,
    ) -> None:
        record = AuditRecord(
            user_id=user_id,
            path=path,
            method=method,
            result=result,
            reason=reason,
            duration_ms=(self._clock() - started) * 1000.0,
            from_cache=from_cache,
            timestamp=time.time(),
        )
        self._stats.record(record)

        log_level = logging.INFO if self._config.detailed_logging else logging.DEBUG
        logger.log(
            log_level,
            "Gate: user_id=%s method=%s path=%s result=%s reason=%s duration_ms=%.2f cached=%s",
            user_id,
            method,
            path,
            "allow" if result else "deny",
            reason,
            record.duration_ms,
            from_cache,
        )

        if self._audit_sink is not None:
            try:
                self._audit_sink(record)
            except Exception:
                logger.exception("Gate: audit sink failed")

    # ---- Administration -------------------------------------------------------------

    def configure(
        self,
        ttl_seconds: float | None = None,
        max_size: int | None = None,
        enable_cache: bool | None = None,
        public_paths: list[str] | None = None,
        unauthorized_path: str | None = None,
        signin_path: str | None = None,
        detailed_logging: bool | None = None,
    ) -> GateConfig:
        """Apply new settings; returns the resulting gate config."""

        self._service.cache.configure(ttl_seconds=ttl_seconds, max_size=max_size, enabled=enable_cache)

        update: dict[str, object] = {}
        if public_paths is not None:
            update["public_paths"] = tuple(public_paths)
        if unauthorized_path is not None:
            update["unauthorized_path"] = unauthorized_path
        if signin_path is not None:
            update["signin_path"] = signin_path
        if detailed_logging is not None:
            update["detailed_logging"] = detailed_logging
        if update:
            self._config = self._config.model_copy(update=update)
        return self._config

    def invalidate(self, user_id: str) -> bool:
        return self._service.invalidate(user_id)

    def invalidate_all(self) -> int:
        return self._service.invalidate_all()

    def stats(self) -> dict[str, object]:
        snapshot = self._stats.snapshot()
        snapshot["current_cache_size"] = len(self._service.cache)
        snapshot["cache"] = self._service.cache.stats()
        return snapshot
