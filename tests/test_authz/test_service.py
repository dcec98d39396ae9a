"""Tests for the permission service (cache + loader + checks)."""

import threading
from unittest.mock import MagicMock

import pytest

from access_gate.authz.cache import PermissionCache
from access_gate.authz.errors import ProfileLoadError, ProfileLoadTimeout
from access_gate.authz.evaluator import REASON_LEVEL, REASON_PERMISSION, REASON_ROLE
from access_gate.authz.profile import AuthorizationProfile, DataRule, PermissionGrant, RoleGrant
from access_gate.authz.requirement import Mode, Requirement
from access_gate.authz.service import ChangeEvent, PermissionService
from conftest import FakeClock, StaticLoader, make_profile


def test_profile_cached_after_first_load(service, loader):
    loader.profiles["u1"] = make_profile("u1", permissions=("orders.view",))

    first, first_cached = service.get_profile("u1")
    second, second_cached = service.get_profile("u1")

    assert first is second
    assert (first_cached, second_cached) == (False, True)
    assert loader.calls["u1"] == 1


def test_expired_profile_is_reloaded(loader, clock):
    cache = PermissionCache(ttl_seconds=300, clock=clock)
    svc = PermissionService(loader, cache)
    try:
        loader.profiles["u1"] = make_profile("u1", permissions=("orders.view",))
        assert svc.check_permission("u1", "orders.view").allowed is True

        # Downgrade in storage: stale until the TTL passes.
        loader.profiles["u1"] = make_profile("u1")
        clock.advance(100)
        assert svc.check_permission("u1", "orders.view").allowed is True

        clock.advance(200)
        assert svc.check_permission("u1", "orders.view").allowed is False
        assert loader.calls["u1"] == 2
    finally:
        svc.close()


def test_unknown_user_denied_and_not_cached(service, loader):
    decision = service.check_permission("ghost", "orders.view")
    assert decision.allowed is False
    assert decision.reason == REASON_PERMISSION
    service.check_permission("ghost", "orders.view")
    assert loader.calls["ghost"] == 2
    assert "ghost" not in service.cache


def test_loader_failure_raises_profile_load_error(cache):
    failing = MagicMock()
    failing.load.side_effect = ConnectionError("db unreachable")
    svc = PermissionService(failing, cache)
    try:
        with pytest.raises(ProfileLoadError, match="db unreachable"):
            svc.get_profile("u1")
    finally:
        svc.close()


def test_loader_timeout_raises(cache):
    release = threading.Event()

    class SlowLoader:
        def load(self, user_id):
            release.wait(5)
            return make_profile(user_id)

    svc = PermissionService(SlowLoader(), cache, timeout_seconds=0.05)
    try:
        with pytest.raises(ProfileLoadTimeout):
            svc.check_permission("u1", "orders.view")
        assert "u1" not in cache
    finally:
        release.set()
        svc.close()


def test_check_permission_reports_level(service, loader):
    loader.profiles["u1"] = make_profile(
        "u1",
        grants=(PermissionGrant(code="orders.view", level=2),),
    )
    loader.profiles["root"] = make_profile("root", roles={"ADMIN": 0})

    assert service.check_permission("u1", "orders.view").level == 2
    assert service.check_permission("root", "whatever").level == 0


def test_check_multiple_and_or(service, loader):
    loader.profiles["u1"] = make_profile("u1", permissions=("a",))

    result_and = service.check_multiple_permissions("u1", ["a", "b"], Mode.AND)
    result_or = service.check_multiple_permissions("u1", ["a", "b"], Mode.OR)

    assert result_and.allowed is False
    assert result_or.allowed is True
    assert result_and.results["a"].allowed is True
    assert result_and.results["b"].reason == REASON_PERMISSION


def test_check_multiple_empty_list_denies(service, loader):
    loader.profiles["u1"] = make_profile("u1")
    assert service.check_multiple_permissions("u1", []).allowed is False


def test_check_role_is_any_of(service, loader):
    loader.profiles["u1"] = make_profile("u1", roles={"FINANCE": 3})
    assert service.check_role("u1", ["FINANCE", "AUDITOR"], Mode.AND).allowed is True
    assert service.check_role("u1", ["AUDITOR"]).reason == REASON_ROLE
    assert service.check_role("u1", []).allowed is False


def test_check_role_level_returns_user_level(service, loader):
    loader.profiles["u1"] = make_profile("u1", roles={"MANAGER": 2, "STAFF": 5})
    allowed = service.check_role_level("u1", 3)
    denied = service.check_role_level("u1", 1)
    assert (allowed.allowed, allowed.level) == (True, 2)
    assert (denied.allowed, denied.reason, denied.level) == (False, REASON_LEVEL, 2)


def test_resource_organization_department_checks(service, loader):
    loader.profiles["u1"] = make_profile(
        "u1",
        grants=(PermissionGrant(code="orders.read", resource="orders", action="read"),),
        organizations=("HQ",),
        departments=("SALES",),
    )
    assert service.check_resource_access("u1", "orders").allowed is True
    assert service.check_resource_access("u1", "orders", "write").allowed is False
    assert service.check_organization("u1", "HQ").allowed is True
    assert service.check_department("u1", "OPS").allowed is False


def test_menu_permissions(service, loader):
    loader.profiles["u1"] = make_profile(
        "u1",
        grants=(
            PermissionGrant(code="menu.orders", resource="MENU", action="view"),
            PermissionGrant(code="orders.view", resource="orders", action="read"),
        ),
    )
    assert service.get_menu_permissions("u1") == ["menu.orders"]
    assert service.get_menu_permissions("ghost") is None


def test_evaluate_uses_requirement(service, loader):
    loader.profiles["u1"] = make_profile("u1", permissions=("user.view",), roles={"MANAGER": 2})
    assert service.evaluate("u1", Requirement(permissions=["user.view"], level=3)).allowed is True


def test_notify_change_user_event_drops_one_entry(service, loader):
    loader.profiles["u1"] = make_profile("u1")
    loader.profiles["u2"] = make_profile("u2")
    service.get_profile("u1")
    service.get_profile("u2")

    service.notify_change("u1", ChangeEvent.USER_ROLE_CHANGED)

    assert "u1" not in service.cache
    assert "u2" in service.cache


@pytest.mark.parametrize("event", [ChangeEvent.ROLE_PERMISSION_CHANGED, ChangeEvent.PERMISSION_UPDATED])
def test_notify_change_global_event_clears_everything(service, loader, event):
    loader.profiles["u1"] = make_profile("u1")
    loader.profiles["u2"] = make_profile("u2")
    service.get_profile("u1")
    service.get_profile("u2")

    service.notify_change("u1", event)

    assert len(service.cache) == 0


def test_disabled_cache_loads_every_time(loader):
    svc = PermissionService(loader, PermissionCache(enabled=False, clock=FakeClock()))
    try:
        loader.profiles["u1"] = make_profile("u1")
        svc.check_permission("u1", "x")
        svc.check_permission("u1", "x")
        assert loader.calls["u1"] == 2
    finally:
        svc.close()


def test_concurrent_checks_share_cached_profile(cache):
    loader = StaticLoader({"u1": make_profile("u1", permissions=("a",))})
    svc = PermissionService(loader, cache)
    svc.get_profile("u1")
    results: list[bool] = []
    lock = threading.Lock()

    def worker() -> None:
        for _ in range(50):
            allowed = svc.check_permission("u1", "a").allowed
            with lock:
                results.append(allowed)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    try:
        for t in threads:
            t.start()
        for t in threads:
            t.join()
    finally:
        svc.close()

    assert all(results) and len(results) == 400
    assert loader.calls["u1"] == 1


def test_invalidation_during_load_is_not_overwritten(cache):
    started = threading.Event()
    release = threading.Event()

    class BlockingLoader:
        def load(self, user_id):
            started.set()
            release.wait(5)
            return make_profile(user_id, permissions=("orders.view",))

    svc = PermissionService(BlockingLoader(), cache, timeout_seconds=5.0)
    try:
        worker = threading.Thread(target=svc.get_profile, args=("u1",))
        worker.start()
        assert started.wait(5)

        # The profile being loaded predates this change.
        svc.invalidate("u1")
        release.set()
        worker.join(5)

        assert not worker.is_alive()
        assert "u1" not in cache
    finally:
        release.set()
        svc.close()


def test_load_without_concurrent_invalidation_is_cached(service, loader):
    loader.profiles["u1"] = make_profile("u1")
    service.invalidate("other")
    service.get_profile("u1")
    assert "u1" in service.cache


def test_mode_accepts_names(service, loader):
    loader.profiles["u1"] = make_profile("u1", permissions=("a",), roles={"FINANCE": 2})

    assert service.check_multiple_permissions("u1", ["a", "b"], "or").allowed is True
    assert service.check_multiple_permissions("u1", ["a", "b"], "AND").allowed is False
    assert service.check_role("u1", ["FINANCE", "ADMIN"], "and").allowed is True
    with pytest.raises(ValueError):
        service.check_multiple_permissions("u1", ["a"], "XOR")


def test_menu_tree_and_data_filters(service, loader):
    loader.profiles["u1"] = AuthorizationProfile.build(
        "u1",
        roles=[RoleGrant(code="SALES", level=3)],
        permissions=[
            PermissionGrant(code="menu.orders", resource="MENU", action="view", sort_order=1),
            PermissionGrant(code="menu.orders.list", resource="MENU", action="view", parent_code="menu.orders"),
        ],
        data_rules=[DataRule(code="orders.eu", resource="orders", condition={"region": "EU"})],
    )

    tree = service.get_menu_tree("u1")
    assert [node.code for node in tree] == ["menu.orders"]
    assert [child.code for child in tree[0].children] == ["menu.orders.list"]

    assert service.get_data_filters("u1", "orders") == [{"region": "EU"}]
    assert service.get_data_filters("u1", "customers") == []
    assert loader.calls["u1"] == 1


def test_menu_tree_and_data_filters_unknown_user(service):
    assert service.get_menu_tree("ghost") is None
    assert service.get_data_filters("ghost", "orders") is None
