"""
Data-layer tests for SqlProfileLoader.

Rows are flushed through ``db_session`` and read back by the loader through a
second session on the same connection, so everything is rolled back after
each test.
"""

import pytest
from sqlalchemy.orm import Session, sessionmaker

from access_gate.authz.loader import SqlProfileLoader
from access_gate.models.security import (
    DataPermissionRule,
    Department,
    Organization,
    Permission,
    Role,
    User,
    UserDataPermission,
    UserPermission,
)


@pytest.fixture
def loader(db_session):
    factory = sessionmaker(bind=db_session.get_bind(), autoflush=False, class_=Session)
    return SqlProfileLoader(factory)


def _seed(db_session) -> None:
    view = Permission(code="orders.view", name="View orders", resource="orders", action="read", level=3)
    export = Permission(code="orders.export", name="Export orders", resource="orders", action="export")
    menu = Permission(code="menu.orders", name="Orders menu", resource="MENU", action="view")
    retired = Permission(code="orders.legacy", name="Legacy", active=False)
    audit = Permission(code="audit.view", name="View audit log")

    manager = Role(code="MANAGER", name="Manager", level=2, permissions=[view, menu, retired])
    auditor = Role(code="AUDITOR", name="Auditor", level=1, active=False, permissions=[audit])

    hq = Organization(code="HQ", name="Head office")
    closed = Organization(code="OLD", name="Closed branch", active=False)
    sales = Department(code="SALES", name="Sales", organization=hq)

    user = User(
        id="u1",
        email="u1@example.com",
        name="User One",
        roles=[manager, auditor],
        organizations=[hq, closed],
        departments=[sales],
    )
    user.direct_permissions = [
        UserPermission(permission=export, granted=True),
        UserPermission(permission=view, granted=True),
        UserPermission(permission=audit, granted=False),
    ]
    db_session.add(user)
    db_session.add(User(id="off", email="off@example.com", active=False, roles=[manager]))
    db_session.flush()


def test_unknown_user_returns_none(loader):
    assert loader.load("nobody") is None


def test_load_builds_profile(db_session, loader):
    _seed(db_session)

    profile = loader.load("u1")

    assert profile is not None
    assert profile.user_id == "u1"
    assert profile.active is True
    # Inactive roles contribute neither codes, level nor permissions.
    assert profile.role_codes == frozenset({"MANAGER"})
    assert profile.role_level == 2
    assert profile.permission_codes == frozenset({"orders.view", "menu.orders", "orders.export"})
    assert profile.organization_codes == frozenset({"HQ"})
    assert profile.department_codes == frozenset({"SALES"})


def test_permissions_are_deduplicated(db_session, loader):
    _seed(db_session)
    profile = loader.load("u1")
    codes = [grant.code for grant in profile.permissions]
    assert len(codes) == len(set(codes))


def test_profile_carries_grant_details(db_session, loader):
    _seed(db_session)
    profile = loader.load("u1")
    assert profile.permission_level("orders.view") == 3
    assert profile.has_resource_access("orders", "export") is True
    assert profile.menu_codes() == ["menu.orders"]


def test_inactive_user_loads_as_inactive(db_session, loader):
    _seed(db_session)
    profile = loader.load("off")
    assert profile is not None
    assert profile.active is False


def _seed_menus_and_rules(db_session) -> None:
    orders = Permission(code="menu.orders", name="Orders", resource="MENU", action="view", sort_order=2)
    reports = Permission(code="menu.reports", name="Reports", resource="MENU", action="view", sort_order=1)
    history = Permission(
        code="menu.orders.history", name="History", resource="MENU", action="view", parent=orders, sort_order=2
    )
    current = Permission(
        code="menu.orders.current", name="Current", resource="MENU", action="view", parent=orders, sort_order=1
    )

    eu = DataPermissionRule(code="orders.eu", name="EU orders", resource="orders", condition={"region": "EU"})
    own = DataPermissionRule(code="orders.own", name="Own orders", resource="orders", condition={"owner_id": "u2"})
    withheld = DataPermissionRule(code="orders.vip", name="VIP orders", resource="orders", condition={"vip": True})
    audit = DataPermissionRule(code="orders.audit", name="Audited", resource="orders", condition={"audited": True})

    sales = Role(code="SALES", name="Sales", level=3, permissions=[orders, history, current], data_rules=[eu])
    auditor = Role(code="AUDITOR", name="Auditor", level=1, active=False, data_rules=[audit])

    user = User(id="u2", email="u2@example.com", roles=[sales, auditor])
    user.direct_permissions = [UserPermission(permission=reports, granted=True)]
    user.data_permissions = [
        UserDataPermission(rule=own, granted=True),
        UserDataPermission(rule=eu, granted=True),
        UserDataPermission(rule=withheld, granted=False),
    ]
    db_session.add(user)
    db_session.flush()


def test_menu_tree_follows_parent_and_sort_order(db_session, loader):
    _seed_menus_and_rules(db_session)

    tree = loader.load("u2").menu_tree()

    assert [node.code for node in tree] == ["menu.reports", "menu.orders"]
    assert [child.code for child in tree[1].children] == ["menu.orders.current", "menu.orders.history"]
    assert tree[1].name == "Orders"


def test_data_rules_merge_user_and_role_rules(db_session, loader):
    _seed_menus_and_rules(db_session)

    profile = loader.load("u2")

    # Granted user rows plus active roles, deduplicated; withheld and inactive-role rules are dropped.
    assert sorted(rule.code for rule in profile.data_rules) == ["orders.eu", "orders.own"]
    assert sorted(profile.data_conditions("orders"), key=str) == [{"owner_id": "u2"}, {"region": "EU"}]
