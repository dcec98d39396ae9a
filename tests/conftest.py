"""
Pytest fixtures for the test suite.

Data-layer tests use an in-memory SQLite engine and a session that rolls back
after each test, so tests do not affect each other. Engine tests use the
in-memory ``StaticLoader`` and a ``FakeClock`` instead of a database and
real time.
"""
from __future__ import annotations

import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from access_gate.authz.cache import PermissionCache
from access_gate.authz.profile import AuthorizationProfile, PermissionGrant, RoleGrant
from access_gate.authz.service import PermissionService


TEST_DB_URL = "sqlite:///:memory:"


class FakeClock:
    """Manually advanced clock for cache TTL tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StaticLoader:
    """Profile loader over a dict; counts loads per user."""

    def __init__(self, profiles: dict[str, AuthorizationProfile] | None = None) -> None:
        self.profiles = dict(profiles or {})
        self.calls: dict[str, int] = {}
        self._lock = threading.Lock()

    def load(self, user_id: str) -> AuthorizationProfile | None:
        with self._lock:
            self.calls[user_id] = self.calls.get(user_id, 0) + 1
        return self.profiles.get(user_id)

    def total_calls(self) -> int:
        return sum(self.calls.values())


def make_profile(
    user_id: str = "u1",
    *,
    permissions: tuple[str, ...] = (),
    roles: dict[str, int] | None = None,
    active: bool = True,
    organizations: tuple[str, ...] = (),
    departments: tuple[str, ...] = (),
    grants: tuple[PermissionGrant, ...] = (),
) -> AuthorizationProfile:
    """Build a profile from plain codes; ``roles`` maps role code to level."""

    return AuthorizationProfile.build(
        user_id,
        active=active,
        roles=[RoleGrant(code=code, level=level) for code, level in (roles or {}).items()],
        permissions=[PermissionGrant(code=code) for code in permissions] + list(grants),
        organizations=organizations,
        departments=departments,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return PermissionCache(ttl_seconds=300, max_size=1000, clock=clock)


@pytest.fixture
def loader():
    return StaticLoader()


@pytest.fixture
def service(loader, cache):
    svc = PermissionService(loader, cache, timeout_seconds=2.0)
    yield svc
    svc.close()


@pytest.fixture
def engine():
    """Create a fresh in-memory SQLite engine for each test."""
    return create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        echo=False,
    )


@pytest.fixture
def tables(engine):
    """Create all ORM tables on the test engine."""
    from access_gate.db.base import Base
    from access_gate.models import security as _security  # noqa: F401

    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def db_session(tables):
    """
    Provide a Session bound to the test DB; roll back after each test.

    The transaction is rolled back so the next test gets a clean state.
    """
    connection = tables.connect()
    transaction = connection.begin()
    TestSession = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        class_=Session,
    )
    session = TestSession()
    yield session
    session.close()
    transaction.rollback()
    connection.close()
