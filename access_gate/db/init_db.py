from __future__ import annotations

from access_gate.db.base import Base
from access_gate.db.session import engine


def init_db() -> None:
    """Create the authorization tables if they do not exist yet."""

    # Register models on Base.metadata.
    from access_gate.models import security as _security  # noqa: F401

    Base.metadata.create_all(bind=engine)
