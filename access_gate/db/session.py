from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from access_gate.settings import get_settings


_settings = get_settings()

engine = create_engine(
    _settings.resolved_db_url(),
    connect_args={"check_same_thread": False} if _settings.resolved_db_url().startswith("sqlite") else {},
)

# The profile loader is the only consumer; it opens one short-lived session per load.
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, class_=Session)
