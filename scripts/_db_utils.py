from __future__ import annotations

import os
from contextlib import contextmanager

from sqlalchemy.orm import Session, sessionmaker

from app.saleshub.db import build_engine


def resolve_db_url(database_url: str | None = None) -> str:
    return (database_url or os.environ.get("DATABASE_URL") or "sqlite:///saleshub.db").strip()


@contextmanager
def script_session(database_url: str | None = None):
    """Session for CLI scripts (no Flask app). Commits on success."""
    engine = build_engine(resolve_db_url(database_url))
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
