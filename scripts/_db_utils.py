from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from app.feebook.config import load_settings


def database_url(explicit: str | None = None) -> str:
    if explicit and explicit.strip():
        return explicit.strip()
    return load_settings().database_url


@contextmanager
def script_session(db_url: str):
    """
    One engine + one session for a maintenance script run. Commits on success.
    """
    engine = create_engine(db_url, future=True, pool_pre_ping=True)
    s = Session(bind=engine, autoflush=False, expire_on_commit=False)
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
