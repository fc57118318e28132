from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy.orm import Session

from app.crm.db import build_engine, build_sessionmaker


@contextmanager
def script_session(db_url: str):
    """Standalone session for release-time scripts that must not build the Flask app."""
    engine = build_engine(db_url, env="script")
    s: Session = build_sessionmaker(engine)()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
