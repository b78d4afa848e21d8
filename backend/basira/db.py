from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from basira.config import database_url


ENGINE = create_engine(database_url(), pool_pre_ping=True, future=True)
SessionLocal = sessionmaker(bind=ENGINE, class_=Session, expire_on_commit=False, autoflush=False, autocommit=False)


@contextmanager
def session_scope(factory: sessionmaker = SessionLocal):
    """
    One unit of work: commit when the block succeeds, roll back everything on
    any exception. Multi-record writes (e.g. reassignment on user delete) rely
    on this for all-or-nothing semantics.
    """
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_db():
    with session_scope() as db:
        yield db
