"""
Engine and DB sessions for the identity service (SQLite unless IDENTITY_DATABASE_URL says otherwise).
"""
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from identity_service.config import DATABASE_URL
from identity_service.models import Base


def _make_engine(url: str) -> Engine:
    if not url.startswith("sqlite"):
        return create_engine(url)
    # FastAPI runs sync routes in a threadpool
    kwargs = {"connect_args": {"check_same_thread": False}}
    if url.startswith("sqlite:///:memory:"):
        # One shared connection, otherwise every checkout sees an empty database
        kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


engine = _make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    Base.metadata.create_all(bind=engine)


@contextmanager
def session_scope() -> Iterator[Session]:
    """DB session outside a request (startup seed, scripts)."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_db() -> Iterator[Session]:
    """Request dependency."""
    with session_scope() as db:
        yield db
