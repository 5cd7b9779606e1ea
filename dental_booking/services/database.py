"""SQLAlchemy engine, session factory and declarative base.

Practice configuration, conversation state and the audit tables all live
in one database.  SQLite is the local default; PostgreSQL is used in
production (the state upsert supports both dialects).
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def build_engine(url: str, *, echo: bool = False) -> Engine:
    """Create an engine for *url*.

    In-memory SQLite gets a ``StaticPool`` so every session (and the
    worker threads FastAPI runs sync code on) sees the same database.
    """
    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **kwargs)
    return create_engine(url, echo=echo, pool_pre_ping=True)


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


def create_schema(engine: Engine) -> None:
    """Create every table registered on :class:`Base` (idempotent)."""
    # Import for the side effect of registering the models on Base.metadata
    from dental_booking.services import practice_store, state_store  # noqa: F401

    Base.metadata.create_all(engine)
    logger.info("Database schema ready (%s)", engine.url.render_as_string(hide_password=True))
