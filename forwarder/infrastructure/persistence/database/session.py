# forwarder/infrastructure/persistence/database/session.py
from __future__ import annotations

"""SQLAlchemy engine/session setup."""

from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from forwarder.core.config import settings

_engine: Engine | None = None
_SessionLocal: sessionmaker | None = None


def make_engine(database_url: str) -> Engine:
    """
    Create an Engine with dialect-aware connect_args.
    - PostgreSQL: pass connect_timeout
    - SQLite file: create the parent directory; connections are shared across
      dispatcher threads (check_same_thread disabled)
    - SQLite in-memory: StaticPool so every session sees the same database
    """
    url = make_url(database_url)
    backend = url.get_backend_name()
    kwargs: dict = dict(future=True, pool_pre_ping=True)
    connect_args: dict = {}

    if backend.startswith("postgresql") or backend == "postgres":
        connect_args["connect_timeout"] = int(settings.DB_CONNECT_TIMEOUT)
    elif backend.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        db_name = (url.database or "").strip()
        if db_name in ("", ":memory:"):
            kwargs["poolclass"] = StaticPool
        else:
            Path(db_name).expanduser().parent.mkdir(parents=True, exist_ok=True)

    return create_engine(database_url, connect_args=connect_args, **kwargs)


def make_sessionmaker(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, future=True, autoflush=True, expire_on_commit=False)


def init_engine() -> Engine:
    """Singleton Engine built from settings.DATABASE_URL."""
    global _engine
    if _engine is None:
        _engine = make_engine(settings.DATABASE_URL)
    return _engine


def init_sessionmaker() -> sessionmaker:
    """Create (once) and return the SessionLocal factory."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = make_sessionmaker(init_engine())
    return _SessionLocal
