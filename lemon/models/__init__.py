from __future__ import annotations

import os
from functools import lru_cache

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from ..config import parse_int

DATABASE_URL = os.environ.get("LEMON_DATABASE_URL", "sqlite:////database/lemon.sqlite3")


def _database_settings(environ) -> tuple[int, int]:
    """``(timeout_seconds, pool_size)`` with defaults for missing or malformed values."""
    return (
        parse_int(environ.get("LEMON_DATABASE_TIMEOUT_SECONDS"), 30, minimum=1),
        parse_int(environ.get("LEMON_DATABASE_POOL_SIZE"), 4, minimum=1),
    )


DATABASE_TIMEOUT_SECONDS, DATABASE_POOL_SIZE = _database_settings(os.environ)

Base = declarative_base()


def build_engine(url: str, timeout: float = DATABASE_TIMEOUT_SECONDS, pool_size: int | None = None):
    options: dict = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False, "timeout": timeout}
    elif pool_size is not None:
        options["pool_size"] = max(1, pool_size)
        options["max_overflow"] = 0

    engine = create_engine(url, **options)

    if url.startswith("sqlite"):

        @event.listens_for(engine, "connect")
        def _configure_sqlite(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL;")
            cursor.execute("PRAGMA synchronous=NORMAL;")
            cursor.execute("PRAGMA busy_timeout=5000;")
            cursor.execute("PRAGMA foreign_keys=ON;")
            cursor.close()

    return engine


def build_session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False, future=True)


@lru_cache(maxsize=1)
def get_engine():
    return build_engine(DATABASE_URL, DATABASE_TIMEOUT_SECONDS, DATABASE_POOL_SIZE)


def init_db(engine) -> None:
    from . import invite, media, session, user  # noqa: F401

    Base.metadata.create_all(engine)
