"""
Engine and session plumbing.

Request handlers share one session per request (`db_session`), committed by the
handler and rolled back at teardown if it was not. Scripts and tests use
`session_scope`, which commits on success and rolls back on error. Both paths
end in an explicit rollback on failure so the rollback hooks in events.py run.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from collections.abc import Generator
from typing import Any

from flask import Flask, current_app, g
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

_POSTGRES_POOL = {"pool_recycle": 1800, "pool_size": 5, "max_overflow": 10, "pool_timeout": 30}


def _engine_options(db_url: str) -> dict[str, Any]:
    options: dict[str, Any] = {"pool_pre_ping": True}
    if db_url.startswith("postgres"):
        options.update(_POSTGRES_POOL)
    return options


def _enable_sqlite_savepoints(engine: Engine) -> None:
    # pysqlite opens its own transactions and breaks SAVEPOINT; let SQLAlchemy drive them.
    @event.listens_for(engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):  # type: ignore[no-redef]
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _sqlite_begin(conn):  # type: ignore[no-redef]
        conn.exec_driver_sql("BEGIN")


def init_db(app: Flask) -> None:
    db_url = app.config["DATABASE_URL"]
    engine = create_engine(db_url, **_engine_options(db_url))
    if engine.dialect.name == "sqlite":
        _enable_sqlite_savepoints(engine)

    app.extensions["sqlalchemy_engine"] = engine
    # Audit writes and domain events rely on objects staying usable after commit.
    app.extensions["sqlalchemy_sessionmaker"] = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def db_session(app: Flask | None = None) -> Session:
    """Session shared by everything in the current request."""
    s: Session | None = getattr(g, "db_session", None)
    if s is None:
        sm = (app or current_app).extensions["sqlalchemy_sessionmaker"]
        s = g.db_session = sm()
    return s


def teardown_db_session(_exc: BaseException | None) -> None:
    s: Session | None = getattr(g, "db_session", None)
    if s is None:
        return
    try:
        # Uncommitted work is rolled back explicitly so rollback hooks run.
        s.rollback()
    except Exception as e:
        logger.warning("Rolling back request session failed: %s", e)
    finally:
        s.close()
        g.db_session = None


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    s: Session = app.extensions["sqlalchemy_sessionmaker"]()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
