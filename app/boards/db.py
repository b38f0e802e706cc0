"""
Engine and session wiring.

Two kinds of session share one engine: the request session (`db_session`)
used by the JSON API for rows and audit events, and the short per-call
sessions the positioning store opens for key writes. A request must commit
its own pending writes before asking the store to move a card.
"""
from __future__ import annotations

from contextlib import contextmanager
from collections.abc import Generator

from flask import Flask, current_app, g
from sqlalchemy import create_engine, event
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

# Column types that hold a full IEEE 754 double.
_DOUBLE_TYPE_NAMES = ("DOUBLE", "DOUBLE PRECISION", "FLOAT8", "FLOAT(53)")


def _engine_kwargs(db_url: str) -> dict[str, object]:
    kwargs: dict[str, object] = {"future": True, "pool_pre_ping": True}
    if db_url.startswith("postgres"):
        kwargs.update({"pool_recycle": 1800, "pool_size": 5, "max_overflow": 10, "pool_timeout": 30})
    elif db_url.startswith("sqlite"):
        # Store sessions write next to the request session; wait on the file lock instead of failing.
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 15}
    return kwargs


def init_db(app: Flask) -> None:
    db_url = app.config["DATABASE_URL"]
    engine = create_engine(db_url, **_engine_kwargs(db_url))
    if engine.dialect.name == "sqlite":
        @event.listens_for(engine, "connect")
        def _sqlite_foreign_keys(dbapi_connection, connection_record):  # type: ignore[no-redef]
            # card_closures rows go away with their card
            dbapi_connection.execute("PRAGMA foreign_keys=ON")

    app.extensions["sqlalchemy_engine"] = engine
    app.extensions["sqlalchemy_sessionmaker"] = sessionmaker(
        bind=engine,
        class_=Session,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def is_double(type_name: str, dialect: str) -> bool:
    name = type_name.upper()
    if dialect == "sqlite":
        # SQLite stores every REAL as an 8-byte float.
        return any(t in name for t in ("REAL", "FLOA", "DOUB"))
    return name in _DOUBLE_TYPE_NAMES


def position_column_problems(engine: Engine) -> list[str]:
    """
    Positions must be stored at double precision, or boards run out of
    midpoints far sooner than the allocator assumes. Empty when fine or when
    the table does not exist yet.
    """
    insp = sa_inspect(engine)
    if not insp.has_table("cards"):
        return []
    col = {c["name"]: c for c in insp.get_columns("cards")}.get("position")
    if col is None:
        return ["cards.position"]
    if not is_double(str(col["type"]), engine.dialect.name):
        return [f"cards.position is {col['type']} (needs double precision)"]
    return []


def db_session(app: Flask | None = None) -> Session:
    """Request-scoped session, closed by `teardown_db_session`."""
    s: Session | None = getattr(g, "db_session", None)
    if s is None:
        sm = (app or current_app).extensions["sqlalchemy_sessionmaker"]
        s = g.db_session = sm()
    return s


def teardown_db_session(_exc: BaseException | None) -> None:
    s: Session | None = g.pop("db_session", None)
    if s is not None:
        s.close()


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    """Session for scripts and tests; commits on success, rolls back on error."""
    s: Session = app.extensions["sqlalchemy_sessionmaker"]()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
