"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine from
`settings.DATABASE_URL` (a local SQLite file `careerbot.db` beside the
package by default) and provides small helpers used by the application,
scripts and tests.
"""

from sqlalchemy import event
from sqlmodel import SQLModel, create_engine, Session
from .config import settings


def _unicode_lower(value):
    return value.lower() if isinstance(value, str) else value


def _register_sqlite_functions(dbapi_conn, _record):
    # SQLite's built-in lower() only folds ASCII letters
    dbapi_conn.create_function("lower", 1, _unicode_lower, deterministic=True)


def make_engine(url: str, **kwargs):
    """Create an engine for `url`, relaxing SQLite's same-thread check.

    FastAPI runs synchronous handlers on a thread pool, so SQLite
    connections must be usable from threads other than their creator.
    SQLite connections also get a Unicode-aware `lower()` so
    case-insensitive search behaves the same as on other backends.
    """
    is_sqlite = url.startswith("sqlite")
    connect_args = {"check_same_thread": False} if is_sqlite else {}
    eng = create_engine(url, echo=False, connect_args=connect_args, pool_pre_ping=True, **kwargs)
    if is_sqlite:
        event.listen(eng, "connect", _register_sqlite_functions)
    return eng


engine = make_engine(settings.DATABASE_URL)


def create_db_and_tables(bind=None):
    """Create database tables using SQLModel metadata.

    This function is intended for local development and lightweight
    scripts; production deployments should rely on a proper migration
    tool (alembic) instead.
    """
    from . import models  # noqa: F401  register tables on the metadata
    SQLModel.metadata.create_all(bind or engine)


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes.
    """
    with Session(engine) as session:
        yield session
