"""
Database Engine
===============

One process-wide SQLite engine shared by the CLI, the web app, the arq
worker and in-process drains. Pipeline state transitions go through
`session_scope`; read-only CLI commands use `get_session`.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

DEFAULT_DB_PATH = Path.home() / ".catalog_pipeline" / "catalog_pipeline.db"

# Workers and drain tasks use the engine from several threads
SQLITE_CONNECT_ARGS = {"check_same_thread": False, "timeout": 30}

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def get_database_url(db_path: Path | str | None = None) -> str:
    """
    Resolve the database URL: explicit path, then DATABASE_URL, then the default file.

    DATABASE_URL may be a full SQLAlchemy URL or a bare file path. The
    parent directory of a file path is created if missing.
    """
    env_url = os.environ.get("DATABASE_URL")
    if db_path is None and env_url and "://" in env_url:
        return env_url
    path = Path(db_path if db_path is not None else env_url or DEFAULT_DB_PATH)
    path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{path}"


def get_engine(db_path: Path | str | None = None) -> Engine:
    """Return the shared engine, creating it on first use."""
    global _engine
    if _engine is None:
        url = get_database_url(db_path)
        connect_args = SQLITE_CONNECT_ARGS if url.startswith("sqlite") else {}
        _engine = create_engine(url, connect_args=connect_args)
    return _engine


def _get_session_factory() -> sessionmaker[Session]:
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(autoflush=False, bind=get_engine())
    return _session_factory


def reset_engine() -> None:
    """Dispose the shared engine so the next call rebinds to DATABASE_URL."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Plain session on the shared engine; the caller commits."""
    session = _get_session_factory()()
    try:
        yield session
    finally:
        session.close()


@contextmanager
def session_scope(session_factory: sessionmaker[Session] | None = None) -> Generator[Session, None, None]:
    """
    Transactional session: commits on success, rolls back on error.

    Each state-machine transition runs in its own short scope so that
    claims are visible to other workers before slow item work starts.
    """
    session = (session_factory or _get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(db_path: Path | str | None = None) -> None:
    """Create any missing tables on the shared engine."""
    from catalog_pipeline.db import models_catalog  # noqa: F401
    from catalog_pipeline.db.models import Base

    Base.metadata.create_all(bind=get_engine(db_path))


def run_migrations(db_path: Path | str | None = None) -> None:
    """Upgrade the database to the latest Alembic revision."""
    alembic_ini = Path(__file__).resolve().parents[2] / "alembic.ini"
    if not alembic_ini.exists():
        raise FileNotFoundError(f"Alembic config not found: {alembic_ini}")

    config = Config(str(alembic_ini))
    config.set_main_option("sqlalchemy.url", get_database_url(db_path))
    command.upgrade(config, "head")
