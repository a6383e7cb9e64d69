"""
Engine and session wiring for the local entity store.

The local gateway keeps every entity in one SQLAlchemy table. In remote
gateway mode the remote platform is the system of record and this database
stays empty.
"""
from __future__ import annotations

import logging

from sqlalchemy import create_engine, text, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from config.settings import get_settings

logger = logging.getLogger(__name__)

Base = declarative_base()

_SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA busy_timeout=5000",
)


def _is_memory_url(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:")


def build_engine(url: str, echo: bool = False) -> Engine:
    """
    Create an engine tuned for the backing database.

    SQLite files get WAL journaling; in-memory SQLite shares one connection
    across threads so that polling threads see the same tables.
    """
    if not url.startswith("sqlite"):
        return create_engine(
            url,
            echo=echo,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=1800,
            pool_pre_ping=True,
        )

    options = {"connect_args": {"check_same_thread": False}}
    if _is_memory_url(url):
        options["poolclass"] = StaticPool
    else:
        options["pool_pre_ping"] = True
    built = create_engine(url, echo=echo, **options)

    if not _is_memory_url(url):
        @event.listens_for(built, "connect")
        def _apply_pragmas(dbapi_conn, _connection_record):
            cursor = dbapi_conn.cursor()
            for pragma in _SQLITE_PRAGMAS:
                cursor.execute(pragma)
            cursor.close()

    return built


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


_settings = get_settings()
DATABASE_URL = _settings.database_url
engine = build_engine(DATABASE_URL, echo=_settings.sql_echo)
SessionLocal = build_session_factory(engine)


def init_db(bind: Engine | None = None) -> None:
    """Create the entity tables when missing."""
    from storage import models  # noqa: F401  # registers EntityRecord
    target = bind or engine
    Base.metadata.create_all(bind=target)
    logger.info("Entity store schema ready (%s)", target.url.get_backend_name())


def check_db_connection() -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.warning("Database connectivity check failed", exc_info=True)
        return False
