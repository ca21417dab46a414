"""
Engine and session handling for the photo library database.

The connection target comes from DATABASE_URL, or from the DB_* variables
when no URL is given (PostgreSQL). SQLite URLs are accepted for local runs
and get a thread-safe connection since enrichment workers share the engine.
"""

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Generator

from dotenv import load_dotenv
from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from db.models import Base

load_dotenv()

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DatabaseSettings:
    """Where to connect and how large the pool may grow."""
    url: URL
    pool_size: int = 5
    max_overflow: int = 10
    echo: bool = False

    @property
    def is_sqlite(self) -> bool:
        return self.url.get_backend_name() == "sqlite"

    @classmethod
    def from_env(cls) -> "DatabaseSettings":
        """
        Read DATABASE_URL or the DB_* variables.

        Raises:
            ValueError: If neither DATABASE_URL nor DB_PASSWORD is set.
        """
        raw_url = os.getenv("DATABASE_URL", "").strip()
        if raw_url:
            url = make_url(raw_url)
        else:
            password = os.getenv("DB_PASSWORD")
            if not password:
                raise ValueError(
                    "Set DATABASE_URL, or DB_PASSWORD together with the other DB_* "
                    "variables, in the environment or a .env file."
                )
            url = URL.create(
                "postgresql",
                username=os.getenv("DB_USER", "postgres"),
                password=password,
                host=os.getenv("DB_HOST", "localhost"),
                port=int(os.getenv("DB_PORT", "5432")),
                database=os.getenv("DB_NAME", "photo_library"),
            )

        return cls(
            url=url,
            pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
            echo=os.getenv("DB_ECHO", "").lower() in ("1", "true", "yes"),
        )


def build_engine(settings: DatabaseSettings) -> Engine:
    """Create an engine for the given settings."""
    if settings.is_sqlite:
        return create_engine(
            settings.url,
            echo=settings.echo,
            connect_args={"check_same_thread": False},
        )
    return create_engine(
        settings.url,
        echo=settings.echo,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


# Process-wide engine and session factory, created on first use
_engine: Engine | None = None
_session_factory: sessionmaker | None = None


def get_engine() -> Engine:
    global _engine

    if _engine is None:
        settings = DatabaseSettings.from_env()
        _engine = build_engine(settings)
        logger.info(
            f"Database engine ready ({settings.url.get_backend_name()}, "
            f"pool_size={settings.pool_size})"
        )
    return _engine


def get_session_factory() -> sessionmaker:
    """Shared session factory; objects stay readable after commit."""
    global _session_factory

    if _session_factory is None:
        _session_factory = sessionmaker(bind=get_engine(), expire_on_commit=False)
    return _session_factory


def get_session() -> Session:
    """Open a session the caller must close. Prefer session_scope()."""
    return get_session_factory()()


@contextmanager
def session_scope(factory: sessionmaker | None = None) -> Generator[Session, None, None]:
    """
    Run a unit of work: commit on success, roll back and re-raise on error.

    Args:
        factory: Session factory to use. Defaults to the shared one.
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Rolled back database session: {e}")
        raise
    finally:
        session.close()


def init_db(engine: Engine | None = None) -> bool:
    """Create any missing tables. Returns False on failure."""
    try:
        Base.metadata.create_all(engine or get_engine())
    except Exception as e:
        logger.error(f"Failed to create tables: {e}")
        return False
    logger.info(f"Tables ready: {', '.join(Base.metadata.tables)}")
    return True


def verify_connection() -> bool:
    """Run a trivial query. Returns False if the database is unreachable."""
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False
    logger.debug("Database connection verified")
    return True


def get_db_info() -> dict:
    """Connection settings for display, with the password hidden."""
    settings = DatabaseSettings.from_env()
    info = {"url": settings.url.render_as_string(hide_password=True)}
    if not settings.is_sqlite:
        info["pool_size"] = settings.pool_size
        info["max_overflow"] = settings.max_overflow
    return info


def dispose_engine() -> None:
    """Close pooled connections and forget the shared engine."""
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()
        logger.debug("Database engine disposed")
    _engine = None
    _session_factory = None
