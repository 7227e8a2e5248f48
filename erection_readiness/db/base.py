"""Engine and session plumbing for the readiness store."""

from typing import Generator, Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import Settings, get_settings


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def _ensure_sync_driver(url: URL) -> URL:
    """The engine and Alembic both run synchronously."""
    if url.drivername.startswith("postgresql"):
        if url.drivername in ("postgresql", "postgres") or any(
            token in url.drivername for token in ("async", "aiopg")
        ):
            url = url.set(drivername="postgresql+psycopg")
    elif url.drivername.startswith("sqlite+") and "aiosqlite" in url.drivername:
        url = url.set(drivername="sqlite")
    return url


def get_database_url(raw_url: Optional[str] = None) -> str:
    """Configured database URL (or ``raw_url``) with a synchronous driver."""
    url = make_url(raw_url or get_settings().database_url)
    # str(url) would mask the password
    return _ensure_sync_driver(url).render_as_string(hide_password=False)


_engine: Optional[Engine] = None


def build_engine(settings: Settings) -> Engine:
    database_url = get_database_url(settings.database_url)
    if database_url.startswith("sqlite"):
        # One shared connection so ":memory:" databases survive across sessions
        return create_engine(
            database_url,
            echo=settings.db_echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(
        database_url,
        echo=settings.db_echo,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


def get_engine() -> Engine:
    """Engine for the configured database, created on first use."""
    global _engine
    if _engine is None:
        _engine = build_engine(get_settings())
    return _engine


def get_session_local() -> sessionmaker:
    """Sessions never autoflush; engine code flushes before reading pending rows."""
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding one session per request."""
    session_local = get_session_local()
    db = session_local()
    try:
        yield db
    finally:
        db.close()


def init_database() -> None:
    """Create every table for the upstream records, engine caches and audit log."""
    from . import audit_models, models  # noqa: F401

    Base.metadata.create_all(bind=get_engine())
