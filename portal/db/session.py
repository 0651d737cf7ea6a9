from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from portal.core.config.settings import get_settings
from portal.core.errors import ErrorCode
from portal.db.errors import map_db_error


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # In-memory sqlite must share one connection across threads
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    settings = get_settings()
    return {
        "pool_pre_ping": True,
        "pool_size": settings.DB_POOL_SIZE,
        "pool_timeout": settings.DB_POOL_TIMEOUT,
    }


DATABASE_URL = get_settings().DATABASE_URL

# Create engine
engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))

# Create session
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# Dependency
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(
    db: Session, on_unique: ErrorCode = ErrorCode.DUPLICATE_ENTRY
) -> Iterator[Session]:
    """
    Run a unit of work on ``db`` and commit it.

    Any exception rolls the session back. Storage errors are re-raised as
    ``PortalError`` (unique violations use ``on_unique``); everything else
    propagates unchanged.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise map_db_error(exc, on_unique=on_unique) from exc
    except Exception:
        db.rollback()
        raise
