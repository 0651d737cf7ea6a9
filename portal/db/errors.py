"""
Translate SQLAlchemy/DBAPI failures into ``PortalError``.

Classification looks at the exception type and the driver's SQLSTATE
(``sqlstate``/``pgcode`` on psycopg, ``sqlite_errorname`` on sqlite3), never at
message text.
"""
import logging

from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.orm.exc import StaleDataError

from portal.core.errors import ErrorCode, PortalError

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
NOT_NULL_VIOLATION = "23502"
CHECK_VIOLATION = "23514"

SQLITE_STATES = {
    "SQLITE_CONSTRAINT_UNIQUE": UNIQUE_VIOLATION,
    "SQLITE_CONSTRAINT_PRIMARYKEY": UNIQUE_VIOLATION,
    "SQLITE_CONSTRAINT_FOREIGNKEY": FOREIGN_KEY_VIOLATION,
    "SQLITE_CONSTRAINT_NOTNULL": NOT_NULL_VIOLATION,
    "SQLITE_CONSTRAINT_CHECK": CHECK_VIOLATION,
}


def sqlstate(exc: SQLAlchemyError):
    orig = getattr(exc, "orig", None)
    if orig is None:
        return None
    state = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if state:
        return state
    return SQLITE_STATES.get(getattr(orig, "sqlite_errorname", None))


def map_db_error(
    exc: SQLAlchemyError, on_unique: ErrorCode = ErrorCode.DUPLICATE_ENTRY
) -> PortalError:
    if isinstance(exc, IntegrityError):
        state = sqlstate(exc)
        if state == FOREIGN_KEY_VIOLATION:
            return PortalError(
                ErrorCode.FOREIGN_KEY_VIOLATION,
                "Referenced record does not exist",
            )
        if state in (NOT_NULL_VIOLATION, CHECK_VIOLATION):
            return PortalError(
                ErrorCode.VALIDATION_ERROR, "A required value is missing or invalid"
            )
        # Unique violations and unclassified integrity failures
        return PortalError(on_unique, "The record conflicts with an existing entry")

    if isinstance(exc, StaleDataError):
        return PortalError(
            ErrorCode.CONFLICT,
            "The record was modified by another request. Please reload and try again.",
        )

    if isinstance(
        exc, (OperationalError, DisconnectionError, PoolTimeoutError, InterfaceError)
    ):
        logger.error(f"Database connection failure: {exc.__class__.__name__}")
        return PortalError(
            ErrorCode.DATABASE_CONNECTION_ERROR,
            "Database connection failed. Please try again later.",
        )

    logger.error(f"Unexpected database error: {exc}", exc_info=exc)
    return PortalError(
        ErrorCode.INTERNAL_SERVER_ERROR,
        "Failed to complete the request. Please try again later.",
    )
