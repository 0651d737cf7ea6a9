import logging

from sqlalchemy.engine import Engine

from portal.db.base import Base

# Imported for their side effect of registering tables on Base.metadata
from portal.models import assignment, directory, group, invitation, notification, submission  # noqa: F401

logger = logging.getLogger(__name__)


def init_db(bind: Engine) -> None:
    """Create all tables that do not exist yet"""
    Base.metadata.create_all(bind=bind)
    logger.info("Database tables ensured")
