from functools import lru_cache

from fastapi import Depends

from portal.db.session import SessionLocal
from portal.services.email import Notifier, build_notifier
from portal.services.file_storage import FileStorage
from portal.services.notifications import NotificationDispatcher


def get_session_factory():
    """Session factory for work that outlives the request, such as background delivery"""
    return SessionLocal


@lru_cache()
def get_notifier() -> Notifier:
    return build_notifier()


def get_dispatcher(notifier: Notifier = Depends(get_notifier)) -> NotificationDispatcher:
    return NotificationDispatcher(notifier)


@lru_cache()
def get_file_storage() -> FileStorage:
    return FileStorage()
