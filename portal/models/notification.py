from sqlalchemy import Column, Integer, String, Text, DateTime, Enum, JSON
from datetime import datetime, timezone
import enum
from portal.db.base import Base

class NotificationKind(enum.Enum):
    INVITATION = "invitation"
    REMOVAL = "removal"
    STATUS_CHANGE = "status_change"
    GRADE = "grade"

class NotificationStatus(enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"

class NotificationOutbox(Base):
    """Messages written with the data change and delivered after it"""
    __tablename__ = "notification_outbox"

    id = Column(Integer, primary_key=True)
    kind = Column(Enum(NotificationKind), nullable=False)
    recipient_email = Column(String(255), nullable=False)
    recipient_name = Column(String(200), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(Enum(NotificationStatus), nullable=False, default=NotificationStatus.PENDING, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    sent_at = Column(DateTime(timezone=True), nullable=True)
