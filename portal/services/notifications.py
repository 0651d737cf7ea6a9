"""
Transactional outbox for student notifications.

Callers ``enqueue`` rows inside the same transaction as their data change and
``deliver`` them afterwards (or, for removals, before the rows they describe
are deleted). A failed delivery only updates the outbox row; it never undoes
the data change. ``retry_pending`` re-delivers rows until the attempt limit,
after which they are marked failed.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from sqlalchemy.orm import Session

from portal.core.config.settings import get_settings
from portal.db.session import transaction
from portal.models.notification import NotificationKind, NotificationOutbox, NotificationStatus
from portal.services.email import Notifier
from portal.utils.helpers import get_utc_now

logger = logging.getLogger(__name__)


@dataclass
class DeliveryReport:
    sent: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def sent_count(self) -> int:
        return len(self.sent)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    def as_dict(self) -> dict:
        return {
            "emails_sent": self.sent_count,
            "emails_failed": self.failed_count,
            "failed_emails": list(self.failed),
        }


class NotificationDispatcher:
    def __init__(self, notifier: Notifier, max_attempts: Optional[int] = None):
        self.notifier = notifier
        self.max_attempts = max_attempts or get_settings().NOTIFICATION_MAX_ATTEMPTS

    def enqueue(
        self,
        db: Session,
        kind: NotificationKind,
        recipient_email: str,
        recipient_name: str,
        **payload,
    ) -> NotificationOutbox:
        row = NotificationOutbox(
            kind=kind,
            recipient_email=recipient_email,
            recipient_name=recipient_name,
            payload=payload,
            status=NotificationStatus.PENDING,
            attempts=0,
        )
        db.add(row)
        db.flush()
        return row

    def _send(self, row: NotificationOutbox) -> bool:
        senders = {
            NotificationKind.INVITATION: self.notifier.send_invitation,
            NotificationKind.REMOVAL: self.notifier.send_removal,
            NotificationKind.STATUS_CHANGE: self.notifier.send_status_change,
            NotificationKind.GRADE: self.notifier.send_grade,
        }
        try:
            return bool(senders[row.kind](row.recipient_email, row.recipient_name, dict(row.payload or {})))
        except Exception as e:
            row.last_error = str(e)
            logger.error(f"Notifier raised for outbox row {row.id}: {str(e)}", exc_info=True)
            return False

    def deliver(self, db: Session, rows: Iterable[NotificationOutbox]) -> DeliveryReport:
        """Attempt every row once; the caller owns the transaction"""
        report = DeliveryReport()
        for row in rows:
            if row.status != NotificationStatus.PENDING:
                continue
            row.attempts = (row.attempts or 0) + 1
            if self._send(row):
                row.status = NotificationStatus.SENT
                row.sent_at = get_utc_now()
                row.last_error = None
                report.sent.append(row.recipient_name)
                continue

            if not row.last_error:
                row.last_error = "Delivery rejected by transport"
            if row.attempts >= self.max_attempts:
                row.status = NotificationStatus.FAILED
            report.failed.append(row.recipient_name)
            logger.warning(
                f"Notification {row.kind.value} to {row.recipient_email} failed "
                f"(attempt {row.attempts}/{self.max_attempts})"
            )
        db.flush()
        return report

    def deliver_committed(self, db: Session, rows: List[NotificationOutbox]) -> DeliveryReport:
        """Deliver rows that are already committed and record the outcome"""
        with transaction(db):
            return self.deliver(db, rows)

    def retry_pending(self, db: Session, limit: int = 100) -> DeliveryReport:
        rows = (
            db.query(NotificationOutbox)
            .filter(
                NotificationOutbox.status == NotificationStatus.PENDING,
                NotificationOutbox.attempts < self.max_attempts,
            )
            .order_by(NotificationOutbox.created_at, NotificationOutbox.id)
            .limit(limit)
            .all()
        )
        with transaction(db):
            report = self.deliver(db, rows)
        logger.info(f"Outbox retry: {report.sent_count} sent, {report.failed_count} failed")
        return report

    def deliver_pending(self, session_factory: Callable[[], Session], row_ids: List[int]) -> DeliveryReport:
        """Background entry point: deliver the given rows on a fresh session"""
        db = session_factory()
        try:
            rows = (
                db.query(NotificationOutbox)
                .filter(NotificationOutbox.id.in_(row_ids))
                .order_by(NotificationOutbox.id)
                .all()
            )
            return self.deliver_committed(db, rows)
        except Exception as e:
            logger.error(f"Background notification delivery failed: {str(e)}", exc_info=True)
            return DeliveryReport()
        finally:
            db.close()
