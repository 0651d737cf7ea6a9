import email

import pytest

from factories import auth_headers
from portal.core.config.settings import get_settings
from portal.db.session import SessionLocal
from portal.models.notification import NotificationKind, NotificationOutbox, NotificationStatus
from portal.services import email as email_service
from portal.services.email import EmailAttachment, LoggingNotifier, Notifier, SmtpNotifier, build_notifier
from portal.services.notifications import DeliveryReport


def _queue(db, dispatcher, email="student1@uni.edu", name="Student1 Lastname1"):
    row = dispatcher.enqueue(
        db, NotificationKind.GRADE, email, name,
        assignment_id=1, assignment_title="Lab Report", score=40, max_score=50,
        status="approved", feedback="Well done",
    )
    db.commit()
    return row


class TestDispatcher:
    def test_successful_delivery_marks_row_sent(self, db, seed, dispatcher, notifier):
        row = _queue(db, dispatcher)

        report = dispatcher.deliver_committed(db, [row])

        assert report.as_dict() == {"emails_sent": 1, "emails_failed": 0, "failed_emails": []}
        assert row.status == NotificationStatus.SENT
        assert row.attempts == 1
        assert row.sent_at is not None
        assert notifier.subjects_for("student1@uni.edu") == ["Assignment Graded: Lab Report"]

    def test_failure_leaves_row_pending_for_retry(self, db, seed, dispatcher, notifier):
        notifier.fail_for.add("student1@uni.edu")
        row = _queue(db, dispatcher)

        report = dispatcher.deliver_committed(db, [row])

        assert report.failed == ["Student1 Lastname1"]
        assert row.status == NotificationStatus.PENDING
        assert row.attempts == 1
        assert row.last_error == "Delivery rejected by transport"

        notifier.fail_for.clear()
        retried = dispatcher.retry_pending(db)

        assert retried.sent == ["Student1 Lastname1"]
        db.refresh(row)
        assert row.status == NotificationStatus.SENT
        assert row.attempts == 2
        assert row.last_error is None

    def test_row_fails_permanently_after_max_attempts(self, db, seed, dispatcher, notifier):
        notifier.fail_for.add("student1@uni.edu")
        row = _queue(db, dispatcher)

        for _ in range(dispatcher.max_attempts):
            dispatcher.retry_pending(db)

        db.refresh(row)
        assert row.status == NotificationStatus.FAILED
        assert row.attempts == dispatcher.max_attempts
        assert dispatcher.retry_pending(db).as_dict()["emails_failed"] == 0

    def test_sent_rows_are_not_delivered_twice(self, db, seed, dispatcher, notifier):
        row = _queue(db, dispatcher)
        dispatcher.deliver_committed(db, [row])

        report = dispatcher.deliver_committed(db, [row])

        assert report == DeliveryReport()
        assert len(notifier.sent) == 1

    def test_background_delivery_uses_its_own_session(self, db, seed, dispatcher, notifier):
        row_ids = [_queue(db, dispatcher).id, _queue(db, dispatcher, "student2@uni.edu", "Student2 Lastname2").id]

        report = dispatcher.deliver_pending(SessionLocal, row_ids)

        assert report.sent_count == 2
        db.expire_all()
        assert {r.status for r in db.query(NotificationOutbox).all()} == {NotificationStatus.SENT}


class TestRetryRoute:
    def test_retry_endpoint_reports_outcome(self, client, db, seed, dispatcher, notifier):
        notifier.fail_for.add("student2@uni.edu")
        _queue(db, dispatcher)
        _queue(db, dispatcher, "student2@uni.edu", "Student2 Lastname2")

        response = client.post("/api/v1/notifications/retry", headers=auth_headers(seed.supervisor_id))

        assert response.status_code == 200
        assert response.json()["data"] == {
            "emails_sent": 1,
            "emails_failed": 1,
            "failed_emails": ["Student2 Lastname2"],
        }

    def test_retry_requires_a_token(self, client, db, seed):
        response = client.post("/api/v1/notifications/retry")
        assert response.status_code == 401


@pytest.fixture
def smtp_outbox(monkeypatch):
    outbox = []

    class FakeSMTP:
        def __init__(self, host, port, timeout=None):
            self.host = host

        def __enter__(self):
            return self

        def __exit__(self, *exc_info):
            return False

        def starttls(self):
            pass

        def login(self, user, password):
            pass

        def sendmail(self, sender, to_email, message):
            outbox.append((to_email, email.message_from_string(message)))

    monkeypatch.setattr(email_service.smtplib, "SMTP", FakeSMTP)
    return outbox


class TestNotifiers:
    def test_base_notifier_is_abstract(self):
        with pytest.raises(TypeError):
            Notifier(get_settings())

    def test_notifier_without_a_transport_cannot_be_built(self):
        class Incomplete(Notifier):
            pass

        with pytest.raises(TypeError):
            Incomplete(get_settings())

    def test_build_notifier_picks_transport_from_settings(self):
        settings = get_settings()
        assert isinstance(build_notifier(settings.model_copy(update={"EMAIL_HOST": ""})), LoggingNotifier)
        assert isinstance(build_notifier(settings.model_copy(update={"EMAIL_HOST": "smtp.test"})), SmtpNotifier)

    def test_smtp_attaches_files(self, smtp_outbox):
        settings = get_settings().model_copy(update={"EMAIL_HOST": "smtp.test", "EMAIL_HOST_USER": "mailer"})
        attachment = EmailAttachment(filename="Lab_Report_marks.csv", content=b"Score\n45\n", media_type="text/csv")

        sent = SmtpNotifier(settings).send_marks(
            "grace@uni.edu", {"assignment_title": "Lab Report", "supervisor_name": "Grace Hopper"}, attachment
        )

        assert sent is True
        to_email, message = smtp_outbox[0]
        assert to_email == "grace@uni.edu"
        assert message["Subject"] == "Student Marks Export: Lab Report"
        files = [part for part in message.walk() if part.get_filename()]
        assert [part.get_filename() for part in files] == ["Lab_Report_marks.csv"]
        assert files[0].get_content_type() == "text/csv"
        assert files[0].get_payload(decode=True) == b"Score\n45\n"

    def test_transport_errors_are_reported_as_false(self, monkeypatch):
        def broken(*args, **kwargs):
            raise OSError("connection refused")

        monkeypatch.setattr(email_service.smtplib, "SMTP", broken)
        settings = get_settings().model_copy(update={"EMAIL_HOST": "smtp.test"})

        assert SmtpNotifier(settings).send_grade("student1@uni.edu", "Student1", {"assignment_title": "Lab"}) is False
