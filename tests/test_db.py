import json
import logging
import os

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from factories import auth_headers, make_assignment
from portal.core.config.logging_config import RequestIdFilter, request_id_var
from portal.core.config.settings import get_settings
from portal.core.errors import ErrorCode, PortalError
from portal.db.errors import map_db_error, sqlstate
from portal.db.session import transaction
from portal.models.invitation import Invitation


class DriverError(Exception):
    def __init__(self, pgcode=None):
        super().__init__("driver failure")
        self.pgcode = pgcode


def _integrity(pgcode):
    return IntegrityError("INSERT ...", {}, DriverError(pgcode))


class TestMapDbError:
    def test_reads_postgres_sqlstate(self):
        assert sqlstate(_integrity("23505")) == "23505"

    def test_unique_violation_uses_caller_code(self):
        error = map_db_error(_integrity("23505"), on_unique=ErrorCode.DUPLICATE_TITLE)
        assert error.code == ErrorCode.DUPLICATE_TITLE
        assert error.status_code == 409
        assert not error.retryable

    def test_foreign_key_violation(self):
        error = map_db_error(_integrity("23503"))
        assert error.code == ErrorCode.FOREIGN_KEY_VIOLATION
        assert error.status_code == 400

    @pytest.mark.parametrize("pgcode", ["23502", "23514"])
    def test_not_null_and_check_violations(self, pgcode):
        assert map_db_error(_integrity(pgcode)).code == ErrorCode.VALIDATION_ERROR

    def test_connection_failure_is_retryable_infrastructure(self):
        error = map_db_error(OperationalError("SELECT 1", {}, DriverError()))
        assert error.code == ErrorCode.DATABASE_CONNECTION_ERROR
        assert error.status_code == 503
        assert error.retryable

    def test_stale_row_is_a_conflict(self):
        assert map_db_error(StaleDataError("stale")).code == ErrorCode.CONFLICT

    def test_anything_else_is_internal(self):
        assert map_db_error(SQLAlchemyError("boom")).code == ErrorCode.INTERNAL_SERVER_ERROR


class TestTransaction:
    def test_commits_on_success(self, db, seed):
        assignment = make_assignment(db, seed.supervisor_id)
        with transaction(db):
            db.add(Invitation(assignment_id=assignment.id, student_id=seed.students[0]))
        db.rollback()
        assert db.query(Invitation).count() == 1

    def test_unique_violation_rolls_back_and_maps(self, db, seed):
        assignment = make_assignment(db, seed.supervisor_id)
        db.add(Invitation(assignment_id=assignment.id, student_id=seed.students[0]))
        db.commit()

        with pytest.raises(PortalError) as exc:
            with transaction(db, on_unique=ErrorCode.ALREADY_INVITED):
                db.add(Invitation(assignment_id=assignment.id, student_id=seed.students[1]))
                db.add(Invitation(assignment_id=assignment.id, student_id=seed.students[0]))
                db.flush()

        assert exc.value.code == ErrorCode.ALREADY_INVITED
        assert db.query(Invitation).count() == 1

    def test_other_exceptions_propagate_unchanged(self, db, seed):
        assignment = make_assignment(db, seed.supervisor_id)
        with pytest.raises(ValueError):
            with transaction(db):
                db.add(Invitation(assignment_id=assignment.id, student_id=seed.students[0]))
                db.flush()
                raise ValueError("abort")
        assert db.query(Invitation).count() == 0


def test_health_endpoint(client, db):
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["database"] == "connected"
    assert body["redis"] == "not configured"
    assert "X-Request-ID" in response.headers


def _log_records(name="app.log"):
    for handler in logging.getLogger("portal").handlers:
        handler.flush()
    with open(os.path.join(get_settings().LOG_DIR, name), encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]


class TestRequestIdLogging:
    def test_filter_stamps_current_request_id(self):
        record = logging.LogRecord("portal", logging.INFO, __file__, 1, "hello", None, None)
        token = request_id_var.set("abc123")
        try:
            assert RequestIdFilter().filter(record)
        finally:
            request_id_var.reset(token)
        assert record.request_id == "abc123"

    def test_records_outside_a_request_get_a_placeholder(self):
        record = logging.LogRecord("portal", logging.INFO, __file__, 1, "hello", None, None)
        RequestIdFilter().filter(record)
        assert record.request_id == "-"

    def test_every_record_of_a_request_carries_its_id(self, client, db, seed):
        assignment = make_assignment(db, seed.supervisor_id)

        response = client.post(
            f"/api/v1/assignments/{assignment.id}/invite",
            json={"student_ids": seed.students[:1]},
            headers={**auth_headers(seed.supervisor_id), "X-Request-ID": "req-invite-42"},
        )

        assert response.status_code == 200
        assert response.headers["X-Request-ID"] == "req-invite-42"
        tagged = [r for r in _log_records() if r.get("request_id") == "req-invite-42"]
        messages = [r["message"] for r in tagged]
        assert any(m.startswith(f"Assignment {assignment.id}: invited 1 students") for m in messages)
        assert any("Path: /api/v1/assignments" in m for m in messages)
        assert request_id_var.get() == "-"

    def test_generated_id_is_echoed(self, client, db):
        response = client.get("/api/v1/health")
        request_id = response.headers["X-Request-ID"]
        assert len(request_id) == 32
        assert any(r.get("request_id") == request_id for r in _log_records())
