import csv
import io

import pytest
from openpyxl import load_workbook

from factories import auth_headers, make_assignment, make_group, make_invitations, make_submission, watch_event_loop
from portal.core.errors import ErrorCode, PortalError
from portal.models.assignment import AssignmentType
from portal.models.submission import SubmissionStatus
from portal.services import marks_export


@pytest.fixture
def graded(db, seed):
    assignment = make_assignment(db, seed.supervisor_id, title="Lab Report", max_score=50)
    make_invitations(db, assignment, seed.students[:3])
    make_submission(
        db, assignment, student_id=seed.students[0],
        score=45, feedback="Clear and thorough", status=SubmissionStatus.APPROVED,
    )
    make_submission(db, assignment, student_id=seed.students[1])
    return assignment


def _csv_rows(content: bytes):
    return list(csv.reader(io.StringIO(content.decode("utf-8"))))


class TestExportMarks:
    def test_csv_uses_selected_columns_in_order(self, db, seed, graded):
        marks = marks_export.export_marks(
            db, graded.id, seed.supervisor_id, ["student_name", "score", "submission_status", "feedback"], "csv"
        )

        assert marks.filename == "Lab_Report_marks.csv"
        assert marks.media_type == "text/csv"
        assert _csv_rows(marks.content) == [
            ["Student Name", "Score", "Submission Status", "Feedback"],
            ["Student1 Lastname1", "45.0", "approved", "Clear and thorough"],
            ["Student2 Lastname2", "", "pending", ""],
            ["Student3 Lastname3", "", "not_submitted", ""],
        ]

    def test_student_filter(self, db, seed, graded):
        marks = marks_export.export_marks(
            db, graded.id, seed.supervisor_id, ["email"], "csv", student_ids=[seed.students[2]]
        )
        assert _csv_rows(marks.content) == [["Email"], [seed.emails[seed.students[2]]]]

    def test_group_members_share_the_group_submission(self, db, seed):
        assignment = make_assignment(
            db, seed.supervisor_id, title="Team Project", assignment_type=AssignmentType.GROUP, max_group_size=3
        )
        make_invitations(db, assignment, seed.students[:2])
        group = make_group(db, assignment, "Alpha", seed.students[:2])
        make_submission(db, assignment, group_id=group.id, score=30, status=SubmissionStatus.APPROVED)

        marks = marks_export.export_marks(
            db, assignment.id, seed.supervisor_id, ["group_name", "score"], "csv"
        )

        assert _csv_rows(marks.content)[1:] == [["Alpha", "30.0"], ["Alpha", "30.0"]]

    def test_xlsx_workbook(self, db, seed, graded):
        marks = marks_export.export_marks(db, graded.id, seed.supervisor_id, ["student_name", "score"])

        assert marks.filename == "Lab_Report_marks.xlsx"
        sheet = load_workbook(io.BytesIO(marks.content)).active
        assert sheet.title == "Student Marks"
        assert sheet["A1"].value == "Lab Report - Student Marks Report"
        assert sheet["B3"].value == "Grace Hopper"
        rows = [list(row) for row in sheet.iter_rows(min_row=7, values_only=True)]
        assert rows[0] == ["Student Name", "Score"]
        assert rows[1] == ["Student1 Lastname1", 45]
        assert len(rows) == 4
        assert sheet["A7"].font.bold

    @pytest.mark.parametrize("columns, file_format, field", [
        ([], "csv", "columns"),
        (["student_name", "shoe_size"], "csv", "columns"),
        (["student_name"], "pdf", "format"),
    ])
    def test_request_validation(self, db, seed, graded, columns, file_format, field):
        with pytest.raises(PortalError) as exc:
            marks_export.export_marks(db, graded.id, seed.supervisor_id, columns, file_format)
        assert exc.value.code == ErrorCode.VALIDATION_ERROR
        assert field in exc.value.errors

    def test_only_creator_may_export(self, db, seed, graded):
        with pytest.raises(PortalError) as exc:
            marks_export.export_marks(db, graded.id, seed.other_supervisor_id, ["student_name"], "csv")
        assert exc.value.code == ErrorCode.ACCESS_DENIED


class TestMarksRoute:
    def test_download_csv(self, client, db, seed, graded):
        response = client.get(
            f"/api/v1/assignments/{graded.id}/marks",
            params=[("columns", "student_name"), ("columns", "score"), ("format", "csv")],
            headers=auth_headers(seed.supervisor_id),
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert 'filename="Lab_Report_marks.csv"' in response.headers["content-disposition"]
        assert _csv_rows(response.content)[0] == ["Student Name", "Score"]

    def test_unknown_assignment(self, client, db, seed):
        response = client.get(
            "/api/v1/assignments/9999/marks",
            params=[("columns", "student_name")],
            headers=auth_headers(seed.supervisor_id),
        )
        assert response.status_code == 404
        assert response.json()["error"] == "ASSIGNMENT_NOT_FOUND"

    def test_non_latin_title_gets_ascii_fallback_filename(self, client, db, seed):
        assignment = make_assignment(db, seed.supervisor_id, title="Análisis 🚀 Project")
        make_invitations(db, assignment, seed.students[:1])

        response = client.get(
            f"/api/v1/assignments/{assignment.id}/marks",
            params=[("columns", "student_name"), ("format", "csv")],
            headers=auth_headers(seed.supervisor_id),
        )

        assert response.status_code == 200
        disposition = response.headers["content-disposition"]
        assert 'filename="Analisis__Project_marks.csv"' in disposition
        assert "filename*=UTF-8''An%C3%A1lisis_%F0%9F%9A%80_Project_marks.csv" in disposition


class TestFormulaEscaping:
    @pytest.fixture
    def hostile(self, db, seed):
        assignment = make_assignment(db, seed.supervisor_id, title="Lab Report")
        make_invitations(db, assignment, seed.students[:2])
        make_submission(
            db, assignment, student_id=seed.students[0],
            score=10, feedback='=HYPERLINK("http://evil.example","click")', status=SubmissionStatus.APPROVED,
        )
        make_submission(
            db, assignment, student_id=seed.students[1],
            score=20, feedback="@SUM(A1:A2)", status=SubmissionStatus.APPROVED,
        )
        return assignment

    def test_csv_cells_are_prefixed(self, db, seed, hostile):
        marks = marks_export.export_marks(db, hostile.id, seed.supervisor_id, ["feedback", "score"], "csv")

        assert _csv_rows(marks.content)[1:] == [
            ["'=HYPERLINK(\"http://evil.example\",\"click\")", "10.0"],
            ["'@SUM(A1:A2)", "20.0"],
        ]

    def test_xlsx_cells_stay_text(self, db, seed, hostile):
        marks = marks_export.export_marks(db, hostile.id, seed.supervisor_id, ["feedback"])

        sheet = load_workbook(io.BytesIO(marks.content)).active
        cell = sheet["A8"]
        assert cell.data_type == "s"
        assert cell.value.startswith("'=HYPERLINK")

    def test_plain_text_is_untouched(self, db, seed, graded):
        marks = marks_export.export_marks(db, graded.id, seed.supervisor_id, ["feedback"], "csv")
        assert _csv_rows(marks.content)[1] == ["Clear and thorough"]


class TestEmailMarks:
    def test_sends_export_as_attachment(self, db, seed, notifier, graded):
        result = marks_export.email_marks(
            db, notifier, graded.id, seed.supervisor_id, " grace@uni.edu ", ["student_name", "score"], "csv"
        )

        assert result == {"email": "grace@uni.edu", "filename": "Lab_Report_marks.csv", "students": 3}
        assert notifier.subjects_for("grace@uni.edu") == ["Student Marks Export: Lab Report"]
        [(to_email, attachment)] = notifier.attachments
        assert to_email == "grace@uni.edu"
        assert attachment.filename == "Lab_Report_marks.csv"
        assert attachment.media_type == "text/csv"
        assert _csv_rows(attachment.content)[0] == ["Student Name", "Score"]

    @pytest.mark.parametrize("address", ["", "grace", "grace@uni", "grace @uni.edu"])
    def test_invalid_address_is_rejected(self, db, seed, notifier, graded, address):
        with pytest.raises(PortalError) as exc:
            marks_export.email_marks(db, notifier, graded.id, seed.supervisor_id, address, ["student_name"])

        assert exc.value.code == ErrorCode.VALIDATION_ERROR
        assert "email" in exc.value.errors
        assert notifier.sent == []

    def test_export_rules_still_apply(self, db, seed, notifier, graded):
        with pytest.raises(PortalError) as exc:
            marks_export.email_marks(
                db, notifier, graded.id, seed.other_supervisor_id, "alan@uni.edu", ["student_name"]
            )

        assert exc.value.code == ErrorCode.ACCESS_DENIED
        assert notifier.sent == []

    def test_transport_failure_is_reported(self, db, seed, notifier, graded):
        notifier.fail_for.add("grace@uni.edu")

        with pytest.raises(PortalError) as exc:
            marks_export.email_marks(db, notifier, graded.id, seed.supervisor_id, "grace@uni.edu", ["score"])

        assert exc.value.code == ErrorCode.EMAIL_DELIVERY_FAILED
        assert exc.value.status_code == 503


class TestEmailMarksRoute:
    def test_email_endpoint(self, client, db, seed, notifier, graded, monkeypatch):
        on_loop = watch_event_loop(notifier, monkeypatch)

        response = client.post(
            f"/api/v1/assignments/{graded.id}/email-marks",
            json={"email": "grace@uni.edu", "columns": ["student_name", "feedback"], "format": "xlsx"},
            headers=auth_headers(seed.supervisor_id),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Student marks have been sent to grace@uni.edu"
        assert body["data"]["filename"] == "Lab_Report_marks.xlsx"
        assert on_loop == [False]
        sheet = load_workbook(io.BytesIO(notifier.attachments[0][1].content)).active
        assert sheet["A7"].value == "Student Name"

    def test_bad_address_returns_validation_error(self, client, db, seed, graded):
        response = client.post(
            f"/api/v1/assignments/{graded.id}/email-marks",
            json={"email": "not-an-address", "columns": ["student_name"]},
            headers=auth_headers(seed.supervisor_id),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"
        assert "email" in response.json()["errors"]
