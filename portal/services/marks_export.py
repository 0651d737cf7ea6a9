import csv
import io
import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from sqlalchemy.orm import Session

from portal.core.errors import ErrorCode, PortalError, validation_error
from portal.crud import assignments as assignments_crud
from portal.crud import directory as directory_crud
from portal.crud import groups as groups_crud
from portal.crud import invitations as invitations_crud
from portal.models.submission import Submission
from portal.services.email import EmailAttachment, Notifier
from portal.utils.helpers import format_datetime, sanitize_filename

logger = logging.getLogger(__name__)

COLUMNS = {
    "student_name": "Student Name",
    "email": "Email",
    "group_name": "Group",
    "invitation_status": "Invitation Status",
    "submission_status": "Submission Status",
    "score": "Score",
    "feedback": "Feedback",
    "submitted_at": "Submitted At",
    "graded_at": "Graded At",
}

FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


FORMATS = {
    "csv": "text/csv",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


@dataclass
class MarksFile:
    filename: str
    media_type: str
    content: bytes
    assignment_title: str = ""
    supervisor_name: str = ""
    row_count: int = 0


def _rows(db: Session, assignment, student_ids: Optional[Iterable[int]]) -> List[Dict[str, object]]:
    invitations = invitations_crud.get_invitations(db, assignment.id, student_ids)
    groups = groups_crud.list_groups(db, assignment.id)
    group_of = {member.student_id: group for group in groups for member in group.members}
    individual = {s.student_id: s for s in assignment.submissions if s.student_id is not None}
    by_group = {s.group_id: s for s in assignment.submissions if s.group_id is not None}

    rows = []
    for inv in sorted(invitations, key=lambda i: (i.student.last_name, i.student.first_name)):
        group = group_of.get(inv.student_id)
        submission: Optional[Submission] = individual.get(inv.student_id)
        if submission is None and group is not None:
            submission = by_group.get(group.id)
        rows.append({
            "student_name": inv.student.full_name,
            "email": inv.student.email,
            "group_name": group.group_name if group else "",
            "invitation_status": inv.status.value,
            "submission_status": submission.status.value if submission else "not_submitted",
            "score": submission.score if submission and submission.score is not None else "",
            "feedback": (submission.feedback or "") if submission else "",
            "submitted_at": format_datetime(submission.submitted_at) or "" if submission else "",
            "graded_at": format_datetime(submission.graded_at) or "" if submission else "",
        })
    return rows


def _cell(value):
    # Spreadsheet apps evaluate text that looks like a formula
    if isinstance(value, str) and value.startswith(FORMULA_PREFIXES):
        return "'" + value
    return value


def _to_csv(columns: List[str], rows: List[dict]) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow([COLUMNS[c] for c in columns])
    for row in rows:
        writer.writerow([_cell(row[c]) for c in columns])
    return buffer.getvalue().encode("utf-8")


def _to_xlsx(assignment, supervisor, columns: List[str], rows: List[dict]) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Student Marks"

    sheet.append([f"{assignment.title} - Student Marks Report"])
    sheet["A1"].font = Font(bold=True, size=16)
    sheet.append(["Assignment:", assignment.title])
    sheet.append(["Supervisor:", supervisor.full_name])
    sheet.append(["Maximum Score:", assignment.max_score])
    sheet.append(["Students:", len(rows)])
    sheet.append([])

    sheet.append([COLUMNS[c] for c in columns])
    header_row = sheet.max_row
    for index in range(1, len(columns) + 1):
        cell = sheet.cell(row=header_row, column=index)
        cell.font = Font(bold=True, color="004472C4")
        cell.fill = PatternFill(fill_type="solid", fgColor="FFE6F2FF")
        cell.alignment = Alignment(horizontal="center")

    for row in rows:
        sheet.append([_cell(row[c]) for c in columns])

    for index, column in enumerate(columns, start=1):
        width = max([len(COLUMNS[column])] + [len(str(row[column])) for row in rows])
        sheet.column_dimensions[get_column_letter(index)].width = min(width + 2, 60)

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def export_marks(
    db: Session,
    assignment_id: int,
    supervisor_id: int,
    columns: List[str],
    file_format: str = "xlsx",
    student_ids: Optional[List[int]] = None,
) -> MarksFile:
    errors = {}
    if not columns:
        errors["columns"] = "Select at least one column"
    else:
        unknown = [c for c in columns if c not in COLUMNS]
        if unknown:
            errors["columns"] = f"Unknown columns: {', '.join(unknown)}"
    if file_format not in FORMATS:
        errors["format"] = "Format must be csv or xlsx"
    if errors:
        raise validation_error(errors)

    supervisor = directory_crud.get_supervisor(db, supervisor_id)
    if not supervisor:
        raise PortalError(ErrorCode.SUPERVISOR_NOT_FOUND, "Supervisor not found")
    assignment = assignments_crud.get_assignment(db, assignment_id)
    if not assignment:
        raise PortalError(ErrorCode.ASSIGNMENT_NOT_FOUND, "Assignment not found")
    if not assignment.is_owned_by(supervisor_id):
        raise PortalError(ErrorCode.ACCESS_DENIED, "You can only export marks for assignments you created")

    rows = _rows(db, assignment, student_ids or None)
    if file_format == "csv":
        content = _to_csv(columns, rows)
    else:
        content = _to_xlsx(assignment, supervisor, columns, rows)

    base = sanitize_filename(assignment.title).replace(" ", "_") or f"assignment_{assignment.id}"
    logger.info(f"Exported {len(rows)} mark rows for assignment {assignment.id} as {file_format}")
    return MarksFile(
        filename=f"{base}_marks.{file_format}",
        media_type=FORMATS[file_format],
        content=content,
        assignment_title=assignment.title,
        supervisor_name=supervisor.full_name,
        row_count=len(rows),
    )


EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def email_marks(
    db: Session,
    notifier: Notifier,
    assignment_id: int,
    supervisor_id: int,
    email: str,
    columns: List[str],
    file_format: str = "xlsx",
    student_ids: Optional[List[int]] = None,
) -> dict:
    """Build the same export as ``export_marks`` and mail it as an attachment."""
    email = (email or "").strip()
    if not EMAIL_PATTERN.match(email):
        raise validation_error({"email": "Invalid email address"})

    marks = export_marks(db, assignment_id, supervisor_id, columns, file_format, student_ids)
    payload = {
        "assignment_title": marks.assignment_title,
        "supervisor_name": marks.supervisor_name,
        "filename": marks.filename,
        "file_format": file_format,
        "student_count": marks.row_count,
        "column_count": len(columns),
    }
    attachment = EmailAttachment(filename=marks.filename, content=marks.content, media_type=marks.media_type)
    if not notifier.send_marks(email, payload, attachment):
        raise PortalError(ErrorCode.EMAIL_DELIVERY_FAILED, f"Failed to send marks to {email}")

    logger.info(f"Marks for assignment {assignment_id} emailed to {email} by supervisor {supervisor_id}")
    return {"email": email, "filename": marks.filename, "students": marks.row_count}
