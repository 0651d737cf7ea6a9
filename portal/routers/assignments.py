from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, UploadFile, status
from fastapi.responses import Response
from sqlalchemy.orm import Session
from typing import List, Literal, Optional
from datetime import datetime

from portal.db.session import get_db
from portal.dependencies.auth import get_current_supervisor
from portal.dependencies.services import get_dispatcher, get_file_storage, get_notifier, get_session_factory
from portal.schemas.assignment import EmailMarksRequest, InviteRequest, ToggleStatusRequest, UninviteRequest
from portal.services import analytics, assignments, invitations, marks_export
from portal.services.email import Notifier
from portal.services.file_storage import FileStorage
from portal.services.notifications import NotificationDispatcher
from portal.utils.helpers import content_disposition, success_response

router = APIRouter(prefix="/assignments", tags=["assignments"])


def _fields(title, description, instructions, due_date, max_score, assignment_type, max_group_size) -> dict:
    return {
        "title": title,
        "description": description,
        "instructions": instructions,
        "due_date": due_date,
        "max_score": max_score,
        "assignment_type": assignment_type,
        "max_group_size": max_group_size,
    }


@router.get("/analytics")
async def get_analytics(
    supervisor_id: int = Depends(get_current_supervisor),
    db: Session = Depends(get_db)
):
    data = analytics.get_assignment_analytics(db, supervisor_id)
    return success_response("Analytics retrieved successfully", data)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_assignment(
    title: str = Form(...),
    description: str = Form(...),
    instructions: str = Form(...),
    due_date: datetime = Form(...),
    max_score: int = Form(...),
    assignment_type: str = Form("individual"),
    max_group_size: Optional[int] = Form(None),
    attachments: Optional[List[UploadFile]] = File(None),
    supervisor_id: int = Depends(get_current_supervisor),
    db: Session = Depends(get_db),
    storage: FileStorage = Depends(get_file_storage)
):
    fields = _fields(title, description, instructions, due_date, max_score, assignment_type, max_group_size)
    data = await assignments.create_assignment(db, storage, fields, attachments or [], supervisor_id)
    return success_response("Assignment created successfully", data)


@router.get("")
async def list_assignments(
    supervisor_id: int = Depends(get_current_supervisor),
    db: Session = Depends(get_db)
):
    data = assignments.list_assignments(db, supervisor_id)
    return success_response(f"Retrieved {len(data)} assignments", data)


@router.get("/{assignment_id}")
async def view_assignment(
    assignment_id: int,
    supervisor_id: int = Depends(get_current_supervisor),
    db: Session = Depends(get_db)
):
    data = assignments.view_assignment(db, assignment_id, supervisor_id)
    return success_response("Assignment retrieved successfully", data)


@router.put("/{assignment_id}")
async def update_assignment(
    assignment_id: int,
    title: str = Form(...),
    description: str = Form(...),
    instructions: str = Form(...),
    due_date: datetime = Form(...),
    max_score: int = Form(...),
    assignment_type: str = Form("individual"),
    max_group_size: Optional[int] = Form(None),
    keep_existing_files: bool = Form(True),
    attachments: Optional[List[UploadFile]] = File(None),
    supervisor_id: int = Depends(get_current_supervisor),
    db: Session = Depends(get_db),
    storage: FileStorage = Depends(get_file_storage)
):
    fields = _fields(title, description, instructions, due_date, max_score, assignment_type, max_group_size)
    data = await assignments.update_assignment(
        db, storage, assignment_id, fields, attachments or [], keep_existing_files, supervisor_id
    )
    return success_response("Assignment updated successfully", data)


@router.post("/{assignment_id}/toggle-status")
async def toggle_assignment_status(
    assignment_id: int,
    request: ToggleStatusRequest,
    background_tasks: BackgroundTasks,
    supervisor_id: int = Depends(get_current_supervisor),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    session_factory=Depends(get_session_factory)
):
    data, row_ids = assignments.toggle_status(db, dispatcher, assignment_id, supervisor_id, request.is_active)
    if row_ids:
        background_tasks.add_task(dispatcher.deliver_pending, session_factory, row_ids)
    state = "activated" if data["is_active"] else "deactivated"
    return success_response(f"Assignment {state} successfully", data)


@router.delete("/{assignment_id}")
async def delete_assignment(
    assignment_id: int,
    supervisor_id: int = Depends(get_current_supervisor),
    db: Session = Depends(get_db),
    storage: FileStorage = Depends(get_file_storage)
):
    data = assignments.delete_assignment(db, storage, assignment_id, supervisor_id)
    return success_response("Assignment deleted successfully", data)


@router.post("/{assignment_id}/invite")
def invite_students(
    assignment_id: int,
    request: InviteRequest,
    supervisor_id: int = Depends(get_current_supervisor),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    data = invitations.invite(
        db, dispatcher, assignment_id, supervisor_id, request.student_ids, request.custom_message
    )
    return success_response(f"Successfully invited {data['invitations_sent']} students", data)


@router.post("/{assignment_id}/uninvite")
def uninvite_students(
    assignment_id: int,
    request: UninviteRequest,
    supervisor_id: int = Depends(get_current_supervisor),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    data = invitations.uninvite(
        db, dispatcher, assignment_id, supervisor_id, request.student_ids, request.reason
    )
    return success_response(f"Successfully removed {data['invitations_removed']} students", data)


@router.get("/{assignment_id}/marks")
async def download_marks(
    assignment_id: int,
    columns: List[str] = Query(...),
    file_format: Literal["csv", "xlsx"] = Query("xlsx", alias="format"),
    student_ids: Optional[List[int]] = Query(None),
    supervisor_id: int = Depends(get_current_supervisor),
    db: Session = Depends(get_db)
):
    marks = marks_export.export_marks(db, assignment_id, supervisor_id, columns, file_format, student_ids)
    return Response(
        content=marks.content,
        media_type=marks.media_type,
        headers={"Content-Disposition": content_disposition(marks.filename)},
    )


@router.post("/{assignment_id}/email-marks")
def email_marks(
    assignment_id: int,
    request: EmailMarksRequest,
    supervisor_id: int = Depends(get_current_supervisor),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier)
):
    data = marks_export.email_marks(
        db, notifier, assignment_id, supervisor_id,
        request.email, request.columns, request.file_format, request.student_ids,
    )
    return success_response(f"Student marks have been sent to {data['email']}", data)
