from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from portal.db.session import get_db
from portal.dependencies.auth import get_current_supervisor
from portal.dependencies.services import get_dispatcher, get_session_factory
from portal.schemas.grading import GradeRequest
from portal.services import assignments, grading
from portal.services.notifications import NotificationDispatcher
from portal.utils.helpers import success_response

router = APIRouter(prefix="/submissions", tags=["submissions"])

@router.get("/recent")
async def get_recent_submissions(
    limit: int = Query(10, ge=1, le=50),
    supervisor_id: int = Depends(get_current_supervisor),
    db: Session = Depends(get_db)
):
    data = assignments.recent_submissions(db, supervisor_id, limit)
    return success_response("Recent submissions retrieved successfully", data)

@router.post("/{submission_id}/grade")
async def grade_submission(
    submission_id: int,
    request: GradeRequest,
    background_tasks: BackgroundTasks,
    supervisor_id: int = Depends(get_current_supervisor),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    session_factory=Depends(get_session_factory)
):
    data, row_ids = grading.grade_submission(
        db,
        dispatcher,
        submission_id,
        supervisor_id,
        request.score,
        request.feedback,
        request.status,
        request.expected_version,
    )
    if row_ids:
        background_tasks.add_task(dispatcher.deliver_pending, session_factory, row_ids)
    return success_response("Submission graded successfully", data)
