from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from portal.db.session import get_db
from portal.dependencies.auth import get_current_supervisor
from portal.dependencies.services import get_dispatcher
from portal.services.notifications import NotificationDispatcher
from portal.utils.helpers import success_response

router = APIRouter(prefix="/notifications", tags=["notifications"])

@router.post("/retry")
def retry_notifications(
    limit: int = Query(100, ge=1, le=1000),
    supervisor_id: int = Depends(get_current_supervisor),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    report = dispatcher.retry_pending(db, limit)
    return success_response("Pending notifications processed", report.as_dict())
