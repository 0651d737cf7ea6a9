"""
Assignment workflow status.

``derive_status`` is a pure function of an assignment's activity flag, due
date and invitation/submission counts. Analytics uses it for both the current
and the trailing window so the two always agree.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from portal.utils.helpers import as_utc, get_utc_now

logger = logging.getLogger(__name__)


class AssignmentStatus(str, enum.Enum):
    COMPLETED = "completed"
    OVERDUE = "overdue"
    ACTIVE = "active"
    PENDING = "pending"
    INACTIVE = "inactive"
    UNKNOWN = "unknown"


def derive_status(
    is_active: bool,
    due_date: datetime,
    invited_count: int,
    submitted_count: int,
    now: Optional[datetime] = None,
) -> AssignmentStatus:
    """
    First matching rule wins:

    1. everyone invited has submitted -> completed, even when inactive
    2. active, past due, someone still missing -> overdue
    3. active, not yet due, someone still missing -> active
    4. active with nobody invited -> active
    5. inactive -> inactive
    6. anything else -> unknown (inconsistent counts)
    """
    now = as_utc(now or get_utc_now())
    due = as_utc(due_date)

    if invited_count > 0 and submitted_count == invited_count:
        return AssignmentStatus.COMPLETED
    if is_active and invited_count > 0 and submitted_count < invited_count:
        if due < now:
            return AssignmentStatus.OVERDUE
        return AssignmentStatus.ACTIVE
    if is_active and invited_count == 0:
        return AssignmentStatus.ACTIVE
    if not is_active:
        return AssignmentStatus.INACTIVE

    logger.warning(
        "Could not derive assignment status: is_active=%s invited=%s submitted=%s",
        is_active, invited_count, submitted_count,
    )
    return AssignmentStatus.UNKNOWN


@dataclass(frozen=True)
class AssignmentSnapshot:
    assignment_id: int
    is_active: bool
    due_date: datetime
    invited_count: int
    submitted_count: int


def snapshot_status(snapshot: AssignmentSnapshot, now: Optional[datetime] = None) -> AssignmentStatus:
    return derive_status(
        snapshot.is_active,
        snapshot.due_date,
        snapshot.invited_count,
        snapshot.submitted_count,
        now,
    )
