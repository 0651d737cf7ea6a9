from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from portal.db.session import get_db
from portal.dependencies.auth import get_current_supervisor
from portal.schemas.group import GroupCreate, GroupUpdate
from portal.services import groups
from portal.utils.helpers import success_response

router = APIRouter(prefix="/groups", tags=["groups"])

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_group(
    group: GroupCreate,
    supervisor_id: int = Depends(get_current_supervisor),
    db: Session = Depends(get_db)
):
    data = groups.create_group(db, group.assignment_id, group.group_name, group.members, supervisor_id)
    return success_response("Group created successfully", data)

@router.get("")
async def list_groups(
    assignment_id: int = Query(...),
    supervisor_id: int = Depends(get_current_supervisor),
    db: Session = Depends(get_db)
):
    data = groups.list_groups(db, assignment_id, supervisor_id)
    return success_response(f"Retrieved {len(data)} groups", data)

@router.get("/{group_id}")
async def get_group(
    group_id: int,
    supervisor_id: int = Depends(get_current_supervisor),
    db: Session = Depends(get_db)
):
    data = groups.get_group(db, group_id, supervisor_id)
    return success_response("Group retrieved successfully", data)

@router.put("/{group_id}")
async def update_group(
    group_id: int,
    group: GroupUpdate,
    supervisor_id: int = Depends(get_current_supervisor),
    db: Session = Depends(get_db)
):
    data = groups.update_group(db, group_id, supervisor_id, group.group_name, group.members)
    return success_response("Group updated successfully", data)

@router.delete("/{group_id}")
async def delete_group(
    group_id: int,
    supervisor_id: int = Depends(get_current_supervisor),
    db: Session = Depends(get_db)
):
    data = groups.delete_group(db, group_id, supervisor_id)
    return success_response("Group deleted successfully", data)
