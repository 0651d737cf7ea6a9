import logging
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from portal.core.errors import ErrorCode, PortalError, validation_error
from portal.crud import assignments as assignments_crud
from portal.crud import directory as directory_crud
from portal.crud import groups as groups_crud
from portal.db.session import transaction
from portal.models.assignment import Assignment
from portal.models.group import AssignmentGroup
from portal.utils.helpers import format_datetime

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 100
MIN_MEMBERS = 2


def _name_error(group_name: Optional[str]) -> Optional[str]:
    name = (group_name or "").strip()
    if len(name) < MIN_NAME_LENGTH:
        return f"Group name must be at least {MIN_NAME_LENGTH} characters"
    if len(name) > MAX_NAME_LENGTH:
        return f"Group name cannot exceed {MAX_NAME_LENGTH} characters"
    return None


def _members_error(members: Optional[List[int]]) -> Optional[str]:
    if not members or len(members) < MIN_MEMBERS:
        return f"A group needs at least {MIN_MEMBERS} members"
    if len(set(members)) != len(members):
        return "Duplicate members are not allowed"
    return None


def _group_assignment(db: Session, assignment_id: int, supervisor_id: int) -> Assignment:
    assignment = assignments_crud.get_assignment(db, assignment_id)
    if not assignment or not assignment.is_group:
        raise PortalError(ErrorCode.ASSIGNMENT_NOT_FOUND, "Group assignment not found")
    if not assignment.is_owned_by(supervisor_id):
        raise PortalError(ErrorCode.ACCESS_DENIED, "You can only manage groups for assignments you created")
    return assignment


def _check_members(
    db: Session, assignment: Assignment, members: List[int], exclude_group_id: Optional[int] = None
) -> None:
    if assignment.max_group_size and len(members) > assignment.max_group_size:
        raise PortalError(
            ErrorCode.GROUP_SIZE_EXCEEDED,
            f"Group cannot have more than {assignment.max_group_size} members",
        )

    found = {s.id for s in directory_crud.get_students(db, members)}
    missing = [student_id for student_id in members if student_id not in found]
    if missing:
        raise PortalError(
            ErrorCode.STUDENTS_NOT_FOUND,
            "Some students were not found",
            data={"missing_student_ids": missing},
        )

    taken = groups_crud.find_memberships(db, assignment.id, members, exclude_group_id=exclude_group_id)
    if taken:
        raise PortalError(
            ErrorCode.STUDENT_ALREADY_IN_GROUP,
            "Some students already belong to another group for this assignment",
            data={"student_ids": sorted({m.student_id for m in taken})},
        )


def _check_name(db: Session, assignment_id: int, group_name: str, exclude_id: Optional[int] = None) -> None:
    if groups_crud.find_by_name(db, assignment_id, group_name, exclude_id=exclude_id):
        raise PortalError(
            ErrorCode.DUPLICATE_GROUP_NAME,
            f"A group named '{group_name.strip()}' already exists for this assignment",
        )


def serialize_group(db: Session, group: AssignmentGroup) -> dict:
    members = [
        {
            "student_id": member.student_id,
            "name": member.student.full_name if member.student else None,
            "email": member.student.email if member.student else None,
            "joined_at": format_datetime(member.joined_at),
        }
        for member in group.members
    ]
    return {
        "id": group.id,
        "assignment_id": group.assignment_id,
        "group_name": group.group_name,
        "created_by": group.created_by,
        "max_members": group.max_members,
        "member_count": len(members),
        "members": members,
        "has_submission": groups_crud.has_submission(db, group.id),
        "created_at": format_datetime(group.created_at),
        "updated_at": format_datetime(group.updated_at),
    }


def create_group(
    db: Session, assignment_id: int, group_name: str, members: List[int], created_by: int
) -> dict:
    errors = {}
    name_error = _name_error(group_name)
    if name_error:
        errors["group_name"] = name_error
    members_error = _members_error(members)
    if members_error:
        errors["members"] = members_error
    if errors:
        raise validation_error(errors)

    name = group_name.strip()
    assignment = _group_assignment(db, assignment_id, created_by)
    _check_members(db, assignment, members)
    _check_name(db, assignment.id, name)

    with transaction(db, on_unique=ErrorCode.STUDENT_ALREADY_IN_GROUP):
        group = groups_crud.create_group(db, {
            "assignment_id": assignment.id,
            "group_name": name,
            "created_by": created_by,
            "max_members": len(members),
        })
        groups_crud.add_members(db, group, members)

    logger.info(f"Group {group.id} '{name}' created for assignment {assignment.id} with {len(members)} members")
    return serialize_group(db, group)


def update_group(
    db: Session,
    group_id: int,
    updated_by: int,
    group_name: Optional[str] = None,
    members: Optional[List[int]] = None,
) -> dict:
    errors = {}
    if group_name is not None:
        name_error = _name_error(group_name)
        if name_error:
            errors["group_name"] = name_error
    if members is not None:
        members_error = _members_error(members)
        if members_error:
            errors["members"] = members_error
    if errors:
        raise validation_error(errors)

    group = groups_crud.get_group(db, group_id)
    if not group:
        raise PortalError(ErrorCode.GROUP_NOT_FOUND, "Group not found")
    assignment = _group_assignment(db, group.assignment_id, updated_by)

    if members is not None:
        _check_members(db, assignment, members, exclude_group_id=group.id)
    if group_name is not None:
        _check_name(db, assignment.id, group_name, exclude_id=group.id)

    with transaction(db, on_unique=ErrorCode.STUDENT_ALREADY_IN_GROUP):
        if group_name is not None:
            group.group_name = group_name.strip()
        if members is not None:
            # Full replace
            groups_crud.remove_members(db, group)
            groups_crud.add_members(db, group, members)
            group.max_members = len(members)
        db.flush()

    logger.info(f"Group {group.id} updated by supervisor {updated_by}")
    return serialize_group(db, group)


def delete_group(db: Session, group_id: int, supervisor_id: int) -> dict:
    group = groups_crud.get_group(db, group_id)
    if not group:
        raise PortalError(ErrorCode.GROUP_NOT_FOUND, "Group not found")
    _group_assignment(db, group.assignment_id, supervisor_id)

    if groups_crud.has_submission(db, group.id):
        raise PortalError(ErrorCode.GROUP_HAS_SUBMISSIONS, "Cannot delete a group that has submitted work")

    deleted = {"id": group.id, "group_name": group.group_name, "assignment_id": group.assignment_id}
    with transaction(db):
        groups_crud.delete_group(db, group)

    logger.info(f"Group {deleted['id']} deleted from assignment {deleted['assignment_id']}")
    return deleted


def _visible_assignment(db: Session, assignment_id: int, supervisor_id: int) -> Assignment:
    assignment = assignments_crud.get_assignment(db, assignment_id)
    if not assignment:
        raise PortalError(ErrorCode.ASSIGNMENT_NOT_FOUND, "Assignment not found")
    if not directory_crud.get_roster(db, supervisor_id).includes(assignment):
        raise PortalError(ErrorCode.ACCESS_DENIED, "You do not have access to this assignment")
    return assignment


def list_groups(db: Session, assignment_id: int, supervisor_id: int) -> List[dict]:
    assignment = _visible_assignment(db, assignment_id, supervisor_id)
    return [serialize_group(db, group) for group in groups_crud.list_groups(db, assignment.id)]


def get_group(db: Session, group_id: int, supervisor_id: int) -> dict:
    group = groups_crud.get_group(db, group_id)
    if not group:
        raise PortalError(ErrorCode.GROUP_NOT_FOUND, "Group not found")
    _visible_assignment(db, group.assignment_id, supervisor_id)
    return serialize_group(db, group)
