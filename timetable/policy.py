"""Grade access policy.

Pure decision functions over the caller's ``Identity`` and the requested
resource. Each returns ``None`` when access is allowed and raises
``AuthorizationError`` otherwise; none of them touch the database, so callers
that need a stored row (update/delete) load it first and report a missing row
as ``NotFoundError`` before asking the policy.

    role     read                         create            update/delete
    admin    everything                   any               any row
    teacher  own teacher id, any student  own teacher id    rows with own teacher id
    student  own student id only          no                no
"""
from typing import Optional

from fastapi import Depends

from .auth import Identity, get_verified_identity
from .errors import AuthorizationError


def ensure_admin(identity: Identity) -> None:
    if not identity.is_admin:
        raise AuthorizationError("Access denied")


def ensure_staff(identity: Identity) -> None:
    if not (identity.is_admin or identity.is_teacher):
        raise AuthorizationError("Access denied")


def ensure_can_read_student_grades(identity: Identity, student_id: int) -> None:
    # Teachers are not re-checked against subject ownership here
    if identity.is_student and identity.user_id != student_id:
        raise AuthorizationError("Access denied")


def ensure_can_read_teacher_grades(identity: Identity, teacher_id: int) -> None:
    if identity.is_admin:
        return
    if identity.is_teacher and identity.teacher_id == teacher_id:
        return
    raise AuthorizationError("Access denied")


def ensure_can_create_grade(identity: Identity, teacher_id: int) -> None:
    if identity.is_admin:
        return
    if identity.is_teacher:
        if identity.teacher_id is None or identity.teacher_id != teacher_id:
            raise AuthorizationError("You can only add grades for your own subjects")
        return
    raise AuthorizationError("Access denied")


def ensure_can_write_grades(identity: Identity) -> None:
    """Checked before the stored row is looked up; students never write."""
    if not (identity.is_admin or identity.is_teacher):
        raise AuthorizationError("Access denied")


# FastAPI dependency for grade writes: students are turned away before the body is validated
def grade_writer(identity: Identity = Depends(get_verified_identity)) -> Identity:
    ensure_can_write_grades(identity)
    return identity


def ensure_can_modify_grade(identity: Identity, stored_teacher_id: Optional[int]) -> None:
    ensure_can_write_grades(identity)
    if identity.is_admin:
        return
    if identity.teacher_id is None or identity.teacher_id != stored_teacher_id:
        raise AuthorizationError("You can only change your own grades")
