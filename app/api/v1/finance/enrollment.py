"""Enrollment lookups: the date a student's billing starts."""

from datetime import date
from typing import Dict, Iterable, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import ConflictKind
from app.core.exceptions import ConflictError, NotFoundError
from app.core.models import Enrollment, Student


def _as_date(value) -> Optional[date]:
    if value is None:
        return None
    if hasattr(value, "date"):
        return value.date()
    return value


async def active_enrollment_start_dates(db: AsyncSession, student_ids: Iterable[UUID]) -> Dict[UUID, date]:
    """
    {student_id: billing start date} for the given students.

    The newest active enrollment's start_date wins; students without one fall back to the
    date the student record was created.
    """
    ids = list(dict.fromkeys(student_ids))
    if not ids:
        return {}

    result: Dict[UUID, date] = {}
    enrollment_rows = await db.execute(
        select(Enrollment.student_id, Enrollment.start_date, Enrollment.created_at)
        .where(Enrollment.student_id.in_(ids), Enrollment.is_active.is_(True))
        .order_by(Enrollment.created_at.desc())
    )
    for student_id, start_date, created_at in enrollment_rows.all():
        if student_id in result:
            continue
        start = _as_date(start_date) or _as_date(created_at)
        if start is not None:
            result[student_id] = start

    missing = [sid for sid in ids if sid not in result]
    if missing:
        student_rows = await db.execute(select(Student.id, Student.created_at).where(Student.id.in_(missing)))
        for student_id, created_at in student_rows.all():
            start = _as_date(created_at)
            if start is not None:
                result[student_id] = start
    return result


async def active_enrollment_start_date(db: AsyncSession, student_id: UUID) -> Optional[date]:
    dates = await active_enrollment_start_dates(db, [student_id])
    return dates.get(student_id)


async def get_student_or_404(db: AsyncSession, student_id: UUID) -> Student:
    student = await db.get(Student, student_id)
    if not student:
        raise NotFoundError("Student not found")
    return student


async def require_active_enrollment(db: AsyncSession, student_id: UUID) -> Enrollment:
    """Newest active enrollment; payments are refused for students without one."""
    result = await db.execute(
        select(Enrollment)
        .where(Enrollment.student_id == student_id, Enrollment.is_active.is_(True))
        .order_by(Enrollment.created_at.desc())
        .limit(1)
    )
    enrollment = result.scalar_one_or_none()
    if enrollment is None:
        raise ConflictError(
            ConflictKind.ENROLLMENT_REQUIRED,
            "Student has no active enrollment",
            details={"student_id": str(student_id)},
        )
    return enrollment
