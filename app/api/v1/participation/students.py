"""Read-only lookups into the student-management data used by the participation core."""

from typing import Dict, Iterable, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError
from app.core.models import School, Student


async def get_student(db: AsyncSession, student_id: UUID) -> Optional[Student]:
    return await db.get(Student, student_id)


async def get_student_for_user(db: AsyncSession, user_id: UUID) -> Student:
    """Student profile behind the session user; NotFoundError when there is none."""
    student = (
        await db.execute(select(Student).where(Student.user_id == user_id))
    ).scalar_one_or_none()
    if not student:
        raise NotFoundError("Student profile not found")
    return student


async def school_names(db: AsyncSession, school_ids: Iterable[UUID]) -> Dict[UUID, str]:
    ids = {sid for sid in school_ids if sid is not None}
    if not ids:
        return {}
    rows = await db.execute(select(School.id, School.name).where(School.id.in_(ids)))
    return {row.id: row.name for row in rows}
