import os

# Settings are read at import time; point them at the test database first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import uuid
from datetime import timedelta
from typing import AsyncGenerator, Dict, List, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.auth.schemas import CurrentUser
from app.auth.security import create_access_token
from app.core.enums import EventStatus, LifecycleStatus, UserRole
from app.core.models import Event, School, Student
from app.core.timeutils import utcnow
from app.db.schema_check import ensure_tables
from app.db.session import get_db
from app.main import app


@pytest.fixture()
async def engine(tmp_path):
    """Fresh SQLite file per test so separate sessions see each other's commits."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False, future=True)
    await ensure_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app; each request gets its own session."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


class Seed:
    """Creates rows in their own committed session; returned objects are detached."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._factory = session_factory

    async def _save(self, obj):
        async with self._factory() as session:
            session.add(obj)
            await session.commit()
        return obj

    async def school(self, name: str = "Springfield High") -> School:
        return await self._save(School(name=name, code=uuid.uuid4().hex[:8].upper()))

    async def student(self, school: School, name: str = "Student", grade: Optional[str] = "Grade 9") -> Student:
        return await self._save(
            Student(
                user_id=uuid.uuid4(),
                school_id=school.id,
                name=name,
                email=f"{uuid.uuid4().hex[:6]}@example.com",
                grade=grade,
            )
        )

    async def event(
        self,
        *,
        title: str = "Science Fair",
        description: str = "Annual science fair",
        days_ahead: float = 10,
        deadline_days_ahead: Optional[float] = 5,
        eligible_grades: Optional[List[str]] = None,
        max_participants: Optional[int] = None,
        max_participants_per_school: Optional[int] = None,
        status: str = EventStatus.APPROVED.value,
        lifecycle_status: str = LifecycleStatus.ACTIVE.value,
        school: Optional[School] = None,
    ) -> Event:
        now = utcnow()
        return await self._save(
            Event(
                school_id=school.id if school else None,
                title=title,
                description=description,
                date=now + timedelta(days=days_ahead),
                registration_deadline=now + timedelta(days=deadline_days_ahead) if deadline_days_ahead is not None else None,
                eligible_grades=eligible_grades or [],
                max_participants=max_participants,
                max_participants_per_school=max_participants_per_school,
                status=status,
                lifecycle_status=lifecycle_status,
                created_by=uuid.uuid4(),
                created_by_role=UserRole.SUPER_ADMIN.value,
                version=0,
                created_at=now,
                updated_at=now,
            )
        )


@pytest.fixture()
def seed(session_factory) -> Seed:
    return Seed(session_factory)


def student_user(student: Student) -> CurrentUser:
    return CurrentUser(id=student.user_id, role=UserRole.STUDENT.value, school_id=student.school_id)


def school_admin(school: School) -> CurrentUser:
    return CurrentUser(id=uuid.uuid4(), role=UserRole.SCHOOL_ADMIN.value, school_id=school.id)


def super_admin() -> CurrentUser:
    return CurrentUser(id=uuid.uuid4(), role=UserRole.SUPER_ADMIN.value, school_id=None)


def auth_headers(user: CurrentUser) -> Dict[str, str]:
    claims = {"sub": str(user.id), "role": user.role}
    if user.school_id:
        claims["school_id"] = str(user.school_id)
    return {"Authorization": f"Bearer {create_access_token(subject=claims)}"}
