import os
import uuid
from datetime import date, datetime
from typing import AsyncGenerator

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./.pytest-ledger.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

import app.core.models  # noqa: F401  (registers tables on Base.metadata)
from app.auth.security import create_access_token
from app.core.models import Classroom, Enrollment, Student
from app.db.session import Base, get_db
from app.main import app


@pytest.fixture()
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database file per test."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", echo=False, future=True)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine):
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


@pytest.fixture()
def admin_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def auth_headers(admin_id: uuid.UUID) -> dict:
    token = create_access_token(user_id=admin_id, role="ADMIN")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def make_student(db_session: AsyncSession):
    """Create a student, optionally enrolled in a classroom from start_date."""

    async def _make(
        first_name: str = "Aziz",
        last_name: str = "Karimov",
        start_date: date = date(2026, 1, 5),
        enrolled: bool = True,
        created_at: datetime = datetime(2025, 12, 1),
        classroom_name: str = "5-A",
    ) -> Student:
        classroom = Classroom(name=classroom_name, academic_year="2025-2026")
        student = Student(
            first_name=first_name,
            last_name=last_name,
            username=f"{first_name.lower()}.{last_name.lower()}",
            phone="+998901234567",
            created_at=created_at,
        )
        db_session.add_all([classroom, student])
        await db_session.flush()
        if enrolled:
            db_session.add(
                Enrollment(
                    student_id=student.id,
                    classroom_id=classroom.id,
                    start_date=start_date,
                    is_active=True,
                    created_at=created_at,
                )
            )
        await db_session.commit()
        return student

    return _make
