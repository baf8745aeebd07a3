"""Test fixtures for the school medication backend."""
from __future__ import annotations

import os
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import date, datetime, time, timedelta
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")

from schoolmed.core.config import get_settings
from schoolmed.core.security import create_access_token
from schoolmed.db.base import Base
from schoolmed.db.session import dispose_engine, get_sessionmaker
from schoolmed.main import app
from schoolmed.models import (
    DoseInstance,
    DoseStatus,
    FrequencyType,
    MedicationOrder,
    OrderStatus,
    Priority,
    User,
    UserRole,
)
from schoolmed.security.permissions import CallerIdentity
from schoolmed.services.cache_service import MemoryCache, set_cache

# Monday, mid-morning.
NOW = datetime(2026, 3, 2, 9, 0)


@pytest.fixture(scope="session")
def db_url(tmp_path_factory: pytest.TempPathFactory) -> str:
    """Provide a temporary SQLite database URL for the test session."""
    db_path = tmp_path_factory.mktemp("db") / "test.db"
    return f"sqlite+aiosqlite:///{db_path}"


@pytest_asyncio.fixture()
async def reset_database(db_url: str) -> AsyncIterator[None]:
    """Drop and recreate the database schema for an isolated test."""
    os.environ["DATABASE_URL"] = db_url
    get_settings.cache_clear()
    get_settings()
    set_cache(MemoryCache())

    await dispose_engine(db_url)
    engine = create_async_engine(db_url, future=True)
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.drop_all)
        await connection.run_sync(Base.metadata.create_all)
    await engine.dispose()
    yield
    await dispose_engine(db_url)


@pytest_asyncio.fixture()
async def school(reset_database: None, db_url: str) -> dict[str, uuid.UUID]:
    """Seed one of each role plus a second family."""
    sessionmaker = get_sessionmaker(db_url)
    people = {
        "nurse": User(full_name="Nguyễn Thị Hoa", role=UserRole.SCHOOLNURSE),
        "manager": User(full_name="Trần Văn Minh", role=UserRole.MANAGER),
        "admin": User(full_name="Lê Quốc Anh", role=UserRole.ADMIN),
        "parent": User(full_name="Phạm Thu Trang", role=UserRole.PARENT),
        "student": User(full_name="Phạm Gia Bảo", student_code="HS001", role=UserRole.STUDENT),
        "other_parent": User(full_name="Đỗ Mai Lan", role=UserRole.PARENT),
        "inactive_manager": User(
            full_name="Vũ Hải Nam", role=UserRole.MANAGER, is_active=False
        ),
    }
    async with sessionmaker() as session:
        session.add_all(people.values())
        await session.commit()
        return {name: user.id for name, user in people.items()}


@pytest.fixture()
def callers(school: dict[str, uuid.UUID]) -> dict[str, CallerIdentity]:
    roles = {
        "nurse": UserRole.SCHOOLNURSE,
        "manager": UserRole.MANAGER,
        "admin": UserRole.ADMIN,
        "parent": UserRole.PARENT,
        "student": UserRole.STUDENT,
        "other_parent": UserRole.PARENT,
    }
    return {
        name: CallerIdentity(user_id=school[name], role=role) for name, role in roles.items()
    }


@pytest.fixture()
def make_order(
    school: dict[str, uuid.UUID], db_url: str
) -> Callable[..., Awaitable[uuid.UUID]]:
    """Return a coroutine that inserts a medication order and yields its id."""

    async def _make(**overrides: Any) -> uuid.UUID:
        today = overrides.pop("today", NOW.date())
        fields: dict[str, Any] = {
            "student_id": school["student"],
            "parent_id": school["parent"],
            "medication_name": "Paracetamol",
            "dosage": "5ml",
            "start_date": today,
            "end_date": today + timedelta(days=2),
            "expiry_date": today + timedelta(days=90),
            "frequency_type": FrequencyType.DAILY,
            "specific_times": ["08:00"],
            "priority": Priority.NORMAL,
            "total_doses": 20,
            "remaining_doses": 20,
            "status": OrderStatus.ACTIVE,
            "created_at": NOW - timedelta(days=1),
            "updated_at": NOW - timedelta(days=1),
        }
        fields.update(overrides)
        order = MedicationOrder(**fields)
        async with get_sessionmaker(db_url)() as session:
            session.add(order)
            await session.commit()
            return order.id

    return _make


@pytest.fixture()
def make_dose(db_url: str) -> Callable[..., Awaitable[uuid.UUID]]:
    """Return a coroutine that inserts a pending dose for an existing order."""

    async def _make(
        order_id: uuid.UUID,
        *,
        day: date | None = None,
        at: time = time(8, 0),
        **overrides: Any,
    ) -> uuid.UUID:
        fields: dict[str, Any] = {
            "order_id": order_id,
            "scheduled_date": day or NOW.date(),
            "scheduled_time": at,
            "scheduled_dosage": "5ml",
            "priority": Priority.NORMAL,
            "status": DoseStatus.PENDING,
        }
        fields.update(overrides)
        dose = DoseInstance(**fields)
        async with get_sessionmaker(db_url)() as session:
            session.add(dose)
            await session.commit()
            return dose.id

    return _make


def _bearer(user_id: uuid.UUID, role: UserRole) -> dict[str, str]:
    token = create_access_token(str(user_id), role=role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture()
async def app_context(
    school: dict[str, uuid.UUID],
) -> AsyncIterator[dict[str, object]]:
    """Yield an async client and auth headers for the seeded users."""
    context: dict[str, object] = {
        "ids": school,
        "nurse_headers": _bearer(school["nurse"], UserRole.SCHOOLNURSE),
        "parent_headers": _bearer(school["parent"], UserRole.PARENT),
        "other_parent_headers": _bearer(school["other_parent"], UserRole.PARENT),
        "student_headers": _bearer(school["student"], UserRole.STUDENT),
    }
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        context["client"] = client
        yield context


@pytest.fixture()
def now() -> datetime:
    return NOW
