from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from approvals.config import set_settings
from approvals.db import get_session
from approvals.main import app
from approvals.models import SQLModel, UserRole
from approvals.services.employee import EmployeeInfo, InMemoryEmployeeService, set_employee_service

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator
    from pathlib import Path

    from sqlalchemy.engine import Connection
    from sqlalchemy.ext.asyncio import AsyncEngine

# Directory seeded for every test: (id, name, role, grade).
EMPLOYEE_ID = 1
MANAGER_ID = 2
ADMIN_ID = 3
OTHER_EMPLOYEE_ID = 4

_DIRECTORY = [
    (EMPLOYEE_ID, "Ada Employee", UserRole.EMPLOYEE, 1),
    (MANAGER_ID, "Max Manager", UserRole.MANAGER, 2),
    (ADMIN_ID, "Alex Admin", UserRole.ADMIN, 3),
    (OTHER_EMPLOYEE_ID, "Eve Employee", UserRole.EMPLOYEE, 1),
]


@pytest.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    """A fresh in-memory SQLite database per test."""
    _engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Emit BEGIN ourselves so SAVEPOINTs nest inside the outer transaction.
    @event.listens_for(_engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(_engine.sync_engine, "begin")
    def _begin(conn: Connection) -> None:
        conn.exec_driver_sql("BEGIN")

    async with _engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield _engine
    await _engine.dispose()


@pytest.fixture
async def db_session(engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture
async def file_session_factory(tmp_path: Path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Sessions on separate connections to one file database, for interleaving tests."""
    _engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'approvals.db'}")
    async with _engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield async_sessionmaker(_engine, expire_on_commit=False)
    await _engine.dispose()


@pytest.fixture
async def async_client(db_session: AsyncSession) -> AsyncIterator[AsyncClient]:
    """Async HTTP client with the database session dependency overridden."""

    async def _override_get_session() -> AsyncIterator[AsyncSession]:
        yield db_session

    app.dependency_overrides[get_session] = _override_get_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _seed_employee_service() -> Iterator[None]:
    """Seed the in-memory directory for every test."""
    svc = InMemoryEmployeeService()
    for user_id, name, role, grade in _DIRECTORY:
        svc.seed(
            EmployeeInfo(
                id=user_id,
                name=name,
                email=f"{name.split()[0].lower()}@example.com",
                role=role,
                grade_id=grade,
            )
        )
    set_employee_service(svc)
    yield
    set_employee_service(InMemoryEmployeeService())


@pytest.fixture(autouse=True)
def _reset_settings() -> Iterator[None]:
    yield
    set_settings(None)
