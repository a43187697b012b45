"""
Pytest configuration and fixtures.

Tests run against SQLite (aiosqlite) in a per-test temporary file. The
application's engine and session factory are swapped for the test ones, so
routes and services use the same database the test seeds.
"""
import os
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, Optional

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AUTH_JWT_SECRET", "test-jwt-secret-0123456789abcdefghijkl")
os.environ.setdefault("PAYCHANGU_PUBLIC_KEY", "PUB-TEST-paychangu")
os.environ.setdefault("PUBLIC_BASE_URL", "http://test")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from counsel_payments.api.main import app
from counsel_payments.config import get_settings
from counsel_payments.database import connection
from counsel_payments.database.connection import build_engine, build_session_factory
from counsel_payments.database.models import (
    Base,
    Case,
    CaseStatus,
    LawyerProfile,
    Notification,
    Payment,
    PaymentStatus,
    PendingTransaction,
    User,
    UserRole,
)

CLIENT_ID = "client-1"
LAWYER_ID = "lawyer-1"
ADMIN_ID = "admin-1"
OTHER_CLIENT_ID = "client-2"
CASE_ID = "C1"
HOURLY_RATE_CENTS = 20000


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: pure function tests")
    config.addinivalue_line("markers", "integration: tests that hit the database or API")
    config.addinivalue_line("markers", "race: concurrent reconciliation tests")


@pytest_asyncio.fixture
async def engine(tmp_path: Any, monkeypatch: pytest.MonkeyPatch) -> AsyncGenerator[AsyncEngine, Any]:
    """Fresh database file with all tables, wired into the application."""
    test_engine = build_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}",
        poolclass=NullPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    monkeypatch.setattr(connection, "_engine", test_engine)
    monkeypatch.setattr(connection, "_async_session_factory", build_session_factory(test_engine))

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def seeded(session_factory: async_sessionmaker[AsyncSession]) -> Dict[str, str]:
    """
    Client, lawyer (hourly rate 200.00), admin, a second client and case C1.
    """
    async with session_factory() as session:
        session.add_all(
            [
                User(id=CLIENT_ID, email="jane.doe@example.com", name="Jane Doe",
                     role=UserRole.CLIENT.value),
                User(id=OTHER_CLIENT_ID, email="sam@example.com", name="Sam",
                     role=UserRole.CLIENT.value),
                User(id=LAWYER_ID, email="counsel@example.com", name="Ada Counsel",
                     role=UserRole.LAWYER.value),
                User(id=ADMIN_ID, email="admin@example.com", name="Admin",
                     role=UserRole.ADMIN.value),
                LawyerProfile(user_id=LAWYER_ID, hourly_rate_cents=HOURLY_RATE_CENTS),
                Case(id=CASE_ID, title="Land Dispute", status=CaseStatus.OPEN.value,
                     client_id=CLIENT_ID, lawyer_id=LAWYER_ID),
            ]
        )
        await session.commit()
    return {"case_id": CASE_ID, "client_id": CLIENT_ID, "lawyer_id": LAWYER_ID}


@pytest.fixture
def add_case(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[None]]:
    """Insert an extra case."""

    async def _add(case_id: str, status: str = CaseStatus.OPEN.value,
                   client_id: str = CLIENT_ID, lawyer_id: str = LAWYER_ID) -> None:
        async with session_factory() as session:
            session.add(Case(id=case_id, title=f"Case {case_id}", status=status,
                             client_id=client_id, lawyer_id=lawyer_id))
            await session.commit()

    return _add


@pytest.fixture
def add_payment(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[None]]:
    """Insert a payment row directly."""

    async def _add(case_id: str = CASE_ID, status: str = PaymentStatus.COMPLETED.value,
                   amount_cents: int = 50000, transaction_id: str = "CASE-C1-1000") -> None:
        async with session_factory() as session:
            session.add(Payment(case_id=case_id, user_id=CLIENT_ID, amount_cents=amount_cents,
                                currency="MWK", status=status, transaction_id=transaction_id,
                                payment_method="Paychangu"))
            await session.commit()

    return _add


@pytest.fixture
def add_pending(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[None]]:
    """Insert a checkout record directly."""

    async def _add(tx_ref: str, amount_cents: int, case_id: str = CASE_ID) -> None:
        async with session_factory() as session:
            session.add(PendingTransaction(tx_ref=tx_ref, case_id=case_id, user_id=CLIENT_ID,
                                           amount_cents=amount_cents, currency="MWK"))
            await session.commit()

    return _add


@pytest.fixture
def fetch_payment(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[Optional[Payment]]]:
    async def _fetch(case_id: str = CASE_ID) -> Optional[Payment]:
        async with session_factory() as session:
            result = await session.execute(select(Payment).where(Payment.case_id == case_id))
            return result.scalar_one_or_none()

    return _fetch


@pytest.fixture
def count_rows(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[int]]:
    async def _count(model: Any) -> int:
        async with session_factory() as session:
            return (await session.execute(select(func.count()).select_from(model))).scalar_one()

    return _count


@pytest.fixture
def notifications(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[list]]:
    async def _list() -> list:
        async with session_factory() as session:
            result = await session.execute(select(Notification).order_by(Notification.user_id))
            return list(result.scalars())

    return _list


def make_token(user_id: str, role: str, secret: Optional[str] = None) -> str:
    """Session token as issued by the auth service."""
    return jwt.encode(
        {"sub": user_id, "role": role},
        secret or get_settings().auth_jwt_secret,
        algorithm="HS256",
    )


@pytest.fixture
def auth_headers() -> Callable[..., Dict[str, str]]:
    """Bearer header for a user."""

    def _headers(user_id: str = CLIENT_ID, role: str = UserRole.CLIENT.value) -> Dict[str, str]:
        return {"Authorization": f"Bearer {make_token(user_id, role)}"}

    return _headers


@pytest_asyncio.fixture
async def client(engine: AsyncEngine) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def webhook_secret(monkeypatch: pytest.MonkeyPatch) -> Any:
    """Enable callback signature verification for one test."""
    secret = "whsec-test"
    monkeypatch.setenv("PAYCHANGU_WEBHOOK_SECRET", secret)
    get_settings.cache_clear()
    yield secret
    monkeypatch.delenv("PAYCHANGU_WEBHOOK_SECRET")
    get_settings.cache_clear()
