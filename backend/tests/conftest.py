"""
Pytest fixtures for test database, client, authentication and seed data.

Tables are created and dropped around every test. The default database is a
SQLite file (every transaction takes the write lock with BEGIN IMMEDIATE);
set TEST_DATABASE_URL to run the same suite against PostgreSQL.

Seed fixtures flush, refresh and commit so no transaction is left open on
the shared session; concurrency tests open their own sessions and would
otherwise wait on that lock.
"""

import os
from datetime import datetime, timezone, timedelta
from decimal import Decimal
from typing import AsyncGenerator, Optional

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite:///./test_settlement.db")

os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
os.environ["REDIS_ENABLED"] = "false"
os.environ["ADMISSION_STRATEGY"] = "optimistic"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["PAYZONE_SECRET_KEY"] = "payzone_test_secret"

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from settlement.main import app
from settlement.db.base import Base
from settlement.db.session import build_engine, get_db
from settlement.core.security import create_access_token
from settlement.models import (
    Booking,
    Coupon,
    Experience,
    ExperienceSession,
    Payment,
    PaymentSettings,
    User,
)
from settlement.models.enums import BookingStatus, PaymentStatus, ProviderId, UserRole

test_engine = build_engine(TEST_DATABASE_URL, poolclass=NullPool) if TEST_DATABASE_URL.startswith("sqlite") \
    else build_engine(TEST_DATABASE_URL)
TestSessionLocal = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


async def persist(db: AsyncSession, *objects):
    """Insert rows and commit without leaving a transaction open."""
    db.add_all(objects)
    await db.flush()
    for obj in objects:
        await db.refresh(obj)
    await db.commit()
    return objects[0] if len(objects) == 1 else objects


async def reload(db: AsyncSession, model, pk):
    """Current database state of a row, bypassing the identity map."""
    obj = await db.get(model, pk, populate_existing=True)
    await db.commit()
    return obj


def auth_headers_for(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(data={'sub': str(user.id)})}"}


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create tables, yield session, then drop tables for isolation."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session
        await session.rollback()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client that overrides the DB dependency with the test session."""

    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def _user(db: AsyncSession, email: str, role: UserRole) -> User:
    return await persist(db, User(email=email, name=email.split("@")[0], role=role.value))


@pytest_asyncio.fixture
async def organizer(db_session: AsyncSession) -> User:
    return await _user(db_session, "organizer@example.com", UserRole.ORGANIZER)


@pytest_asyncio.fixture
async def other_organizer(db_session: AsyncSession) -> User:
    return await _user(db_session, "rival@example.com", UserRole.ORGANIZER)


@pytest_asyncio.fixture
async def explorer(db_session: AsyncSession) -> User:
    return await _user(db_session, "explorer@example.com", UserRole.EXPLORER)


@pytest_asyncio.fixture
async def second_explorer(db_session: AsyncSession) -> User:
    return await _user(db_session, "explorer2@example.com", UserRole.EXPLORER)


@pytest_asyncio.fixture
async def admin(db_session: AsyncSession) -> User:
    return await _user(db_session, "admin@example.com", UserRole.ADMIN)


@pytest_asyncio.fixture
async def explorer_headers(explorer: User) -> dict:
    return auth_headers_for(explorer)


@pytest_asyncio.fixture
async def organizer_headers(organizer: User) -> dict:
    return auth_headers_for(organizer)


@pytest_asyncio.fixture
async def admin_headers(admin: User) -> dict:
    return auth_headers_for(admin)


@pytest_asyncio.fixture
async def experience(db_session: AsyncSession, organizer: User) -> Experience:
    """A 50.00 USD experience owned by the organizer."""
    return await persist(
        db_session,
        Experience(title="Desert Sunrise Hike", price=Decimal("50.00"), currency="USD", organizer_id=organizer.id),
    )


async def make_session(
    db: AsyncSession,
    experience: Experience,
    capacity: int,
    price_override: Optional[Decimal] = None,
) -> ExperienceSession:
    return await persist(
        db,
        ExperienceSession(
            experience_id=experience.id,
            start_at=datetime.now(timezone.utc) + timedelta(days=14),
            capacity=capacity,
            price_override=price_override,
        ),
    )


@pytest_asyncio.fixture
async def session(db_session: AsyncSession, experience: Experience) -> ExperienceSession:
    """A session with 10 seats at the experience price."""
    return await make_session(db_session, experience, capacity=10)


async def make_booking(
    db: AsyncSession,
    explorer: User,
    session: ExperienceSession,
    guests: int,
    status: BookingStatus = BookingStatus.PENDING,
    total_price: Optional[Decimal] = None,
) -> Booking:
    return await persist(
        db,
        Booking(
            experience_id=session.experience_id,
            session_id=session.id,
            explorer_id=explorer.id,
            guests=guests,
            total_price=total_price if total_price is not None else Decimal("50.00") * guests,
            status=status.value,
            expires_at=datetime.now(timezone.utc) + timedelta(minutes=30),
        ),
    )


@pytest_asyncio.fixture
async def pending_booking(db_session: AsyncSession, explorer: User, session: ExperienceSession) -> Booking:
    """Two guests at 50.00 -> 100.00, awaiting payment."""
    return await make_booking(db_session, explorer, session, guests=2)


async def make_coupon(db: AsyncSession, owner: User, code: str = "SUMMER20", **overrides) -> Coupon:
    fields = dict(
        code=code,
        discount_percentage=20,
        used_count=0,
        valid_from=datetime.now(timezone.utc) - timedelta(days=1),
        expires_at=datetime.now(timezone.utc) + timedelta(days=30),
        created_by_id=owner.id,
    )
    fields.update(overrides)
    return await persist(db, Coupon(**fields))


async def make_payment(
    db: AsyncSession,
    booking: Booking,
    provider: ProviderId = ProviderId.STRIPE,
    status: PaymentStatus = PaymentStatus.REQUIRES_PAYMENT_METHOD,
    amount: int = 10000,
    provider_payment_id: Optional[str] = "cs_test_123",
) -> Payment:
    payment = await persist(
        db,
        Payment(
            booking_id=booking.id,
            provider=provider.value,
            provider_payment_id=provider_payment_id,
            amount=amount,
            currency="USD",
            status=status.value,
            metadata_json={"bookingId": booking.id},
        ),
    )
    booking.payment_id = payment.id
    booking.payment_status = status.value
    await db.flush()
    await db.refresh(booking)
    await db.commit()
    return payment


async def configure_providers(db: AsyncSession, default: str, enabled: list[str], test_mode: bool = True):
    return await persist(
        db,
        PaymentSettings(default_provider=default, enabled_providers=enabled, test_mode=test_mode),
    )
