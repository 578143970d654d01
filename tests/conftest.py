import os
from datetime import UTC, datetime

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("ENV", "test")

from app.api.deps import get_now, get_session  # noqa: E402
from app.main import app  # noqa: E402
from app.models import Business, Provider, Service  # noqa: E402

# Monday, well clear of DST changes in America/New_York (EST, UTC-5)
BOOKING_DATE = datetime(2030, 3, 4).date()
NOW = datetime(2030, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'booking.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
async def catalog(session_maker):
    """One business with an active and an inactive provider/service, plus a second business."""
    async with session_maker() as session:
        business = Business(name="Glow Studio", slug="glow-studio", timezone="America/New_York")
        other_business = Business(name="Other Place", slug="other-place", timezone="UTC")
        session.add_all([business, other_business])
        await session.flush()

        provider = Provider(business_id=business.id, name="Ana", work_start_hour=9, work_end_hour=17)
        inactive_provider = Provider(
            business_id=business.id, name="Ben", is_active=False, work_start_hour=9, work_end_hour=17
        )
        other_provider = Provider(business_id=other_business.id, name="Cleo", work_start_hour=8, work_end_hour=12)
        service = Service(business_id=business.id, name="Facial Basic", duration_minutes=60, price_cents=6000)
        consult = Service(business_id=business.id, name="Consultation", duration_minutes=30, price_cents=0)
        contouring = Service(business_id=business.id, name="Body Contouring", duration_minutes=90, price_cents=12000)
        inactive_service = Service(
            business_id=business.id, name="Retired", duration_minutes=30, price_cents=1000, is_active=False
        )
        other_service = Service(business_id=other_business.id, name="Massage", duration_minutes=30, price_cents=5000)
        session.add_all(
            [provider, inactive_provider, other_provider, service, consult, contouring, inactive_service, other_service]
        )
        await session.commit()

        return {
            "business": business,
            "other_business": other_business,
            "provider": provider,
            "inactive_provider": inactive_provider,
            "other_provider": other_provider,
            "service": service,
            "consult": consult,
            "contouring": contouring,
            "inactive_service": inactive_service,
            "other_service": other_service,
        }


@pytest.fixture
async def client(session_maker):
    async def _get_session():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = _get_session
    app.dependency_overrides[get_now] = lambda: NOW
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.clear()
