import pytest
from typing import AsyncGenerator, List
from datetime import date, time
import uuid
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession

from app.main import app
from app.api.deps import get_flow_store
from app.api.v1.flow.schemas import FLOW_STEPS
from app.core.security import create_access_token
from app.domain.bookings.models import Booking, ConsultationType
from app.domain.bookings.reservation import BookingReservation
from app.domain.payments.reconciler import PaymentReconciler, ReconcilerSupervisor
from app.domain.providers.models import DayOfWeek, Provider, ScheduleSlot
from app.infrastructure.database import build_engine, build_session_factory, get_db, init_db
from app.infrastructure.redis import FlowStateStore
from support import FakePaymentGateway, FakeRedis, next_weekday


@pytest.fixture(scope="function")
async def engine(tmp_path):
    """File-backed SQLite database per test"""
    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'bookings.db'}")
    await init_db(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


@pytest.fixture(scope="function")
async def provider(db_session: AsyncSession) -> Provider:
    """Doctor with one active slot: Monday 09:00, 60 minutes"""
    doctor = Provider(
        name="dr. Sari Wulandari",
        specialization="Dokter Umum",
        practice_address="Jl. Merdeka 10, Bandung",
        base_hourly_rate=100000,
        is_available=True,
    )
    db_session.add(doctor)
    await db_session.flush()
    db_session.add(
        ScheduleSlot(
            provider_id=doctor.id,
            day_of_week=DayOfWeek.MONDAY,
            time_slot=time(9, 0),
            duration_minutes=60,
            is_active=True,
        )
    )
    await db_session.commit()
    await db_session.refresh(doctor)
    return doctor


@pytest.fixture(scope="function")
def monday_slot(provider: Provider) -> ScheduleSlot:
    return provider.schedules[0]


@pytest.fixture(scope="function")
def next_monday() -> date:
    return next_weekday(0)


@pytest.fixture(scope="function")
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture(scope="function")
def notifications() -> List[Booking]:
    return []


@pytest.fixture(scope="function")
def reconciler(session_factory, gateway, notifications) -> PaymentReconciler:
    async def record(booking):
        notifications.append(booking)

    return PaymentReconciler(
        session_factory,
        gateway,
        notifier=record,
        poll_interval=0.05,
        grace_seconds=0.3,
    )


@pytest.fixture(scope="function")
async def supervisor(reconciler) -> AsyncGenerator[ReconcilerSupervisor, None]:
    running = ReconcilerSupervisor(reconciler)
    yield running
    await running.stop_all()


@pytest.fixture(scope="function")
async def pending_booking(db_session, provider, monday_slot, next_monday) -> Booking:
    """A PENDING_PAYMENT booking without a payment session"""
    return await BookingReservation(db_session).reserve(
        user_id=uuid.uuid4(),
        provider=provider,
        schedule_slot=monday_slot,
        calendar_date=next_monday,
        consultation_type=ConsultationType.OFFLINE,
        duration_minutes=60,
    )


@pytest.fixture(scope="function")
def flow_store() -> FlowStateStore:
    return FlowStateStore(FakeRedis(), FLOW_STEPS, ttl=600)


@pytest.fixture(scope="function")
def user_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture(scope="function")
def test_token(user_id) -> str:
    """Create a test JWT token for authentication."""
    return create_access_token(str(user_id), data={"email": "pasien@example.com", "role": "patient"})


@pytest.fixture(scope="function")
async def client(session_factory, gateway, supervisor, flow_store) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database and service overrides."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_flow_store] = lambda: flow_store
    app.state.payment_gateway = gateway
    app.state.reconciler_supervisor = supervisor

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    app.state.payment_gateway = None
    app.state.reconciler_supervisor = None


@pytest.fixture(scope="function")
async def authenticated_client(client: AsyncClient, test_token: str) -> AsyncGenerator[AsyncClient, None]:
    """Create an authenticated test client."""
    client.headers.update({"Authorization": f"Bearer {test_token}"})
    yield client
