"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async)
- A recording WhatsApp provider in place of the real gateway
- Test data factories (couriers, clients, motorcycles, users, conversations)
"""
# מפתחות לפני ייבוא app: ה-webhook וה-endpoints של אדמין דוחים בקשות בלעדיהם
import os
os.environ.setdefault("ADMIN_API_KEY", "test-admin-api-key")
os.environ.setdefault("WHATSAPP_CLOUD_API_APP_SECRET", "test-app-secret")
os.environ.setdefault("WHATSAPP_CLOUD_API_VERIFY_TOKEN", "test-verify-token")

import itertools
from datetime import timedelta
from typing import AsyncGenerator, Optional

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.database import Base, get_db, utc_now
from app.db.models.client import Client
from app.db.models.conversation import Conversation
from app.db.models.courier import Courier
from app.db.models.maintenance_history import MaintenanceHistory, MaintenanceType
from app.db.models.motorcycle import Motorcycle, MotorcycleType
from app.db.models.user import User, UserRole
from app.domain.services.whatsapp.base_provider import BaseWhatsAppProvider, prepare_text
from app.main import app


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# מונה גלובלי למספרי טלפון ולוחיות רישוי ייחודיים
_id_counter = itertools.count(1000)


def _next_test_id() -> int:
    return next(_id_counter)


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def session_factory(async_engine):
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession):
    """Create test client with database override"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Fake WhatsApp Provider
# ============================================================================

class FakeWhatsAppProvider(BaseWhatsAppProvider):
    """ספק בזיכרון: שומר כל הודעה שנשלחה במקום לשלוח ל-gateway"""

    def __init__(self, fail_with: Optional[Exception] = None) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail_with = fail_with

    async def send_text(self, to: str, text: str) -> Optional[str]:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((to, self.format_text(text)))
        return f"wamid.fake.{len(self.sent)}"

    def format_text(self, text: str) -> str:
        return prepare_text(text)

    def normalize_phone(self, phone: str) -> str:
        return phone

    @property
    def provider_name(self) -> str:
        return "fake"

    @property
    def last_text(self) -> str:
        return self.sent[-1][1] if self.sent else ""


@pytest.fixture
def fake_provider() -> FakeWhatsAppProvider:
    return FakeWhatsAppProvider()


# ============================================================================
# Test Data Factories
# ============================================================================

@pytest.fixture
def courier_factory(db_session: AsyncSession):
    """Factory for creating courier records"""
    async def _create_courier(name: str = "ישראל ישראלי", is_active: bool = True) -> Courier:
        courier = Courier(name=name, is_active=is_active)
        db_session.add(courier)
        await db_session.commit()
        await db_session.refresh(courier)
        return courier

    return _create_courier


@pytest.fixture
def client_factory(db_session: AsyncSession):
    """Factory for creating client businesses"""
    async def _create_client(name: str = "פיצה בע\"מ") -> Client:
        client = Client(name=name)
        db_session.add(client)
        await db_session.commit()
        await db_session.refresh(client)
        return client

    return _create_client


@pytest.fixture
def motorcycle_factory(db_session: AsyncSession):
    """Factory for creating motorcycles"""
    async def _create_motorcycle(
        license_plate: Optional[str] = None,
        type: MotorcycleType = MotorcycleType.MOTORCYCLE_125,
        current_mileage: int = 0,
        assigned_courier_id: Optional[int] = None,
        assigned_client_id: Optional[int] = None,
        is_active: bool = True,
    ) -> Motorcycle:
        motorcycle = Motorcycle(
            license_plate=license_plate or f"{_next_test_id():03d}-00-{_next_test_id() % 1000:03d}",
            type=type,
            current_mileage=current_mileage,
            assigned_courier_id=assigned_courier_id,
            assigned_client_id=assigned_client_id,
            is_active=is_active,
        )
        db_session.add(motorcycle)
        await db_session.commit()
        await db_session.refresh(motorcycle)
        return motorcycle

    return _create_motorcycle


@pytest.fixture
def user_factory(db_session: AsyncSession):
    """Factory for creating bot users"""
    async def _create_user(
        phone_number: Optional[str] = None,
        name: Optional[str] = "Test User",
        role: UserRole = UserRole.COURIER,
        courier_id: Optional[int] = None,
        is_active: bool = True,
    ) -> User:
        user = User(
            phone_number=phone_number or f"+97250{_next_test_id():07d}",
            name=name,
            role=role,
            courier_id=courier_id,
            is_active=is_active,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture
def conversation_factory(db_session: AsyncSession):
    """Factory for conversations in an arbitrary state; expires_in_minutes<0 creates an expired row"""
    async def _create_conversation(
        user_id: int,
        state: str = "IDLE",
        context: Optional[dict] = None,
        expires_in_minutes: Optional[int] = 30,
    ) -> Conversation:
        conversation = Conversation(
            user_id=user_id,
            state=state,
            context=context or {},
            expires_at=(
                utc_now() + timedelta(minutes=expires_in_minutes)
                if expires_in_minutes is not None else None
            ),
        )
        db_session.add(conversation)
        await db_session.commit()
        await db_session.refresh(conversation)
        return conversation

    return _create_conversation


@pytest.fixture
def maintenance_factory(db_session: AsyncSession):
    """Factory for maintenance history records"""
    async def _create_maintenance(
        motorcycle_id: int,
        maintenance_type: MaintenanceType = MaintenanceType.SMALL,
        mileage_at_maintenance: int = 4000,
    ) -> MaintenanceHistory:
        record = MaintenanceHistory(
            motorcycle_id=motorcycle_id,
            maintenance_type=maintenance_type,
            mileage_at_maintenance=mileage_at_maintenance,
        )
        db_session.add(record)
        await db_session.commit()
        await db_session.refresh(record)
        return record

    return _create_maintenance


# ============================================================================
# Sample Test Data
# ============================================================================

@pytest.fixture
async def sample_courier(courier_factory) -> Courier:
    return await courier_factory(name="דני כהן")


@pytest.fixture
async def courier_user(user_factory, sample_courier) -> User:
    """משתמש שליח מקושר לרשומת השליח"""
    return await user_factory(
        phone_number="+972501111111",
        name="Dani",
        role=UserRole.COURIER,
        courier_id=sample_courier.id,
    )


@pytest.fixture
async def admin_user(user_factory) -> User:
    return await user_factory(
        phone_number="+972509999999",
        name="מנהל הצי",
        role=UserRole.ADMIN,
    )


@pytest.fixture
async def courier_motorcycle(motorcycle_factory, sample_courier) -> Motorcycle:
    """אופנוע 125 בקילומטראז' 15,000 המשויך לשליח"""
    return await motorcycle_factory(
        license_plate="123-45-678",
        type=MotorcycleType.MOTORCYCLE_125,
        current_mileage=15000,
        assigned_courier_id=sample_courier.id,
    )


# ============================================================================
# Circuit Breaker / Provider Reset
# ============================================================================

@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Reset circuit breakers between tests"""
    from app.core.circuit_breaker import CircuitBreaker
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()


@pytest.fixture(autouse=True)
def reset_whatsapp_providers():
    """ה-singleton של הספק נבנה מחדש בכל בדיקה"""
    from app.domain.services.whatsapp import reset_providers
    reset_providers()
    yield
    reset_providers()
