"""Shared test fixtures and configuration."""
import os
from datetime import datetime

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("TWILIO_ACCOUNT_SID", "test-sid")
os.environ.setdefault("TWILIO_AUTH_TOKEN", "test-token")
os.environ.setdefault("TWILIO_PHONE_NUMBER", "+16502530000")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DEFAULT_PHONE_REGION", "IN")

from outbound_caller.main import app
from outbound_caller.db.database import Base, get_db
from outbound_caller.db.models import Company, KnowledgeBase, Lead, ScheduledTask
from outbound_caller.core.dependencies import (
    get_base_url,
    get_generative_backend,
    get_telephony_provider,
)
from outbound_caller.core.exceptions import ProviderError
from outbound_caller.services.agent.agent import ConversationEngine
from outbound_caller.services.call_session import manager as manager_module
from outbound_caller.services.call_session.locks import CallLockRegistry
from outbound_caller.services.call_session.manager import CallSessionManager
from outbound_caller.services.call_session.reconciler import StatusReconciler
from outbound_caller.services.scheduling.dispatcher import ScheduledCallDispatcher
from tests.fakes import TEST_BASE_URL, FakeBackend, FakeTelephony


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def test_db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_db_engine):
    """Session factory for tests that need more than one session."""
    return async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def test_db(session_factory):
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def company(test_db):
    """Company with a complete knowledge base."""
    company = Company(name="Acme Solar")
    test_db.add(company)
    await test_db.flush()
    test_db.add(
        KnowledgeBase(
            company_id=company.id,
            company_info="Acme Solar installs rooftop solar for homes.",
            products=[
                {
                    "name": "Home Starter",
                    "price": 4999,
                    "description": "3kW rooftop kit",
                    "features": ["25 year warranty", "App monitoring"],
                }
            ],
            services=[
                {
                    "name": "Free site survey",
                    "description": "An engineer checks your roof",
                    "benefits": ["No obligation"],
                }
            ],
            sales_instructions="Offer the free site survey before talking price.",
        )
    )
    await test_db.commit()
    return company


@pytest.fixture
async def lead(test_db, company):
    lead = Lead(company_id=company.id, name="Priya Sharma", phone="+919876543210")
    test_db.add(lead)
    await test_db.commit()
    return lead


@pytest.fixture
def make_task(test_db, lead):
    """Factory for scheduled tasks on the default lead."""
    async def _make_task(scheduled_at=None, status="pending", task_type="call", task_lead=None):
        owner = task_lead or lead
        task = ScheduledTask(
            lead_id=owner.id,
            company_id=owner.company_id,
            task_type=task_type,
            scheduled_at=scheduled_at or datetime.utcnow(),
            status=status,
        )
        test_db.add(task)
        await test_db.commit()
        return task
    return _make_task


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def fake_telephony():
    return FakeTelephony()


@pytest.fixture
def conversation_engine(test_db, fake_backend):
    return ConversationEngine(test_db, fake_backend, max_turns=10, timeout_seconds=1.0)


@pytest.fixture
def session_manager(test_db, conversation_engine, fake_telephony):
    return CallSessionManager(
        test_db,
        conversation_engine,
        fake_telephony,
        TEST_BASE_URL,
        locks=CallLockRegistry(),
        max_silent_prompts=2,
    )


@pytest.fixture
def reconciler(test_db, session_manager):
    return StatusReconciler(test_db, session_manager)


@pytest.fixture
def dispatcher(test_db, session_manager, reconciler):
    return ScheduledCallDispatcher(test_db, session_manager, reconciler)


@pytest.fixture
def failing_telephony():
    return FakeTelephony(error=ProviderError("Twilio rejected the call: number unreachable"))


@pytest.fixture
async def api_client(test_db, fake_backend, fake_telephony):
    """Async HTTP client against the app, wired to the test database and fakes."""
    async def _override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_generative_backend] = lambda: fake_backend
    app.dependency_overrides[get_telephony_provider] = lambda: fake_telephony
    app.dependency_overrides[get_base_url] = lambda: TEST_BASE_URL

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    # Clear overrides
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def clean_contexts():
    """Clean up live conversation contexts before and after tests."""
    manager_module._contexts.clear()
    yield
    manager_module._contexts.clear()
