"""
Shared test fixtures.

Every test gets its own SQLite file database, so claim races between two
sessions behave like two dispatcher processes sharing one store.
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from dripline.models.base import Base
# Import all models to register them with Base
from dripline.models.sequence import DripSequence, DripStep  # noqa: F401
from dripline.models.job import DripJob  # noqa: F401
from dripline.services.catalog_service import CatalogService
from dripline.services.channels import ChannelConfig, EmailIdentity, SmsIdentity
from dripline.services.job_store import JobStore
from dripline.services.materializer import JobMaterializer
from dripline.services.rendering import DealContext


TENANT_ID = "tenant-1"
DEAL_ID = "deal-1"
PIPELINE_ID = "sales"
T0 = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)

EMAIL_IDENTITY = EmailIdentity(from_address="crew@paintpros.example", server_token="pm-token")
SMS_IDENTITY = SmsIdentity(account_sid="AC123", auth_token="secret", from_number="+15550001111")


class FakeDealContexts:
    """In-memory DealContextProvider."""

    def __init__(self):
        self.contexts: dict[tuple[str, str], DealContext] = {}

    def add(self, deal_id: str, tenant_id: str = TENANT_ID, **fields) -> DealContext:
        fields.setdefault("email", "jane@example.com")
        fields.setdefault("phone", "(555) 123-4567")
        fields.setdefault("variables", {"first-name": "Jane", "company-name": "Paint Pros"})
        context = DealContext(tenant_id=tenant_id, deal_id=deal_id, **fields)
        self.contexts[(tenant_id, deal_id)] = context
        return context

    async def get_deal_context(self, tenant_id: str, deal_id: str) -> DealContext | None:
        return self.contexts.get((tenant_id, deal_id))


class FakeChannelConfigs:
    """In-memory ChannelConfigProvider that counts lookups."""

    def __init__(self, config: ChannelConfig | None = None):
        self.config = config or ChannelConfig(email_identity=EMAIL_IDENTITY, sms_identity=SMS_IDENTITY)
        self.calls = 0

    async def get_channel_config(self, tenant_id: str) -> ChannelConfig:
        self.calls += 1
        return self.config


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'drips.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def deal_contexts():
    contexts = FakeDealContexts()
    contexts.add(DEAL_ID)
    return contexts


@pytest.fixture
def channel_configs():
    return FakeChannelConfigs()


@pytest.fixture
def job_store(db):
    return JobStore(db)


@pytest.fixture
def materializer(db, deal_contexts, job_store):
    return JobMaterializer(db, deal_contexts, job_store=job_store)


@pytest.fixture
def email_sender():
    sender = AsyncMock()
    sender.send_email.return_value = "pm-message-1"
    return sender


@pytest.fixture
def sms_sender():
    sender = AsyncMock()
    sender.send_sms.return_value = "SM-1"
    return sender


@pytest_asyncio.fixture
async def cold_leads(db):
    """Enabled 'cold_leads' sequence: immediate email, then an SMS two days later."""
    catalog = CatalogService(db)
    sequence = await catalog.create_sequence(TENANT_ID, PIPELINE_ID, "cold_leads", "Cold leads", is_enabled=True)
    await catalog.add_step(
        sequence.id,
        delay_type="immediate",
        delay_value=0,
        delay_unit="minutes",
        channel="email",
        email_subject="Hi {first-name}",
        email_body="Thanks for contacting {company-name}.",
    )
    return await catalog.add_step(
        sequence.id,
        delay_type="after",
        delay_value=2,
        delay_unit="days",
        channel="sms",
        sms_body="{{ first_name }}, still keen on an estimate?",
    )
