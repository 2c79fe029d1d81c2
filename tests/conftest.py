import os
import tempfile

# Settings are read at import time; point them at a throwaway SQLite file
_DB_DIR = tempfile.mkdtemp(prefix="tickerpilot-tests-")
TEST_DATABASE_URL = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"

os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["PADDLE_WEBHOOK_SECRET"] = "pdl_ntfset_test_secret"
os.environ["PADDLE_ENFORCE_TIMESTAMP"] = "true"
os.environ["APP_ENV"] = "test"
os.environ["USE_ARQ_WORKER"] = "false"
os.environ["ADMIN_API_ENABLED"] = "true"
os.environ["ADMIN_KEY"] = "test-admin-key"

from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from tickerpilot.api.deps import get_provider
from tickerpilot.core.errors import ProviderTransientError
from tickerpilot.db.base import Base, import_models
from tickerpilot.db.session import get_async_db
from tickerpilot.main import app
from tickerpilot.models.package import BillingCycle, Package
from tickerpilot.models.user import User

import_models()


class FakePaddle:
    """In-memory stand-in for PaddleClient."""

    def __init__(self):
        self.customers: dict[str, dict] = {}
        self.cancelled: list[str] = []
        self.customer_lookups: list[str] = []
        self.unavailable = False

    def get_customer(self, customer_id):
        self.customer_lookups.append(customer_id)
        if self.unavailable:
            raise ProviderTransientError("paddle down")
        return self.customers.get(customer_id)

    def cancel_subscription(self, subscription_id, effective_from="next_billing_period"):
        if self.unavailable:
            raise ProviderTransientError("paddle down")
        self.cancelled.append(subscription_id)
        return {"id": subscription_id, "status": "active", "scheduled_change": {"action": "cancel"}}


@pytest.fixture
async def engine():
    eng = create_async_engine(TEST_DATABASE_URL, poolclass=NullPool)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def packages(session_factory):
    async with session_factory() as db:
        basic = Package(
            name="Basic",
            price=Decimal("0.00"),
            billing_cycle=BillingCycle.monthly.value,
            is_premium=False,
            max_watchlists=1,
            max_stocks_per_watchlist=10,
            max_chart_layouts=5,
        )
        pro = Package(
            name="Pro Monthly",
            paddle_product_id="pri_pro_monthly",
            price=Decimal("9.99"),
            billing_cycle=BillingCycle.monthly.value,
            is_premium=True,
            max_watchlists=20,
            max_stocks_per_watchlist=100,
            max_chart_layouts=50,
        )
        pro_yearly = Package(
            name="Pro Yearly",
            paddle_product_id="pri_pro_yearly",
            price=Decimal("99.00"),
            billing_cycle=BillingCycle.yearly.value,
            is_premium=True,
            max_watchlists=20,
            max_stocks_per_watchlist=100,
            max_chart_layouts=50,
        )
        db.add_all([basic, pro, pro_yearly])
        await db.commit()
        return {"basic": basic, "pro": pro, "pro_yearly": pro_yearly}


@pytest.fixture
async def user(session_factory):
    async with session_factory() as db:
        u = User(email="trader@example.com", name="Test Trader")
        db.add(u)
        await db.commit()
        return u


@pytest.fixture
def provider():
    return FakePaddle()


@pytest.fixture
async def client(session_factory, provider):
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = _get_db
    app.dependency_overrides[get_provider] = lambda: provider

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
