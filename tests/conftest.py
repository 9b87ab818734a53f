import os

# Settings are read at import time; pin them before anything imports billing.configs
os.environ.setdefault("BILLING_DATABASE_ENGINE", "sqlite")
os.environ.setdefault("BILLING_DATABASE_SQLITE_PATH", ":memory:")
os.environ.setdefault("BILLING_PAYMENT_PAYME_MERCHANTID", "test-merchant")
os.environ.setdefault("BILLING_PAYMENT_PAYME_SECRETKEY", "test-payme-key")
os.environ.setdefault("BILLING_PAYMENT_CLICK_SERVICEID", "1001")
os.environ.setdefault("BILLING_PAYMENT_CLICK_MERCHANTID", "2002")
os.environ.setdefault("BILLING_PAYMENT_CLICK_SECRETKEY", "test-click-key")
os.environ.setdefault("BILLING_ADMIN_SECRET", "test-admin-secret")
os.environ.setdefault("BILLING_AUDIT_ENABLED", "false")

from typing import AsyncGenerator, Callable  # noqa: E402
from unittest.mock import AsyncMock, patch  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402
from sqlmodel.ext.asyncio.session import AsyncSession  # noqa: E402

import billing.models  # noqa: E402, F401

pytest_plugins = ["tests.fixtures.client", "tests.fixtures.catalog"]


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory SQLite database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def override_get_session(db_session: AsyncSession) -> Callable[[], AsyncGenerator[AsyncSession, None]]:
    async def _override() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    return _override


@pytest.fixture(autouse=True)
def silence_user_events():
    """User notifications go to Redis; keep them out of tests."""
    with patch("billing.core.payment.entitlement.broadcast_user_event", new_callable=AsyncMock) as mock:
        yield mock
