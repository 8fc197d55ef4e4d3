"""Shared test fixtures and configuration."""

import os
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set up test environment variables before importing modules
os.environ.setdefault("GATEWAY_API_KEY", "test_api_key_12345")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from saferpay_gateway.config import GatewayConfig
from saferpay_gateway.connectors.base import (
    AssertResponse,
    CaptureResponse,
    InitializeResponse,
)
from saferpay_gateway.connectors.saferpay import SaferpayClient
from saferpay_gateway.database import (
    Base,
    OrderRepository,
    create_async_engine,
    get_async_session_factory,
)
from saferpay_gateway.locking import DatabaseLockBackend, LockManager


@pytest.fixture
def gateway_config() -> GatewayConfig:
    """Return a test mode gateway configuration."""
    return GatewayConfig(
        customer_id="245294",
        terminal_id="17925560",
        username="API_245294_08700063",
        password="secret_password",
        order_identifier="{order_id}",
        order_description="Order {order_id} ({total} {currency})",
        autocomplete=True,
        notify_base_url="https://shop.example.com",
    )


@pytest.fixture
def initialize_response() -> InitializeResponse:
    return InitializeResponse.model_validate({
        "ResponseHeader": {"SpecVersion": "1.10", "RequestId": "req"},
        "Token": "234uhfh78234hlasdfh8234e",
        "Expiration": "2026-10-18T14:30:00.000+02:00",
        "RedirectUrl": "https://test.saferpay.com/vt2/api/PaymentPage/245294/17925560/234uhfh78234hlasdfh8234e",
    })


@pytest.fixture
def authorized_assert_response() -> AssertResponse:
    return AssertResponse.model_validate({
        "ResponseHeader": {"SpecVersion": "1.10", "RequestId": "req"},
        "Transaction": {
            "Type": "PAYMENT",
            "Status": "AUTHORIZED",
            "Id": "723n4MAjMdhjSAhAKEUdA8jtl9jb",
            "Amount": {"Value": "1999", "CurrencyCode": "CHF"},
        },
    })


@pytest.fixture
def captured_response() -> CaptureResponse:
    return CaptureResponse.model_validate({
        "ResponseHeader": {"SpecVersion": "1.10", "RequestId": "req"},
        "CaptureId": "723n4MAjMdhjSAhAKEUdA8jtl9jb_c",
        "Status": "CAPTURED",
        "Date": "2026-10-18T12:00:00.000+02:00",
    })


@pytest.fixture
def mock_client(gateway_config, authorized_assert_response, captured_response):
    """Create a Saferpay client mock answering with a successful flow."""
    client = MagicMock(spec=SaferpayClient)
    client.config = gateway_config
    client.assert_payment = AsyncMock(return_value=authorized_assert_response)
    client.capture = AsyncMock(return_value=captured_response)
    client.initialize = AsyncMock()
    client.aclose = AsyncMock()
    return client


# Database fixtures
@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return get_async_session_factory(db_engine)


@pytest.fixture
async def db_session(session_factory):
    """Create a database session for testing."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def order(db_session):
    """Create an order that went through checkout and holds a token."""
    order = await OrderRepository(db_session).create(
        total_amount=Decimal("19.99"),
        currency="CHF",
        email="payer@example.com",
        data={"saferpay": {"token": "234uhfh78234hlasdfh8234e"}},
    )
    await db_session.commit()
    return order


@pytest.fixture
def lock_manager(session_factory) -> LockManager:
    return LockManager(
        DatabaseLockBackend(session_factory),
        timeout=30.0,
        poll_interval=0.01,
        max_poll_interval=0.05,
    )


@pytest.fixture
async def file_session_factory(tmp_path):
    """Session factory on a file database, for tests with concurrent sessions."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'gateway.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield get_async_session_factory(engine)
    await engine.dispose()
