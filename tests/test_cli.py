"""Tests for the back-office command line."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import pytest

from saferpay_gateway import cli
from saferpay_gateway.connectors.base import ProviderError
from saferpay_gateway.gateway import SaferpayGateway
from saferpay_gateway.locking import DatabaseLockBackend, LockManager, reconcile_lock_name


@pytest.fixture
def cli_gateway(monkeypatch, db_session, gateway_config, mock_client, lock_manager):
    """Point the CLI at the test database and a mocked client."""
    for key, value in {
        "SAFERPAY_CUSTOMER_ID": "245294",
        "SAFERPAY_TERMINAL_ID": "17925560",
        "SAFERPAY_USERNAME": "user",
        "SAFERPAY_PASSWORD": "pass",
    }.items():
        monkeypatch.setenv(key, value)

    @asynccontextmanager
    async def db_context():
        yield db_session

    gateway = SaferpayGateway(gateway_config, mock_client, lock_manager)
    monkeypatch.setattr(cli, "init_db", AsyncMock())
    monkeypatch.setattr(cli, "close_db", AsyncMock())
    monkeypatch.setattr(cli, "get_db_context", db_context)
    monkeypatch.setattr(cli, "build_gateway", lambda config: gateway)
    return gateway


class TestReconcileCommand:
    """Tests for the reconcile command."""

    async def test_success(self, cli_gateway, order, capsys):
        exit_code = await cli.reconcile_order_async(order.uuid)

        assert exit_code == cli.EXIT_OK
        assert "Recorded completed payment" in capsys.readouterr().out
        cli_gateway.client.aclose.assert_awaited_once()

    async def test_unknown_order(self, cli_gateway, capsys):
        exit_code = await cli.reconcile_order_async("nope")

        assert exit_code == cli.EXIT_FAILED
        assert "not found" in capsys.readouterr().err

    async def test_rejected(self, cli_gateway, order, capsys):
        cli_gateway.client.assert_payment.return_value.transaction.status = "CANCELED"

        exit_code = await cli.reconcile_order_async(order.uuid)

        assert exit_code == cli.EXIT_FAILED
        assert "not_authorized" in capsys.readouterr().out

    async def test_locked(self, cli_gateway, order, session_factory):
        holder = LockManager(DatabaseLockBackend(session_factory))
        await holder.try_acquire(reconcile_lock_name(order.uuid))

        exit_code = await cli.reconcile_order_async(order.uuid)

        assert exit_code == cli.EXIT_LOCKED
        cli_gateway.client.assert_payment.assert_not_awaited()

    async def test_provider_error(self, cli_gateway, order, capsys):
        cli_gateway.client.assert_payment.side_effect = ProviderError(["Exception: timeout."])

        exit_code = await cli.reconcile_order_async(order.uuid)

        assert exit_code == cli.EXIT_FAILED
        assert "timeout" in capsys.readouterr().err
        assert await cli_gateway.lock_manager.lock_may_be_available(reconcile_lock_name(order.uuid))


class TestMain:
    def test_no_command(self, monkeypatch):
        monkeypatch.setattr("sys.argv", ["saferpay-gateway"])
        assert cli.main() == cli.EXIT_FAILED

    def test_reconcile_requires_order(self, monkeypatch):
        monkeypatch.setattr("sys.argv", ["saferpay-gateway", "reconcile"])
        with pytest.raises(SystemExit):
            cli.main()
