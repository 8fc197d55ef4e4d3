"""Tests for the notification and browser return entry points."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from saferpay_gateway.connectors.base import AssertResponse, ProviderError
from saferpay_gateway.database import (
    OrderRepository,
    Payment,
    PaymentRepository,
)
from saferpay_gateway.gateway import NotifyResponse, SaferpayGateway
from saferpay_gateway.locking import DatabaseLockBackend, LockManager, reconcile_lock_name


@pytest.fixture
def gateway(gateway_config, mock_client, lock_manager) -> SaferpayGateway:
    return SaferpayGateway(gateway_config, mock_client, lock_manager)


class TestGatewaySetup:
    def test_gateway_id(self, gateway):
        assert gateway.gateway_id == "saferpay_paymentpage"

    def test_alias_hook_registered_when_requested(self, gateway_config, mock_client, lock_manager):
        config = gateway_config.model_copy(update={"request_alias": True})
        gateway = SaferpayGateway(config, mock_client, lock_manager)
        assert len(gateway.hooks) == 1

    def test_no_hooks_by_default(self, gateway):
        assert len(gateway.hooks) == 0


class TestOnNotify:
    """Tests for the server-to-server notification."""

    async def test_success(self, gateway, db_session, order, mock_client):
        response = await gateway.on_notify(db_session, order.uuid)

        assert response == NotifyResponse(200, "OK")
        mock_client.assert_payment.assert_awaited_once()
        payments = await PaymentRepository(db_session).find_by(gateway.gateway_id, order.id)
        assert len(payments) == 1
        assert await gateway.lock_manager.lock_may_be_available(reconcile_lock_name(order.uuid))

    @pytest.mark.parametrize("order_uuid", [None, ""])
    async def test_missing_order_parameter(self, gateway_config, mock_client, db_session, order_uuid):
        lock_manager = AsyncMock()
        gateway = SaferpayGateway(gateway_config, mock_client, lock_manager)

        response = await gateway.on_notify(db_session, order_uuid)

        assert response == NotifyResponse(400, "Missing order query parameter.")
        lock_manager.try_acquire.assert_not_awaited()
        mock_client.assert_payment.assert_not_awaited()

    async def test_unknown_order(self, gateway_config, mock_client, db_session, order):
        lock_manager = AsyncMock()
        gateway = SaferpayGateway(gateway_config, mock_client, lock_manager)

        response = await gateway.on_notify(db_session, "no-such-order")

        assert response == NotifyResponse(400, "Invalid order id.")
        lock_manager.try_acquire.assert_not_awaited()

    async def test_lock_held_returns_ok_without_processing(self, gateway, db_session, order, mock_client, session_factory):
        holder = LockManager(DatabaseLockBackend(session_factory))
        assert await holder.try_acquire(reconcile_lock_name(order.uuid))

        response = await gateway.on_notify(db_session, order.uuid)

        assert response == NotifyResponse(200, "OK")
        mock_client.assert_payment.assert_not_awaited()
        assert await PaymentRepository(db_session).find_by(gateway.gateway_id, order.id) == []

    async def test_replay_is_rejected(self, gateway, db_session, order, mock_client):
        assert (await gateway.on_notify(db_session, order.uuid)).status_code == 200

        response = await gateway.on_notify(db_session, order.uuid)

        assert response == NotifyResponse(400, "Error while processing payment.")
        mock_client.assert_payment.assert_awaited_once()

    async def test_not_authorized(self, gateway, db_session, order, mock_client):
        mock_client.assert_payment.return_value.transaction.status = "PENDING"

        response = await gateway.on_notify(db_session, order.uuid)

        assert response == NotifyResponse(400, "Error while processing payment.")

    async def test_lock_released_on_provider_error(self, gateway, db_session, order, mock_client):
        mock_client.assert_payment.side_effect = ProviderError(["Exception: timeout."])

        with pytest.raises(ProviderError):
            await gateway.on_notify(db_session, order.uuid)

        assert await gateway.lock_manager.lock_may_be_available(reconcile_lock_name(order.uuid))

    async def test_order_without_checkout(self, gateway, db_session, mock_client):
        order = await OrderRepository(db_session).create(total_amount=Decimal("5.00"), currency="CHF")
        await db_session.commit()

        response = await gateway.on_notify(db_session, order.uuid)

        assert response == NotifyResponse(400, "Error while processing payment.")
        mock_client.assert_payment.assert_not_awaited()
        assert await gateway.lock_manager.lock_may_be_available(reconcile_lock_name(order.uuid))

    async def test_alias_stored_on_order(self, gateway_config, mock_client, lock_manager, db_session, order):
        mock_client.assert_payment.return_value = AssertResponse.model_validate({
            "Transaction": {"Id": "tx_1", "Status": "AUTHORIZED"},
            "RegistrationResult": {"Success": True, "Alias": {"Id": "alias_1"}},
        })
        config = gateway_config.model_copy(update={"request_alias": True})
        gateway = SaferpayGateway(config, mock_client, lock_manager)

        await gateway.on_notify(db_session, order.uuid)

        await db_session.refresh(order)
        assert order.get_data("saferpay") == {
            "token": "234uhfh78234hlasdfh8234e",
            "transaction_id": "tx_1",
            "alias_id": "alias_1",
        }


class TestConcurrentNotifications:
    """Duplicate notifications racing on a shared database."""

    @pytest.fixture
    async def order_uuid(self, file_session_factory):
        async with file_session_factory() as session:
            order = await OrderRepository(session).create(
                total_amount=Decimal("19.99"), currency="CHF",
                data={"saferpay": {"token": "234uhfh78234hlasdfh8234e"}},
            )
            await session.commit()
            return order.uuid

    async def test_at_most_one_payment(self, gateway_config, mock_client, authorized_assert_response, file_session_factory, order_uuid):

        entered = asyncio.Event()
        proceed = asyncio.Event()

        async def slow_assert(request_id, token):
            entered.set()
            await proceed.wait()
            return authorized_assert_response

        mock_client.assert_payment.side_effect = slow_assert
        lock_manager = LockManager(
            DatabaseLockBackend(file_session_factory), poll_interval=0.01, max_poll_interval=0.05
        )
        gateway = SaferpayGateway(gateway_config, mock_client, lock_manager)

        async def notify():
            async with file_session_factory() as session:
                return await gateway.on_notify(session, order_uuid)

        first = asyncio.create_task(notify())
        await asyncio.wait_for(entered.wait(), timeout=5)

        # Duplicates arriving while the first one is processing
        duplicates = await asyncio.gather(*(notify() for _ in range(3)))
        assert duplicates == [NotifyResponse(200, "OK")] * 3

        async with file_session_factory() as session:
            order = await OrderRepository(session).get_by_uuid(order_uuid)
            assert await gateway.on_return(order, timeout=0.05) is False

        proceed.set()
        assert await asyncio.wait_for(first, timeout=5) == NotifyResponse(200, "OK")

        # A late replay finds the payment
        assert (await notify()).status_code == 400

        async with file_session_factory() as session:
            count = await session.scalar(select(func.count()).select_from(Payment))
            order = await OrderRepository(session).get_by_uuid(order_uuid)
            assert await gateway.on_return(order, timeout=1) is True
        assert count == 1
        assert order.is_paid
        assert mock_client.assert_payment.await_count == 1
        mock_client.capture.assert_awaited_once()

    async def test_provider_call_outlasting_lock_lease(
        self, gateway_config, mock_client, authorized_assert_response, file_session_factory, order_uuid
    ):
        """A duplicate arriving after the lease length still finds the lock held."""
        async def slow_assert(request_id, token):
            await asyncio.sleep(0.6)
            return authorized_assert_response

        mock_client.assert_payment.side_effect = slow_assert
        lock_manager = LockManager(DatabaseLockBackend(file_session_factory), timeout=0.3)
        gateway = SaferpayGateway(gateway_config, mock_client, lock_manager)

        async def notify(delay=0.0):
            await asyncio.sleep(delay)
            async with file_session_factory() as session:
                return await gateway.on_notify(session, order_uuid)

        results = await asyncio.gather(notify(), notify(0.4))

        assert results == [NotifyResponse(200, "OK")] * 2
        assert mock_client.assert_payment.await_count == 1
        mock_client.capture.assert_awaited_once()
        async with file_session_factory() as session:
            count = await session.scalar(select(func.count()).select_from(Payment))
        assert count == 1
        assert await lock_manager.lock_may_be_available(reconcile_lock_name(order_uuid))


class TestOnReturn:
    """Tests for the browser return wait."""

    async def test_returns_immediately_when_free(self, gateway, order):
        assert await gateway.on_return(order) is True

    async def test_waits_for_running_notification(self, gateway, order, session_factory):
        holder = LockManager(DatabaseLockBackend(session_factory))
        lock_name = reconcile_lock_name(order.uuid)
        token = await holder.try_acquire(lock_name)

        async def finish():
            await asyncio.sleep(0.05)
            await holder.release(lock_name, token)

        task = asyncio.create_task(finish())
        assert await gateway.on_return(order, timeout=5) is True
        await task

    async def test_times_out_with_configured_wait(self, gateway_config, mock_client, lock_manager, order, session_factory, caplog):
        config = gateway_config.model_copy(update={"return_wait_timeout": 0.05})
        gateway = SaferpayGateway(config, mock_client, lock_manager)
        holder = LockManager(DatabaseLockBackend(session_factory))
        await holder.try_acquire(reconcile_lock_name(order.uuid))

        with caplog.at_level("INFO", logger="saferpay_gateway.gateway"):
            assert await gateway.on_return(order) is False

        assert "still being processed" in caplog.text
