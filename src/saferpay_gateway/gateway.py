"""Entry points of the payment page flow: browser return and notification."""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .config import GatewayConfig
from .connectors.saferpay import SaferpayClient
from .database import Order, OrderRepository
from .hooks import AssertResultHooks, remember_registered_alias
from .locking import LockManager, reconcile_lock_name
from .services import ReconciliationService

logger = logging.getLogger(__name__)


@dataclass
class NotifyResponse:
    """Plain-text answer sent back to the provider."""
    status_code: int
    message: str


class SaferpayGateway:
    """
    Saferpay payment page gateway.

    The notification request reconciles the payment while holding the
    order's lock; duplicate notifications that find the lock taken return
    OK without doing anything. The browser return only waits for a running
    reconciliation to finish.
    """

    def __init__(
        self,
        config: GatewayConfig,
        client: SaferpayClient,
        lock_manager: LockManager,
        hooks: Optional[AssertResultHooks] = None,
    ):
        self.config = config
        self.client = client
        self.lock_manager = lock_manager
        self.hooks = hooks if hooks is not None else AssertResultHooks()
        if config.request_alias:
            self.hooks.register(remember_registered_alias)

    @property
    def gateway_id(self) -> str:
        return self.config.gateway_id

    def reconciliation_service(self, session: AsyncSession) -> ReconciliationService:
        return ReconciliationService(session, self.config, self.client, self.hooks)

    async def on_return(self, order: Order, timeout: Optional[float] = None) -> bool:
        """Wait while a notification is reconciling the order.

        Returns:
            False if the wait expired and the payment is still being processed.
        """
        lock_name = reconcile_lock_name(order.uuid)
        if await self.lock_manager.lock_may_be_available(lock_name):
            return True
        wait = self.config.return_wait_timeout if timeout is None else timeout
        available = await self.lock_manager.wait_until_available(lock_name, wait)
        if not available:
            logger.info(f"Payment for order {order.id} is still being processed.")
        return available

    async def on_notify(self, session: AsyncSession, order_uuid: Optional[str]) -> NotifyResponse:
        """Handle the server-to-server notification for an order.

        Args:
            session: Database session of the request.
            order_uuid: Value of the ``order`` query parameter.

        Returns:
            NotifyResponse with the HTTP status and plain-text body.

        Raises:
            ProviderError: If an API call to Saferpay fails.
        """
        if not order_uuid:
            return NotifyResponse(400, "Missing order query parameter.")

        orders = await OrderRepository(session).find_by_uuid(order_uuid)
        if len(orders) != 1:
            return NotifyResponse(400, "Invalid order id.")
        order = orders[0]

        lock_name = reconcile_lock_name(order.uuid)
        token = await self.lock_manager.try_acquire(lock_name)
        if token is None:
            logger.info(f"Notification for order {order.id} is already being processed.")
            return NotifyResponse(200, "OK")

        try:
            async with self.lock_manager.keep_alive(lock_name, token):
                result = await self.reconciliation_service(session).reconcile(order)
        finally:
            await self.lock_manager.release(lock_name, token)

        if not result.accepted:
            return NotifyResponse(400, "Error while processing payment.")
        return NotifyResponse(200, "OK")
