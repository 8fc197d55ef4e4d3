"""Repository layer for order and payment persistence operations."""

import logging
from decimal import Decimal
from typing import Optional, Dict, Any, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Order, Payment

logger = logging.getLogger(__name__)


class OrderRepository:
    """Repository for Order lookups and updates."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def create(
        self,
        total_amount: Decimal,
        currency: str,
        email: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Order:
        """Create a new order record.

        Args:
            total_amount: Order total in major units.
            currency: Three-letter currency code.
            email: Optional customer email.
            data: Optional initial data bag.

        Returns:
            Created Order instance.
        """
        order = Order(currency=currency.upper(), email=email)
        order.total_amount = total_amount
        if data:
            order.data = data

        self.session.add(order)
        await self.session.flush()

        logger.info(f"Created order {order.id} ({order.uuid})")
        return order

    async def find_by_uuid(self, order_uuid: str) -> List[Order]:
        """Find orders by their stable unique identifier.

        Args:
            order_uuid: The order UUID.

        Returns:
            List of matching Order instances (empty or one element).
        """
        result = await self.session.execute(
            select(Order).where(Order.uuid == order_uuid)
        )
        return list(result.scalars().all())

    async def get_by_uuid(self, order_uuid: str) -> Optional[Order]:
        orders = await self.find_by_uuid(order_uuid)
        return orders[0] if len(orders) == 1 else None

    async def save(self, order: Order) -> Order:
        self.session.add(order)
        await self.session.flush()
        return order

    async def add_payment(self, order: Order, amount: Decimal) -> Order:
        """Add a completed payment amount to the order's paid total."""
        order.total_paid = order.total_paid + amount
        return await self.save(order)


class PaymentRepository:
    """Repository for Payment queries and creation."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by(self, payment_gateway: str, order_id: int) -> List[Payment]:
        """Find payments recorded by a gateway for an order.

        Args:
            payment_gateway: Gateway identifier.
            order_id: Internal order id.

        Returns:
            List of Payment instances.
        """
        result = await self.session.execute(
            select(Payment).where(
                Payment.payment_gateway == payment_gateway,
                Payment.order_id == order_id,
            )
        )
        return list(result.scalars().all())

    def create(self, **values: Any) -> Payment:
        """Build an unsaved payment; nothing is written until save()."""
        return Payment(**values)

    async def save(self, payment: Payment) -> Payment:
        self.session.add(payment)
        await self.session.flush()
        logger.info(
            f"Saved payment {payment.id} for order {payment.order_id} "
            f"with state {payment.state}"
        )
        return payment
