"""Payment reconciliation: turns a Saferpay assertion into a local payment."""

import enum
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import GatewayConfig
from .connectors.base import STATUS_AUTHORIZED, STATUS_CAPTURED, AssertResponse, CaptureResponse
from .connectors.saferpay import SaferpayClient
from .database import (
    Order,
    OrderRepository,
    Payment,
    PaymentRepository,
    PaymentState,
    utcnow,
)
from .hooks import ORDER_DATA_KEY, AssertResultHooks

logger = logging.getLogger(__name__)


class ReconciliationState(str, enum.Enum):
    """Steps of a single reconciliation attempt."""
    UNSTARTED = "unstarted"
    ASSERTING = "asserting"
    ASSERTED_AUTHORIZED = "asserted_authorized"
    ASSERTED_OTHER = "asserted_other"
    CAPTURING = "capturing"
    CAPTURED = "captured"
    CAPTURE_FAILED = "capture_failed"
    PERSISTED = "persisted"
    REJECTED = "rejected"


class RejectionReason(str, enum.Enum):
    ALREADY_PROCESSED = "already_processed"
    NOT_AUTHORIZED = "not_authorized"
    CAPTURE_FAILED = "capture_failed"
    NO_SESSION = "no_session"


@dataclass
class ReconciliationResult:
    """Outcome of reconcile(): a saved payment or a rejection."""
    state: ReconciliationState
    payment: Optional[Payment] = None
    reason: Optional[RejectionReason] = None
    remote_status: Optional[str] = None
    transaction_id: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.state == ReconciliationState.PERSISTED


class ReconciliationService:
    """
    Reconciles the outcome of a payment page session for one order.

    Callers must hold the order's reconciliation lock for the whole call:
    the duplicate check and the payment creation are only atomic under it.
    Provider errors propagate; business rejections are returned.
    """

    def __init__(
        self,
        session: AsyncSession,
        config: GatewayConfig,
        client: SaferpayClient,
        hooks: Optional[AssertResultHooks] = None,
    ):
        self.session = session
        self.config = config
        self.client = client
        self.hooks = hooks or AssertResultHooks()
        self.order_repo = OrderRepository(session)
        self.payment_repo = PaymentRepository(session)
        self.state = ReconciliationState.UNSTARTED

    async def reconcile(self, order: Order) -> ReconciliationResult:
        """Assert the payment page result and record the payment.

        Args:
            order: The order the payment page session was opened for.

        Returns:
            ReconciliationResult with the saved payment, or a rejection.

        Raises:
            ProviderError: If an API call to Saferpay fails.
        """
        self.state = ReconciliationState.UNSTARTED

        existing = await self.payment_repo.find_by(self.config.gateway_id, order.id)
        if existing:
            # TODO: support partial payments once orders can be paid in parts.
            logger.info(f"Ignoring attempt to pay the already paid order {order.id}.")
            return self._reject(order, RejectionReason.ALREADY_PROCESSED)

        if not order.get_data(ORDER_DATA_KEY, {}).get("token"):
            logger.warning(f"Order {order.id} has no payment page token, checkout was never started.")
            return self._reject(order, RejectionReason.NO_SESSION)

        self._transition(order, ReconciliationState.ASSERTING)
        assert_result = await self.assert_payment(order)
        transaction = assert_result.transaction

        if transaction.status != STATUS_AUTHORIZED:
            self._transition(order, ReconciliationState.ASSERTED_OTHER)
            logger.warning(
                f"Payment asserting for order {order.id} failed. Saferpay status was "
                f"{transaction.status}. Saferpay transaction id was {transaction.id}."
            )
            return self._reject(
                order, RejectionReason.NOT_AUTHORIZED, transaction.status, transaction.id
            )
        self._transition(order, ReconciliationState.ASSERTED_AUTHORIZED)

        payment = self.payment_repo.create(
            state=PaymentState.AUTHORIZATION.value,
            amount=order.total_amount,
            currency=order.currency,
            payment_gateway=self.config.gateway_id,
            order_id=order.id,
            test=not self.config.is_live,
            remote_id=transaction.id,
            remote_state=transaction.status,
            authorized_at=utcnow(),
        )

        if self.config.autocomplete:
            self._transition(order, ReconciliationState.CAPTURING)
            capture_result = await self.capture(order)
            if capture_result.status != STATUS_CAPTURED:
                # The remote authorization stays open; settling it is a back-office task.
                self._transition(order, ReconciliationState.CAPTURE_FAILED)
                logger.warning(
                    f"Payment capture for order {order.id} failed. Saferpay status was "
                    f"{capture_result.status}."
                )
                return self._reject(
                    order, RejectionReason.CAPTURE_FAILED, capture_result.status, transaction.id
                )
            self._transition(order, ReconciliationState.CAPTURED)
            payment.remote_state = capture_result.status
            payment.state = PaymentState.COMPLETED.value
            payment.completed_at = utcnow()

        self.hooks.invoke(assert_result, order, payment)

        try:
            await self.payment_repo.save(payment)
            if payment.state == PaymentState.COMPLETED.value:
                await self.order_repo.add_payment(order, payment.amount)
            else:
                await self.order_repo.save(order)
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            await self.session.refresh(order)
            logger.error(
                f"A payment for order {order.id} was recorded by a concurrent run. "
                f"Saferpay transaction {transaction.id} needs to be checked by hand."
            )
            return self._reject(
                order, RejectionReason.ALREADY_PROCESSED, payment.remote_state, transaction.id
            )
        self._transition(order, ReconciliationState.PERSISTED)

        logger.info(
            f"Recorded {payment.state} payment {payment.id} for order {order.id}. "
            f"Saferpay transaction id was {transaction.id}."
        )
        return ReconciliationResult(
            state=self.state,
            payment=payment,
            remote_status=payment.remote_state,
            transaction_id=transaction.id,
        )

    def _transition(self, order: Order, state: ReconciliationState) -> None:
        logger.debug(f"Order {order.id}: {self.state.value} -> {state.value}")
        self.state = state

    def _reject(
        self,
        order: Order,
        reason: RejectionReason,
        remote_status: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> ReconciliationResult:
        self._transition(order, ReconciliationState.REJECTED)
        return ReconciliationResult(
            state=self.state,
            reason=reason,
            remote_status=remote_status,
            transaction_id=transaction_id,
        )

    async def assert_payment(self, order: Order) -> AssertResponse:
        """Assert the payment page token stored on the order.

        The transaction id is committed on the order right away, before the
        status is known.
        """
        order_data = order.get_data(ORDER_DATA_KEY, {})
        token = order_data.get("token")
        if not token:
            raise ValueError(f"Order {order.id} has no payment page token")

        assert_result = await self.client.assert_payment(order.uuid, token)

        order_data["transaction_id"] = assert_result.transaction.id
        order.set_data(ORDER_DATA_KEY, order_data)
        await self.order_repo.save(order)
        await self.session.commit()
        return assert_result

    async def capture(self, order: Order) -> CaptureResponse:
        order_data = order.get_data(ORDER_DATA_KEY, {})
        return await self.client.capture(order.uuid, order_data["transaction_id"])
