"""Payment page initialization and the checkout step that stores its token."""

import logging
import string
from typing import Any, Dict, Optional, Protocol

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from .config import SAFERPAY_LANGUAGES, GatewayConfig
from .connectors.base import InitializeResponse
from .connectors.saferpay import SaferpayClient
from .database import Order, OrderRepository
from .hooks import ORDER_DATA_KEY
from .money import to_minor_units

logger = logging.getLogger(__name__)

NOTIFY_PATH = "/payment/notify/{gateway_id}"


class OrderAlreadyPaidError(Exception):
    """Raised when a checkout is started for an order that is already paid."""


class Templater(Protocol):
    def render(self, template: str, order: Order) -> str:
        ...


class _KeepMissing(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


class OrderTemplater:
    """Replaces ``{placeholders}`` in configured texts with order values.

    Available placeholders: ``order_id``, ``order_uuid``, ``total``,
    ``currency``, ``email``. Unknown placeholders are left as they are.
    """

    def tokens(self, order: Order) -> Dict[str, Any]:
        return {
            "order_id": order.id,
            "order_uuid": order.uuid,
            "total": order.total_amount,
            "currency": order.currency,
            "email": order.email or "",
        }

    def render(self, template: str, order: Order) -> str:
        return string.Formatter().vformat(template, (), _KeepMissing(self.tokens(order)))


def build_notify_url(config: GatewayConfig, order: Order) -> str:
    url = httpx.URL(config.notify_base_url.rstrip("/") + NOTIFY_PATH.format(gateway_id=config.gateway_id))
    return str(url.copy_merge_params({"order": order.uuid}))


class SessionInitializer:
    """Builds the Initialize request for an order and sends it."""

    def __init__(
        self,
        config: GatewayConfig,
        client: SaferpayClient,
        templater: Optional[Templater] = None,
    ):
        self.config = config
        self.client = client
        self.templater = templater or OrderTemplater()

    def build_payload(self, order: Order, return_urls: Dict[str, str], langcode: Optional[str] = None) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "TerminalId": self.config.terminal_id,
            "Payment": {
                "Amount": {
                    "Value": to_minor_units(order.total_amount, order.currency),
                    "CurrencyCode": order.currency,
                },
                "OrderId": self.templater.render(self.config.order_identifier, order),
                "Description": self.templater.render(self.config.order_description, order),
            },
            "Notification": {
                "NotifyUrl": build_notify_url(self.config, order),
            },
            "ReturnUrls": dict(return_urls),
        }

        if self.config.request_alias:
            data["RegisterAlias"] = {"IdGenerator": "RANDOM"}

        if langcode in SAFERPAY_LANGUAGES:
            data["Payer"] = {"LanguageCode": langcode}

        if self.config.payment_methods:
            data["PaymentMethods"] = list(self.config.payment_methods)

        return data

    async def initialize(self, order: Order, return_urls: Dict[str, str], langcode: Optional[str] = None) -> InitializeResponse:
        """Open a payment page session for the order.

        Args:
            order: Order to pay.
            return_urls: ``Success``, ``Fail`` and ``Abort`` URLs.
            langcode: Current interface language; sent only if supported.

        Returns:
            The token, redirect URL and expiration of the session.

        Raises:
            ProviderError: If the Initialize call fails.
        """
        payload = self.build_payload(order, return_urls, langcode)
        return await self.client.initialize(order.uuid, payload)


class CheckoutService:
    """Starts the off-site payment and keeps the session token on the order."""

    def __init__(self, session: AsyncSession, initializer: SessionInitializer):
        self.session = session
        self.initializer = initializer
        self.order_repo = OrderRepository(session)

    async def start(
        self,
        order: Order,
        return_url: str,
        cancel_url: str,
        langcode: Optional[str] = None,
    ) -> InitializeResponse:
        if order.is_paid:
            logger.error(f"Order {order.id} was already paid, no need to get back to the redirect form.")
            raise OrderAlreadyPaidError("Attempting to pay an already paid order.")

        return_urls = {
            "Success": return_url,
            "Fail": return_url,
            "Abort": cancel_url,
        }
        result = await self.initializer.initialize(order, return_urls, langcode)

        order.set_data(ORDER_DATA_KEY, {"token": result.token})
        await self.order_repo.save(order)
        await self.session.commit()
        return result
