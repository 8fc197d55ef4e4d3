"""Callbacks fired with the assertion result before a payment is saved."""

import logging
from typing import Callable, List

from .connectors.base import AssertResponse
from .database.models import Order, Payment

logger = logging.getLogger(__name__)

AssertResultHook = Callable[[AssertResponse, Order, Payment], None]

# Key of the gateway's sub-record in the order data bag.
ORDER_DATA_KEY = "saferpay"


class AssertResultHooks:
    """Ordered list of assert-result callbacks.

    Callbacks may read extra fields of the assertion or store them on the
    order or payment. A failing callback is logged and skipped; it never
    prevents the payment from being saved.
    """

    def __init__(self, hooks: List[AssertResultHook] = None):
        self._hooks: List[AssertResultHook] = list(hooks or [])

    def __len__(self) -> int:
        return len(self._hooks)

    def register(self, hook: AssertResultHook) -> AssertResultHook:
        self._hooks.append(hook)
        return hook

    def invoke(self, assert_result: AssertResponse, order: Order, payment: Payment) -> None:
        for hook in self._hooks:
            try:
                hook(assert_result, order, payment)
            except Exception:
                logger.exception(
                    f"Assert result hook {getattr(hook, '__name__', hook)!r} "
                    f"failed for order {order.id}"
                )


def remember_registered_alias(assert_result: AssertResponse, order: Order, payment: Payment) -> None:
    """Keep the alias registered during the payment on the order's data bag."""
    alias_id = assert_result.alias_id
    if not alias_id:
        return
    order_data = order.get_data(ORDER_DATA_KEY, {})
    order_data["alias_id"] = alias_id
    order.set_data(ORDER_DATA_KEY, order_data)
