"""Gateway configuration."""

import os
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_GATEWAY_ID = "saferpay_paymentpage"

# Language codes accepted by the payment page.
SAFERPAY_LANGUAGES = frozenset([
    "de", "en", "fr", "da", "cs", "es", "hr", "it", "hu", "nl", "no", "pl",
    "pt", "ru", "ro", "sk", "sl", "fi", "sv", "tr", "el", "ja", "zh",
])

# Payment method identifiers mapped to their display labels.
SAFERPAY_PAYMENT_METHODS = {
    "ALIPAY": "Alipay",
    "AMEX": "American Express",
    "BANCONTACT": "Bancontact",
    "BONUS": "Bonus Card",
    "DINERS": "Diners Club",
    "DIRECTDEBIT": "BillPay Direct Debit",
    "EPRZELEWY": "ePrzelewy",
    "EPS": "eps",
    "GIROPAY": "giropay",
    "IDEAL": "iDEAL",
    "INVOICE": "Invoice",
    "JCB": "JCB",
    "MAESTRO": "Maestro Int.",
    "MASTERCARD": "Mastercard",
    "MYONE": "MyOne",
    "PAYPAL": "PayPal",
    "PAYDIREKT": "paydirekt",
    "POSTCARD": "Postfinance Card",
    "POSTFINANCE": "Postfinance eFinance",
    "SAFERPAYTEST": "Saferpay Test",
    "SOFORT": "SOFORT",
    "TWINT": "TWINT",
    "UNIONPAY": "Unionpay",
    "VISA": "VISA",
    "VPAY": "VPay",
}


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class GatewayConfig(BaseModel):
    """Settings of one Saferpay payment page gateway."""

    gateway_id: str = DEFAULT_GATEWAY_ID
    mode: Literal["test", "live"] = "test"
    customer_id: str
    terminal_id: str
    username: str
    password: str
    order_identifier: str = "{order_id}"
    order_description: str = "Order {order_id}"
    autocomplete: bool = True
    debug: bool = False
    request_alias: bool = False
    payment_methods: List[str] = Field(default_factory=list)
    notify_base_url: str = "http://localhost:8000"
    request_timeout: float = Field(30.0, gt=0)
    # Lease of the reconciliation lock; renewed every third of it while held
    lock_timeout: float = Field(30.0, gt=0)
    return_wait_timeout: float = Field(30.0, ge=0)

    @field_validator("payment_methods")
    @classmethod
    def validate_payment_methods(cls, value: List[str]) -> List[str]:
        methods = [m.strip().upper() for m in value if m and m.strip()]
        unknown = sorted(set(methods) - set(SAFERPAY_PAYMENT_METHODS))
        if unknown:
            raise ValueError(f"Unknown payment methods: {', '.join(unknown)}")
        # Keep the configured order, drop duplicates.
        return list(dict.fromkeys(methods))

    @property
    def is_live(self) -> bool:
        return self.mode == "live"

    @classmethod
    def from_env(cls, gateway_id: Optional[str] = None) -> "GatewayConfig":
        """Build the configuration from ``SAFERPAY_*`` environment variables.

        Raises:
            pydantic.ValidationError: If a required setting is missing or invalid.
        """
        values = {
            "gateway_id": gateway_id or os.getenv("SAFERPAY_GATEWAY_ID", DEFAULT_GATEWAY_ID),
            "mode": os.getenv("SAFERPAY_MODE", "test"),
            "customer_id": os.getenv("SAFERPAY_CUSTOMER_ID"),
            "terminal_id": os.getenv("SAFERPAY_TERMINAL_ID"),
            "username": os.getenv("SAFERPAY_USERNAME"),
            "password": os.getenv("SAFERPAY_PASSWORD"),
            "autocomplete": _env_bool("SAFERPAY_AUTOCOMPLETE", True),
            "debug": _env_bool("SAFERPAY_DEBUG", False),
            "request_alias": _env_bool("SAFERPAY_REQUEST_ALIAS", False),
            "payment_methods": os.getenv("SAFERPAY_PAYMENT_METHODS", "").split(","),
        }
        optional = {
            "order_identifier": "SAFERPAY_ORDER_IDENTIFIER",
            "order_description": "SAFERPAY_ORDER_DESCRIPTION",
            "notify_base_url": "SAFERPAY_NOTIFY_BASE_URL",
            "request_timeout": "SAFERPAY_REQUEST_TIMEOUT",
            "lock_timeout": "SAFERPAY_LOCK_TIMEOUT",
            "return_wait_timeout": "SAFERPAY_RETURN_WAIT_TIMEOUT",
        }
        for field, key in optional.items():
            value = os.getenv(key)
            if value:
                values[field] = value
        return cls(**values)
