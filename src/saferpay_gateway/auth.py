"""Access control for the gateway routes.

The notification route is called by Saferpay without credentials, so it is
only rate limited. Starting a checkout is a merchant action and needs the
shop's bearer key from ``GATEWAY_API_KEY``.
"""

import logging
import os
import secrets
from typing import Optional

from fastapi import HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from slowapi import Limiter
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)

GATEWAY_API_KEY_ENV = "GATEWAY_API_KEY"

# Saferpay may retry a notification, but never at this rate
NOTIFY_RATE_LIMIT = os.getenv("SAFERPAY_NOTIFY_RATE_LIMIT", "120/minute")

merchant_bearer = HTTPBearer(description="Shop API key for starting payment page sessions")

limiter = Limiter(key_func=get_remote_address)


def _merchant_key() -> Optional[str]:
    return os.getenv(GATEWAY_API_KEY_ENV) or None


async def verify_api_key(credentials: HTTPAuthorizationCredentials = Security(merchant_bearer)) -> str:
    """Check the shop's bearer key before a checkout is started.

    Raises:
        HTTPException: 500 when no key is configured, 401 on a wrong key.
    """
    merchant_key = _merchant_key()
    if merchant_key is None:
        logger.error(f"{GATEWAY_API_KEY_ENV} is not set, refusing checkout requests")
        raise HTTPException(status_code=500, detail="Checkout is not configured")
    if not secrets.compare_digest(credentials.credentials, merchant_key):
        logger.warning("Checkout request with an invalid API key")
        raise HTTPException(status_code=401, detail="Invalid API key")
    return credentials.credentials
