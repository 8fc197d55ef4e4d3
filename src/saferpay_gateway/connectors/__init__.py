"""Saferpay JSON API connector."""

from .base import (
    SPEC_VERSION,
    API_URL_LIVE,
    API_URL_TEST,
    INITIALIZE_PATH,
    ASSERT_PATH,
    CAPTURE_PATH,
    STATUS_AUTHORIZED,
    STATUS_CAPTURED,
    ProviderError,
    RequestHeader,
    ErrorResponse,
    InitializeResponse,
    Transaction,
    Alias,
    RegistrationResult,
    AssertResponse,
    CaptureResponse,
)
from .saferpay import SaferpayClient

__all__ = [
    # Constants
    "SPEC_VERSION",
    "API_URL_LIVE",
    "API_URL_TEST",
    "INITIALIZE_PATH",
    "ASSERT_PATH",
    "CAPTURE_PATH",
    "STATUS_AUTHORIZED",
    "STATUS_CAPTURED",
    # Errors and schemas
    "ProviderError",
    "RequestHeader",
    "ErrorResponse",
    "InitializeResponse",
    "Transaction",
    "Alias",
    "RegistrationResult",
    "AssertResponse",
    "CaptureResponse",
    # Client
    "SaferpayClient",
]
