import logging
from typing import Any, Dict, Optional, Type, TypeVar

import httpx
from pydantic import ValidationError

from ..config import GatewayConfig
from .base import (
    API_URL_LIVE,
    API_URL_TEST,
    ASSERT_PATH,
    CAPTURE_PATH,
    INITIALIZE_PATH,
    AssertResponse,
    CaptureResponse,
    ErrorResponse,
    InitializeResponse,
    ProviderError,
    ProviderModel,
    RequestHeader,
    dump_payload,
)

logger = logging.getLogger(__name__)

ResponseT = TypeVar("ResponseT", bound=ProviderModel)

REQUEST_HEADERS = {
    "Content-Type": "application/json; charset=utf-8",
    "Accept": "application/json",
}


class SaferpayClient:
    """
    Client for the Saferpay JSON API. Every call is a POST carrying the
    request header block and HTTP basic credentials; failures surface as
    ProviderError. The client never retries, so RetryIndicator is always 0.
    """

    def __init__(self, config: GatewayConfig, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def base_url(self) -> str:
        return API_URL_LIVE if self.config.is_live else API_URL_TEST

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.config.request_timeout)
        return self._http_client

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def post(self, path: str, request_id: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send a request and return the decoded JSON response.

        Args:
            path: API path, e.g. ``/Payment/v1/Transaction/Capture``.
            request_id: Identifier of this set of transactions.
            payload: Call specific request data.

        Raises:
            ProviderError: On transport failure or an unsuccessful HTTP status.
        """
        data = dict(payload or {})
        data["RequestHeader"] = dump_payload(RequestHeader(
            customer_id=self.config.customer_id,
            request_id=request_id,
        ))

        try:
            response = await self.http_client.post(
                self.base_url + path,
                json=data,
                headers=REQUEST_HEADERS,
                auth=(self.config.username, self.config.password),
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderError(self._error_messages(e, e.response)) from e
        except httpx.HTTPError as e:
            raise ProviderError(self._error_messages(e, None)) from e

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError([f"Exception: Invalid JSON response from {path}: {e}."]) from e

    @staticmethod
    def _error_messages(error: Exception, response: Optional[httpx.Response]) -> list:
        # See https://saferpay.github.io/jsonapi/#errorhandling
        messages = [f"Exception: {error}."]
        if response is None or not response.content:
            return messages
        try:
            body = ErrorResponse.model_validate(response.json())
        except (ValueError, ValidationError):
            return messages
        messages.append(f"Error name: {body.error_name}")
        messages.append(f"Error message: {body.error_message}")
        return messages

    async def _call(self, path: str, request_id: str, payload: Dict[str, Any], schema: Type[ResponseT]) -> ResponseT:
        data = await self.post(path, request_id, payload)
        try:
            return schema.model_validate(data)
        except ValidationError as e:
            raise ProviderError([f"Exception: Unexpected response from {path}: {e}."]) from e

    async def initialize(self, request_id: str, payload: Dict[str, Any]) -> InitializeResponse:
        result = await self._call(INITIALIZE_PATH, request_id, payload, InitializeResponse)
        if self.config.debug:
            logger.info(
                f"PaymentPage initialized. Request id: {request_id}. "
                f"Token: {result.token}. Expires: {result.expiration.isoformat()}."
            )
        return result

    async def assert_payment(self, request_id: str, token: str) -> AssertResponse:
        result = await self._call(ASSERT_PATH, request_id, {"Token": token}, AssertResponse)
        if self.config.debug:
            logger.info(
                f"PaymentPage assert call finished. Request id: {request_id}. "
                f"Status: {result.transaction.status}. Transaction id: {result.transaction.id}."
            )
        return result

    async def capture(self, request_id: str, transaction_id: str) -> CaptureResponse:
        payload = {"TransactionReference": {"TransactionId": transaction_id}}
        result = await self._call(CAPTURE_PATH, request_id, payload, CaptureResponse)
        if self.config.debug:
            logger.info(
                f"Transaction capture call finished. Request id: {request_id}. "
                f"Transaction id: {transaction_id}. Status: {result.status}."
            )
        return result
