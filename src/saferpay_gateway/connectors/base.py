from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Saferpay JSON API version sent with every request.
SPEC_VERSION = "1.10"

API_URL_LIVE = "https://www.saferpay.com/api"
API_URL_TEST = "https://test.saferpay.com/api"

INITIALIZE_PATH = "/Payment/v1/PaymentPage/Initialize"
ASSERT_PATH = "/Payment/v1/PaymentPage/Assert"
CAPTURE_PATH = "/Payment/v1/Transaction/Capture"

# Transaction states reported by the provider.
STATUS_AUTHORIZED = "AUTHORIZED"
STATUS_CAPTURED = "CAPTURED"


class ProviderError(Exception):
    """Transport or provider failure of a Saferpay API call.

    ``messages`` holds the individual parts (transport exception, provider
    error name and message); ``str()`` joins them.
    """

    def __init__(self, messages: List[str]):
        self.messages = list(messages)
        super().__init__(" / ".join(self.messages))


class ProviderModel(BaseModel):
    """Base for decoded provider payloads; unknown fields are kept."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class RequestHeader(ProviderModel):
    spec_version: str = Field(SPEC_VERSION, alias="SpecVersion")
    customer_id: str = Field(..., alias="CustomerId")
    request_id: str = Field(..., alias="RequestId")
    retry_indicator: int = Field(0, alias="RetryIndicator")


class ErrorResponse(ProviderModel):
    error_name: Optional[str] = Field(None, alias="ErrorName")
    error_message: Optional[str] = Field(None, alias="ErrorMessage")


class InitializeResponse(ProviderModel):
    token: str = Field(..., alias="Token")
    expiration: datetime = Field(..., alias="Expiration")
    redirect_url: str = Field(..., alias="RedirectUrl")


class Transaction(ProviderModel):
    id: str = Field(..., alias="Id")
    status: str = Field(..., alias="Status")


class Alias(ProviderModel):
    id: Optional[str] = Field(None, alias="Id")


class RegistrationResult(ProviderModel):
    success: Optional[bool] = Field(None, alias="Success")
    alias: Optional[Alias] = Field(None, alias="Alias")


class AssertResponse(ProviderModel):
    transaction: Transaction = Field(..., alias="Transaction")
    registration_result: Optional[RegistrationResult] = Field(None, alias="RegistrationResult")

    @property
    def alias_id(self) -> Optional[str]:
        if self.registration_result and self.registration_result.alias:
            return self.registration_result.alias.id
        return None


class CaptureResponse(ProviderModel):
    status: str = Field(..., alias="Status")
    capture_id: Optional[str] = Field(None, alias="CaptureId")


def dump_payload(model: BaseModel) -> Dict[str, Any]:
    """Serialize a provider model with its wire field names."""
    return model.model_dump(by_alias=True, exclude_none=True)
