"""Pydantic schemas for checkout session creation."""

from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    quantity: int = Field(default=1, ge=1, le=10)
    success_url: str | None = None
    cancel_url: str | None = None
    customer_email: str | None = None
    client_reference_id: str | None = None
    product_sku: str | None = None
    plugin_version: str | None = None

    @field_validator("quantity", mode="before")
    @classmethod
    def _default_quantity(cls, value):
        return 1 if value is None else value

    @field_validator("success_url", "cancel_url")
    @classmethod
    def _http_url(cls, value: str | None) -> str | None:
        if not value:
            return None
        if not _is_http_url(value):
            raise ValueError("must be a valid http/https URL")
        return value

    @field_validator("customer_email")
    @classmethod
    def _email(cls, value: str | None) -> str | None:
        if value and "@" not in value:
            raise ValueError("must be a valid email address")
        return value or None


class CheckoutResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    provider: str  # "mock" | "stripe"
    checkout_session_id: str
    checkout_url: str
    client_reference_id: str
    metadata: dict[str, str]
