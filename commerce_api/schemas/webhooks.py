"""Pydantic schemas for webhook acknowledgments and errors."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class WebhookAckResponse(BaseModel):
    """200 body: the event was handled (or had already been handled)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    received: bool = True
    idempotent: bool
    processing_status: str
    detail: str
    event_id: str


class WebhookErrorResponse(BaseModel):
    """400/413/500 body. event_id is null when the payload was never parsed."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    error: str
    detail: str
    event_id: str | None = None
