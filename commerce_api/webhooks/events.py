"""Provider event envelope and the closed set of event kinds we reconcile."""

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from commerce_api.core.exceptions import MalformedEventError


class EventKind(str, Enum):
    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
    CHARGE_REFUNDED = "charge.refunded"
    UNHANDLED = "unhandled"

    @classmethod
    def from_type(cls, event_type: str) -> "EventKind":
        """Map a provider event type to a kind; unknown types are UNHANDLED."""
        try:
            kind = cls(event_type)
        except ValueError:
            return cls.UNHANDLED
        return kind


class EventData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    object_: dict[str, Any] = Field(alias="object")


class ProviderEvent(BaseModel):
    """Minimal shape every provider event must have before admission."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    type: str = Field(min_length=1)
    livemode: bool = False
    data: EventData

    # Full parsed document, stored verbatim in the admission log
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)

    @property
    def kind(self) -> EventKind:
        return EventKind.from_type(self.type)

    @property
    def data_object(self) -> dict[str, Any]:
        return self.data.object_


def parse_event(body: bytes) -> ProviderEvent:
    """Parse a verified webhook body into a ProviderEvent.

    Raises:
        MalformedEventError: body is not a JSON object, or lacks id, type,
            or a nested data.object mapping.
    """
    try:
        document = json.loads(body)
    except (UnicodeDecodeError, ValueError):
        raise MalformedEventError("Invalid JSON body")

    if not isinstance(document, dict):
        raise MalformedEventError("Event payload must be a JSON object")

    event_id = document.get("id") if isinstance(document.get("id"), str) else None
    try:
        event = ProviderEvent.model_validate(document)
    except ValidationError as exc:
        missing = sorted({".".join(str(part) for part in err["loc"]) for err in exc.errors()})
        raise MalformedEventError(f"Invalid event structure: {', '.join(missing)}", event_id=event_id)

    event.raw = document
    return event
