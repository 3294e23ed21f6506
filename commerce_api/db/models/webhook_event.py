"""WebhookEventRecord model: one row per provider event ever admitted."""

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import JSON, Boolean, Column, DateTime, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from commerce_api.db.base import Base


class ProcessingStatus(str, Enum):
    """Admission log lifecycle. Everything but RECEIVED is terminal."""

    RECEIVED = "received"
    PROCESSED = "processed"
    IGNORED = "ignored"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ProcessingStatus.RECEIVED


class WebhookEventRecord(Base):
    """Admission log entry. The primary key on event_id is the idempotency guard."""

    __tablename__ = "webhook_events"

    event_id = Column(String(255), primary_key=True)
    event_type = Column(String(255), nullable=False, index=True)
    livemode = Column(Boolean, nullable=False, default=False)
    received_payload = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False)

    processing_status = Column(String(20), nullable=False, default=ProcessingStatus.RECEIVED.value)
    processing_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )
    processed_at = Column(DateTime(timezone=True), nullable=True)  # set on the terminal transition only
