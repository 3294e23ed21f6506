"""Event admission log: durable, uniquely keyed record of every event received."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from commerce_api.db.models.webhook_event import ProcessingStatus, WebhookEventRecord
from commerce_api.db.upsert import insert_if_absent

logger = structlog.get_logger(__name__)


class AdmissionResult(str, Enum):
    INSERTED = "inserted"
    ALREADY_EXISTS = "already_exists"


class EventAdmissionLog:
    """Insert-if-absent admission and terminal status marking.

    Both operations run inside the caller's transaction; nothing here
    commits.
    """

    async def admit(
        self,
        session: AsyncSession,
        event_id: str,
        event_type: str,
        livemode: bool,
        payload: dict[str, Any],
    ) -> AdmissionResult:
        """Record the event unless a row for ``event_id`` already exists.

        Concurrent admissions of the same id resolve on the primary key:
        exactly one caller gets INSERTED, the rest ALREADY_EXISTS.
        """
        stmt = insert_if_absent(
            session,
            WebhookEventRecord,
            "event_id",
            {
                "event_id": event_id,
                "event_type": event_type,
                "livemode": livemode,
                "received_payload": payload,
                "processing_status": ProcessingStatus.RECEIVED.value,
            },
        )
        result = await session.execute(stmt)
        if result.scalar_one_or_none() is None:
            return AdmissionResult.ALREADY_EXISTS
        return AdmissionResult.INSERTED

    async def mark_outcome(
        self,
        session: AsyncSession,
        event_id: str,
        status: ProcessingStatus,
        error_message: str | None = None,
    ) -> bool:
        """Move a RECEIVED row to a terminal status.

        Returns False when the row is missing or already terminal; the
        stored outcome is never overwritten.
        """
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal processing status")

        now = datetime.now(UTC)
        result = await session.execute(
            update(WebhookEventRecord)
            .where(
                WebhookEventRecord.event_id == event_id,
                WebhookEventRecord.processing_status == ProcessingStatus.RECEIVED.value,
            )
            .values(
                processing_status=status.value,
                processing_error=error_message if status is ProcessingStatus.FAILED else None,
                processed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning("webhook_outcome_already_marked", event_id=event_id, status=status.value)
            return False
        return True
