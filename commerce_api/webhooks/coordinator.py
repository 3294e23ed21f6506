"""Transaction coordinator: admission, reconciliation and outcome in one unit of work."""

from dataclasses import dataclass

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from commerce_api.core.exceptions import ProcessingError
from commerce_api.db.models.webhook_event import ProcessingStatus
from commerce_api.webhooks.admission import AdmissionResult, EventAdmissionLog
from commerce_api.webhooks.events import ProviderEvent
from commerce_api.webhooks.reconciliation import ReconciliationEngine

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CoordinatorResult:
    event_id: str
    duplicate: bool
    status: ProcessingStatus
    detail: str


class WebhookCoordinator:
    """Runs one webhook delivery as a single atomic transaction.

    Start -> Admit -> (duplicate: commit as ignored | Reconcile -> MarkOutcome -> Commit).
    Any error after the transaction opens rolls everything back, including
    the admission row, so a failed delivery leaves no trace and the
    provider's redelivery is admitted fresh.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: ReconciliationEngine | None = None,
        admission_log: EventAdmissionLog | None = None,
    ):
        self.session_factory = session_factory
        self.engine = engine or ReconciliationEngine()
        self.admission_log = admission_log or EventAdmissionLog()

    async def process(self, event: ProviderEvent) -> CoordinatorResult:
        """Admit and reconcile ``event``.

        Raises:
            ProcessingError: reconciliation or the store failed; nothing was
                committed.
        """
        log = logger.bind(event_id=event.id, event_type=event.type)

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    admitted = await self.admission_log.admit(
                        session,
                        event_id=event.id,
                        event_type=event.type,
                        livemode=event.livemode,
                        payload=event.raw or event.model_dump(by_alias=True),
                    )
                    if admitted is AdmissionResult.ALREADY_EXISTS:
                        log.info("webhook_duplicate_ignored")
                        return CoordinatorResult(event.id, True, ProcessingStatus.IGNORED, "already_processed")

                    log.info("webhook_event_admitted")
                    outcome = await self._reconcile(session, event, log)
                    await self.admission_log.mark_outcome(session, event.id, outcome.status)
        except ProcessingError:
            raise
        except SQLAlchemyError as exc:
            # Admission, outcome marking, or commit failed at the store
            log.error("webhook_transaction_failed", error=str(exc), error_type=type(exc).__name__)
            raise ProcessingError(f"database error: {type(exc).__name__}") from exc

        log.info("webhook_event_reconciled", status=outcome.status.value, detail=outcome.detail)
        return CoordinatorResult(event.id, False, outcome.status, outcome.detail)

    async def _reconcile(self, session: AsyncSession, event: ProviderEvent, log):
        try:
            return await self.engine.apply(session, event)
        except (ProcessingError, SQLAlchemyError) as exc:
            if isinstance(exc, ProcessingError):
                error = exc
            else:
                error = ProcessingError(f"database error: {type(exc).__name__}")
            log.warning("webhook_reconciliation_failed", error=str(error), error_type=type(exc).__name__)
            try:
                await self.admission_log.mark_outcome(session, event.id, ProcessingStatus.FAILED, str(error))
            except SQLAlchemyError:
                # Aborted transaction; the rollback discards the row regardless
                log.debug("webhook_failure_mark_skipped")
            if error is exc:
                raise
            raise error from exc
