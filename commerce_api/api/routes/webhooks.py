"""Inbound payment-provider webhook endpoint."""

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from commerce_api.core.config import get_settings
from commerce_api.core.exceptions import (
    ClientError,
    PayloadTooLargeError,
    ProcessingError,
    SignatureVerificationError,
)
from commerce_api.db.base import get_session_factory
from commerce_api.schemas.webhooks import WebhookAckResponse, WebhookErrorResponse
from commerce_api.webhooks.coordinator import WebhookCoordinator
from commerce_api.webhooks.events import parse_event
from commerce_api.webhooks.signature import SignatureVerifier, build_verifier

logger = structlog.get_logger(__name__)

router = APIRouter()


# ── Dependencies ────────────────────────────────────────────────────


def get_signature_verifier() -> SignatureVerifier:
    """Verification strategy for this deployment (overridden in tests)."""
    return build_verifier(get_settings())


def get_webhook_coordinator() -> WebhookCoordinator:
    return WebhookCoordinator(get_session_factory())


# ── Helpers ─────────────────────────────────────────────────────────


async def read_limited_body(request: Request, limit: int) -> bytes:
    """Read the raw body, aborting as soon as it exceeds ``limit`` bytes."""
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit:
        raise PayloadTooLargeError(f"Request body exceeds {limit} bytes")

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            raise PayloadTooLargeError(f"Request body exceeds {limit} bytes")
    return bytes(body)


def _error_response(status_code: int, error: str, detail: str, event_id: str | None = None) -> JSONResponse:
    body = WebhookErrorResponse(error=error, detail=detail, event_id=event_id)
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))


# ── Endpoint ────────────────────────────────────────────────────────


@router.post("/webhooks/stripe", response_model=WebhookAckResponse)
async def stripe_webhook(
    request: Request,
    verifier: SignatureVerifier = Depends(get_signature_verifier),
    coordinator: WebhookCoordinator = Depends(get_webhook_coordinator),
):
    """Verify, admit, and reconcile one provider event.

    Signature verification runs on the exact bytes received, before any
    parsing. 4xx responses are terminal; a 500 asks the provider to
    redeliver.
    """
    settings = get_settings()

    try:
        body = await read_limited_body(request, settings.webhook_max_body_bytes)
        verification = verifier.verify(body, request.headers)
        if not verification.valid:
            raise SignatureVerificationError(verification.reason or "invalid_signature")
        event = parse_event(body)
    except ClientError as exc:
        logger.warning("webhook_rejected", error=exc.error, detail=exc.detail, event_id=exc.event_id)
        return _error_response(exc.status_code, exc.error, exc.detail, exc.event_id)

    logger.info("webhook_received", event_id=event.id, event_type=event.type)

    try:
        result = await coordinator.process(event)
    except ProcessingError as exc:
        logger.error("webhook_processing_failed", event_id=event.id, event_type=event.type, error=str(exc))
        return _error_response(500, "processing_failed", str(exc), event.id)
    except Exception as exc:
        # Transaction already rolled back; keep the provider-facing error shape
        logger.error(
            "webhook_processing_crashed",
            event_id=event.id,
            event_type=event.type,
            error_type=type(exc).__name__,
            exc_info=True,
        )
        return _error_response(500, "processing_failed", "internal error", event.id)

    return WebhookAckResponse(
        idempotent=result.duplicate,
        processing_status=result.status.value,
        detail=result.detail,
        event_id=result.event_id,
    )
