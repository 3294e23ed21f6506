"""Tests for POST /api/webhooks/stripe.

Covers:
- Signature rejection happens before parsing and leaves no rows
- Duplicate deliveries acknowledge with idempotent=true
- Malformed and oversized bodies are terminal 4xx responses
- Reconciliation failures answer 500 and leave the event redeliverable
"""

from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from commerce_api.api.routes.webhooks import get_signature_verifier, get_webhook_coordinator
from commerce_api.core.config import Settings
from commerce_api.core.exceptions import ProcessingError
from commerce_api.db.models import Customer, Order, OrderStatus, WebhookEventRecord
from commerce_api.webhooks.coordinator import WebhookCoordinator
from commerce_api.webhooks.reconciliation import ReconciliationEngine
from commerce_api.webhooks.signature import TimestampedSignatureVerifier

pytestmark = pytest.mark.integration

WEBHOOK_URL = "/api/webhooks/stripe"
SECRET = "whsec_test_secret"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model))


@pytest.fixture
def post_signed(db_client, sign_keyed):
    async def _post(body: bytes, signature: str | None = None):
        headers = {"content-type": "application/json"}
        headers["x-webhook-signature"] = sign_keyed(body) if signature is None else signature
        return await db_client.post(WEBHOOK_URL, content=body, headers=headers)

    return _post


class ExplodingEngine(ReconciliationEngine):
    async def apply(self, session, event):
        raise ProcessingError("order store unavailable")


class BuggyEngine(ReconciliationEngine):
    """Writes a customer, then fails with a non-domain error."""

    async def apply(self, session, event):
        session.add(Customer(email="half-written@example.com"))
        await session.flush()
        raise ValueError("unexpected")


# ---------------------------------------------------------------------------
# Accepted deliveries
# ---------------------------------------------------------------------------


async def test_valid_checkout_event_is_processed(
    post_signed, session_factory, make_event, make_checkout_session, encode
):
    body = encode(make_event("evt_1", "checkout.session.completed", make_checkout_session()))

    response = await post_signed(body)

    assert response.status_code == 200
    assert response.json() == {
        "received": True,
        "idempotent": False,
        "processingStatus": "processed",
        "detail": "order_upserted",
        "eventId": "evt_1",
    }
    async with session_factory() as session:
        order = await session.scalar(select(Order))
    assert order.status == OrderStatus.PAID.value
    assert order.amount_cents == 1999
    assert order.currency == "USD"


async def test_duplicate_delivery_is_idempotent(
    post_signed, session_factory, make_event, make_checkout_session, encode
):
    body = encode(make_event("evt_1", "checkout.session.completed", make_checkout_session()))
    await post_signed(body)

    response = await post_signed(body)

    assert response.status_code == 200
    data = response.json()
    assert data["idempotent"] is True
    assert data["processingStatus"] == "ignored"
    assert data["detail"] == "already_processed"
    assert await _count(session_factory, WebhookEventRecord) == 1
    assert await _count(session_factory, Order) == 1


async def test_unhandled_event_type_is_acknowledged(post_signed, session_factory, make_event, encode):
    body = encode(make_event("evt_1", "invoice.created", {"id": "in_1"}))

    response = await post_signed(body)

    assert response.status_code == 200
    assert response.json()["processingStatus"] == "ignored"
    assert response.json()["detail"] == "event_type_not_handled"
    assert await _count(session_factory, WebhookEventRecord) == 1


async def test_refund_for_unknown_order_is_acknowledged(post_signed, session_factory, make_event, encode):
    body = encode(make_event("evt_1", "charge.refunded", {"id": "ch_9", "payment_intent": "pi_9"}))

    response = await post_signed(body)

    assert response.status_code == 200
    assert response.json()["detail"] == "order_not_found_for_refund"
    assert await _count(session_factory, Order) == 0


async def test_checkout_then_refund_flow(post_signed, session_factory, make_event, make_checkout_session, encode):
    await post_signed(encode(make_event("evt_1", "checkout.session.completed", make_checkout_session())))

    response = await post_signed(
        encode(make_event("evt_2", "charge.refunded", {"id": "ch_1", "payment_intent": "pi_1", "amount_refunded": 1999}))
    )

    assert response.status_code == 200
    assert response.json()["detail"] == "order_marked_refunded"
    async with session_factory() as session:
        order = await session.scalar(select(Order))
    assert order.status == OrderStatus.REFUNDED.value
    assert order.stripe_charge_id == "ch_1"


async def test_timestamped_signature_mode(app, db_client, sign_timestamped, make_event, make_checkout_session, encode):
    app.dependency_overrides[get_signature_verifier] = lambda: TimestampedSignatureVerifier(secret=SECRET)
    body = encode(make_event("evt_1", "checkout.session.completed", make_checkout_session()))

    accepted = await db_client.post(WEBHOOK_URL, content=body, headers={"stripe-signature": sign_timestamped(body)})
    rejected = await db_client.post(
        WEBHOOK_URL, content=body, headers={"x-webhook-signature": "0" * 64}
    )

    assert accepted.status_code == 200
    assert rejected.status_code == 400
    assert rejected.json()["detail"] == "missing_stripe-signature_header"


# ---------------------------------------------------------------------------
# Rejected deliveries
# ---------------------------------------------------------------------------


async def test_invalid_signature_is_rejected_without_writes(
    post_signed, session_factory, make_event, make_checkout_session, encode
):
    body = encode(make_event("evt_1", "checkout.session.completed", make_checkout_session()))

    response = await post_signed(body, signature="0" * 64)

    assert response.status_code == 400
    assert response.json() == {"error": "invalid_signature", "detail": "signature_mismatch", "eventId": None}
    assert await _count(session_factory, WebhookEventRecord) == 0
    assert await _count(session_factory, Customer) == 0


async def test_missing_signature_header_is_rejected(db_client, make_event, encode):
    body = encode(make_event("evt_1", "charge.refunded", {"id": "ch_1"}))

    response = await db_client.post(WEBHOOK_URL, content=body)

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_signature"
    assert response.json()["detail"] == "missing_x-webhook-signature_header"


async def test_signature_checked_before_parsing(post_signed):
    """An unsigned garbage body reports the signature, not the JSON, problem."""
    response = await post_signed(b"not json at all", signature="0" * 64)

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_signature"


async def test_reserialized_body_fails_verification(db_client, sign_keyed, make_event, encode):
    document = make_event("evt_1", "charge.refunded", {"id": "ch_1"})
    signed_body = encode(document)
    pretty_body = b'{\n  "id": "evt_1"' + signed_body[len(b'{"id":"evt_1"') :]

    response = await db_client.post(
        WEBHOOK_URL, content=pretty_body, headers={"x-webhook-signature": sign_keyed(signed_body)}
    )

    assert response.status_code == 400


async def test_signed_invalid_json_is_malformed(post_signed, session_factory):
    response = await post_signed(b"{not json")

    assert response.status_code == 400
    assert response.json()["error"] == "malformed_event"
    assert response.json()["eventId"] is None
    assert await _count(session_factory, WebhookEventRecord) == 0


async def test_signed_event_without_data_object_is_malformed(post_signed, session_factory, encode):
    response = await post_signed(encode({"id": "evt_1", "type": "checkout.session.completed", "data": {}}))

    assert response.status_code == 400
    assert response.json()["error"] == "malformed_event"
    assert response.json()["eventId"] == "evt_1"
    assert await _count(session_factory, WebhookEventRecord) == 0


async def test_oversized_body_is_rejected(post_signed, session_factory, make_event, make_checkout_session, encode):
    small = Settings(webhook_max_body_bytes=128)
    body = encode(make_event("evt_1", "checkout.session.completed", make_checkout_session()))
    assert len(body) > 128

    with patch("commerce_api.api.routes.webhooks.get_settings", return_value=small):
        response = await post_signed(body)

    assert response.status_code == 413
    assert response.json()["error"] == "payload_too_large"
    assert await _count(session_factory, WebhookEventRecord) == 0


# ---------------------------------------------------------------------------
# Processing failures
# ---------------------------------------------------------------------------


async def test_processing_failure_returns_500_and_allows_redelivery(
    app, post_signed, session_factory, make_event, make_checkout_session, encode
):
    body = encode(make_event("evt_1", "checkout.session.completed", make_checkout_session()))
    app.dependency_overrides[get_webhook_coordinator] = lambda: WebhookCoordinator(
        session_factory, engine=ExplodingEngine()
    )

    failed = await post_signed(body)

    assert failed.status_code == 500
    assert failed.json() == {
        "error": "processing_failed",
        "detail": "order store unavailable",
        "eventId": "evt_1",
    }
    assert await _count(session_factory, WebhookEventRecord) == 0

    del app.dependency_overrides[get_webhook_coordinator]
    redelivered = await post_signed(body)

    assert redelivered.status_code == 200
    assert redelivered.json()["idempotent"] is False
    assert redelivered.json()["processingStatus"] == "processed"
    assert await _count(session_factory, Order) == 1


async def test_unexpected_error_keeps_error_shape_and_rolls_back(
    app, post_signed, session_factory, make_event, make_checkout_session, encode
):
    body = encode(make_event("evt_1", "checkout.session.completed", make_checkout_session()))
    app.dependency_overrides[get_webhook_coordinator] = lambda: WebhookCoordinator(
        session_factory, engine=BuggyEngine()
    )

    response = await post_signed(body)

    assert response.status_code == 500
    assert response.json() == {
        "error": "processing_failed",
        "detail": "internal error",
        "eventId": "evt_1",
    }
    assert "unexpected" not in response.text
    assert await _count(session_factory, WebhookEventRecord) == 0
    assert await _count(session_factory, Customer) == 0
