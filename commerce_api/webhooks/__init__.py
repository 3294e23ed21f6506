"""Inbound payment-provider webhooks: verification, admission, reconciliation."""

from commerce_api.webhooks.admission import AdmissionResult, EventAdmissionLog
from commerce_api.webhooks.coordinator import CoordinatorResult, WebhookCoordinator
from commerce_api.webhooks.events import EventKind, ProviderEvent, parse_event
from commerce_api.webhooks.reconciliation import ReconciliationEngine, ReconciliationOutcome
from commerce_api.webhooks.signature import (
    KeyedHashVerifier,
    SignatureVerifier,
    TimestampedSignatureVerifier,
    VerificationResult,
    build_verifier,
)

__all__ = [
    "AdmissionResult",
    "CoordinatorResult",
    "EventAdmissionLog",
    "EventKind",
    "KeyedHashVerifier",
    "ProviderEvent",
    "ReconciliationEngine",
    "ReconciliationOutcome",
    "SignatureVerifier",
    "TimestampedSignatureVerifier",
    "VerificationResult",
    "WebhookCoordinator",
    "build_verifier",
    "parse_event",
]
