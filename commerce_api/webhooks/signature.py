"""Webhook signature verification strategies.

Both strategies run against the exact bytes received, compare in constant
time, and fail closed: a missing secret, a missing or malformed header, or
no matching signature is always a rejection.

- ``KeyedHashVerifier``: single header holding the hex HMAC-SHA256 of the
  body. Used by mock deployments and local tooling.
- ``TimestampedSignatureVerifier``: provider header
  ``t=<timestamp>,v1=<sig>[,v1=<sig>...]`` over ``"<t>.<body>"``, checked
  by the stripe SDK with a replay window.
"""

import hashlib
import hmac
from collections.abc import Mapping
from dataclasses import dataclass

import stripe
import structlog

from commerce_api.core.config import Settings

logger = structlog.get_logger(__name__)

STRIPE_SIGNATURE_HEADER = "stripe-signature"


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    reason: str | None = None

    @classmethod
    def ok(cls) -> "VerificationResult":
        return cls(valid=True)

    @classmethod
    def invalid(cls, reason: str) -> "VerificationResult":
        return cls(valid=False, reason=reason)


def _header(headers: Mapping[str, str], name: str) -> str | None:
    # Starlette headers are case-insensitive already; plain dicts in tests are not.
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    return value or None


@dataclass(frozen=True)
class KeyedHashVerifier:
    secret: str
    header_name: str = "x-webhook-signature"

    def verify(self, body: bytes, headers: Mapping[str, str]) -> VerificationResult:
        if not self.secret:
            return VerificationResult.invalid("webhook_secret_not_configured")

        signature = _header(headers, self.header_name)
        if signature is None:
            return VerificationResult.invalid(f"missing_{self.header_name}_header")

        expected = hmac.new(self.secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        provided = signature.strip().lower()
        if len(provided) != len(expected):
            return VerificationResult.invalid("signature_mismatch")
        if not hmac.compare_digest(expected.encode("ascii"), provided.encode("ascii", "replace")):
            return VerificationResult.invalid("signature_mismatch")
        return VerificationResult.ok()


@dataclass(frozen=True)
class TimestampedSignatureVerifier:
    secret: str
    tolerance_seconds: int = 300
    header_name: str = STRIPE_SIGNATURE_HEADER

    def __post_init__(self):
        if self.tolerance_seconds <= 0:
            raise ValueError("tolerance_seconds must be positive")

    def verify(self, body: bytes, headers: Mapping[str, str]) -> VerificationResult:
        if not self.secret:
            return VerificationResult.invalid("webhook_secret_not_configured")

        signature = _header(headers, self.header_name)
        if signature is None:
            return VerificationResult.invalid(f"missing_{self.header_name}_header")

        try:
            payload = body.decode("utf-8")
        except UnicodeDecodeError:
            return VerificationResult.invalid("body_not_utf8")

        try:
            stripe.WebhookSignature.verify_header(
                payload,
                signature,
                self.secret,
                tolerance=self.tolerance_seconds,
            )
        except stripe.SignatureVerificationError as exc:
            logger.debug("stripe_signature_rejected", error=str(exc))
            return VerificationResult.invalid(_reason_from_stripe_error(exc))
        return VerificationResult.ok()


def _reason_from_stripe_error(exc: stripe.SignatureVerificationError) -> str:
    message = str(exc).lower()
    if "unable to extract" in message:
        return "malformed_signature_header"
    if "no signatures found" in message:
        return "signature_mismatch"
    if "tolerance" in message:
        return "timestamp_outside_tolerance"
    return "signature_mismatch"


SignatureVerifier = KeyedHashVerifier | TimestampedSignatureVerifier


def build_verifier(settings: Settings) -> SignatureVerifier:
    """Select the verification strategy configured for this deployment."""
    mode = settings.resolved_signature_mode
    if mode == "keyed_hash":
        return KeyedHashVerifier(
            secret=settings.stripe_webhook_secret,
            header_name=settings.webhook_signature_header,
        )
    if mode == "timestamped":
        return TimestampedSignatureVerifier(
            secret=settings.stripe_webhook_secret,
            tolerance_seconds=settings.webhook_tolerance_seconds,
        )
    raise ValueError(f"Unsupported webhook signature mode: {mode}")
