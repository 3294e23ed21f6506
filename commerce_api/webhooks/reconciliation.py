"""Reconciliation engine: applies provider events to customers and orders.

Dispatch is over the closed ``EventKind`` set, one handler per kind, with
unknown provider types falling through to an ``ignored`` outcome. Every
handler runs inside the caller's transaction and is idempotent: applying
the same event twice leaves the rows in the same state.

Field rules shared by the handlers:
- fill-once columns (provider customer/payment-intent/charge ids,
  ``fulfilled_at``, ``refunded_at``) are only written while still NULL
- metadata is merged key by key, never replaced
- status is last-writer-wins by commit order
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from commerce_api.core.config import Settings, get_settings
from commerce_api.core.exceptions import ProcessingError
from commerce_api.db.models.customer import Customer
from commerce_api.db.models.order import Order, OrderStatus
from commerce_api.db.models.webhook_event import ProcessingStatus
from commerce_api.db.upsert import insert_if_absent
from commerce_api.webhooks.events import EventKind, ProviderEvent

logger = structlog.get_logger(__name__)

PLACEHOLDER_EMAIL_DOMAIN = "placeholder.invalid"


@dataclass(frozen=True)
class ReconciliationOutcome:
    status: ProcessingStatus
    detail: str

    @classmethod
    def processed(cls, detail: str) -> "ReconciliationOutcome":
        return cls(ProcessingStatus.PROCESSED, detail)

    @classmethod
    def ignored(cls, detail: str) -> "ReconciliationOutcome":
        return cls(ProcessingStatus.IGNORED, detail)


Handler = Callable[[AsyncSession, ProviderEvent], Awaitable[ReconciliationOutcome]]


# ── Field helpers ───────────────────────────────────────────────────


def _str_or_none(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _dict_or_empty(value: Any) -> dict[str, Any]:
    return dict(value) if isinstance(value, dict) else {}


def merge_metadata(existing: dict[str, Any] | None, incoming: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict so SQLAlchemy sees the JSON column change."""
    merged = dict(existing or {})
    merged.update({key: value for key, value in incoming.items() if value is not None})
    return merged


def normalize_email(value: Any) -> str | None:
    email = _str_or_none(value)
    return email.lower() if email else None


def placeholder_email(session_id: str) -> str:
    """Deterministic stand-in so every order resolves to some customer."""
    return f"checkout+{session_id}@{PLACEHOLDER_EMAIL_DOMAIN}"


def normalize_currency(value: Any, default: str) -> str:
    if isinstance(value, str) and len(value.strip()) == 3 and value.strip().isalpha():
        return value.strip().upper()
    return default.upper()


def normalize_amount(value: Any) -> int:
    # bool is an int subclass; a provider never means True as an amount
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0


# ── Engine ──────────────────────────────────────────────────────────


class ReconciliationEngine:
    """Applies one provider event to the order/customer model."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._handlers: dict[EventKind, Handler] = {
            EventKind.CHECKOUT_SESSION_COMPLETED: self._checkout_session_completed,
            EventKind.PAYMENT_INTENT_FAILED: self._payment_intent_failed,
            EventKind.CHARGE_REFUNDED: self._charge_refunded,
        }
        unhandled = set(EventKind) - {EventKind.UNHANDLED} - set(self._handlers)
        if unhandled:
            raise RuntimeError(f"No reconciliation handler for: {sorted(k.value for k in unhandled)}")

    @property
    def handled_kinds(self) -> frozenset[EventKind]:
        return frozenset(self._handlers)

    async def apply(self, session: AsyncSession, event: ProviderEvent) -> ReconciliationOutcome:
        """Apply ``event`` within ``session``'s transaction.

        Raises:
            ProcessingError: the event is malformed for its kind.
            SQLAlchemyError: propagated untouched for the coordinator.
        """
        kind = event.kind
        if kind is EventKind.UNHANDLED:
            return ReconciliationOutcome.ignored("event_type_not_handled")
        return await self._handlers[kind](session, event)

    # ── checkout.session.completed ──────────────────────────────────

    async def _checkout_session_completed(self, session: AsyncSession, event: ProviderEvent) -> ReconciliationOutcome:
        checkout = event.data_object
        session_id = _str_or_none(checkout.get("id"))
        if session_id is None:
            raise ProcessingError("checkout session is missing its id")

        details = _dict_or_empty(checkout.get("customer_details"))
        session_metadata = _dict_or_empty(checkout.get("metadata"))

        email = (
            normalize_email(details.get("email"))
            or normalize_email(checkout.get("customer_email"))
            or placeholder_email(session_id)
        )
        customer = await self._upsert_customer(
            session,
            email=email,
            full_name=_str_or_none(details.get("name")),
            stripe_customer_id=_str_or_none(checkout.get("customer")),
            metadata={**session_metadata, "last_checkout_session_id": session_id},
        )

        payment_status = _str_or_none(checkout.get("payment_status"))
        status = OrderStatus.PAID if payment_status == "paid" else OrderStatus.PENDING

        order = await self._upsert_order(
            session,
            session_id=session_id,
            customer=customer,
            status=status,
            payment_intent_id=_str_or_none(checkout.get("payment_intent")),
            currency=normalize_currency(checkout.get("currency"), self.settings.default_currency),
            amount_cents=normalize_amount(checkout.get("amount_total")),
            product_sku=_str_or_none(session_metadata.get("product_sku")) or self.settings.default_product_sku,
            product_version=(
                _str_or_none(session_metadata.get("plugin_version")) or self.settings.default_plugin_version
            ),
            metadata={
                **session_metadata,
                "payment_status": payment_status,
                "client_reference_id": _str_or_none(checkout.get("client_reference_id")),
                "last_event_id": event.id,
            },
        )

        logger.info(
            "order_upserted",
            event_id=event.id,
            checkout_session_id=session_id,
            order_id=order.id,
            customer_id=customer.id,
            status=order.status,
        )
        return ReconciliationOutcome.processed("order_upserted")

    async def _upsert_customer(
        self,
        session: AsyncSession,
        email: str,
        full_name: str | None,
        stripe_customer_id: str | None,
        metadata: dict[str, Any],
    ) -> Customer:
        await session.execute(insert_if_absent(session, Customer, "email", {"email": email}))
        result = await session.execute(
            select(Customer)
            .where(Customer.email == email)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        customer = result.scalar_one()

        if full_name is not None:
            customer.full_name = full_name
        if stripe_customer_id is not None and customer.stripe_customer_id is None:
            customer.stripe_customer_id = stripe_customer_id
        customer.metadata_ = merge_metadata(customer.metadata_, metadata)

        await session.flush()
        return customer

    async def _upsert_order(
        self,
        session: AsyncSession,
        session_id: str,
        customer: Customer,
        status: OrderStatus,
        payment_intent_id: str | None,
        currency: str,
        amount_cents: int,
        product_sku: str,
        product_version: str,
        metadata: dict[str, Any],
    ) -> Order:
        await session.execute(
            insert_if_absent(
                session,
                Order,
                "stripe_checkout_session_id",
                {
                    "stripe_checkout_session_id": session_id,
                    "customer_id": customer.id,
                    "status": status.value,
                    "currency": currency,
                    "amount_cents": amount_cents,
                },
            )
        )
        order = await self._locked_order(session, Order.stripe_checkout_session_id == session_id)

        order.customer_id = customer.id
        order.status = status.value
        order.currency = currency
        order.amount_cents = amount_cents
        order.product_sku = product_sku
        order.product_version = product_version
        if payment_intent_id is not None and order.stripe_payment_intent_id is None:
            order.stripe_payment_intent_id = payment_intent_id
        if status is OrderStatus.PAID and order.fulfilled_at is None:
            order.fulfilled_at = datetime.now(UTC)
        order.metadata_ = merge_metadata(order.metadata_, metadata)

        await session.flush()
        return order

    # ── payment_intent.payment_failed ───────────────────────────────

    async def _payment_intent_failed(self, session: AsyncSession, event: ProviderEvent) -> ReconciliationOutcome:
        intent = event.data_object
        payment_intent_id = _str_or_none(intent.get("id"))
        if payment_intent_id is None:
            return ReconciliationOutcome.ignored("missing_payment_intent_id")

        order = await self._locked_order(session, Order.stripe_payment_intent_id == payment_intent_id, required=False)
        if order is None:
            logger.info("payment_failed_order_not_found", event_id=event.id, payment_intent_id=payment_intent_id)
            return ReconciliationOutcome.ignored("order_not_found_for_payment_intent")

        last_error = _dict_or_empty(intent.get("last_payment_error"))
        order.status = OrderStatus.FAILED.value
        order.metadata_ = merge_metadata(
            order.metadata_,
            {
                **_dict_or_empty(intent.get("metadata")),
                "payment_intent_status": _str_or_none(intent.get("status")),
                "last_payment_error": _str_or_none(last_error.get("message")),
                "last_payment_error_code": _str_or_none(last_error.get("code")),
                "last_event_id": event.id,
            },
        )
        await session.flush()

        logger.info("order_marked_failed", event_id=event.id, order_id=order.id, payment_intent_id=payment_intent_id)
        return ReconciliationOutcome.processed("order_marked_failed")

    # ── charge.refunded ─────────────────────────────────────────────

    async def _charge_refunded(self, session: AsyncSession, event: ProviderEvent) -> ReconciliationOutcome:
        charge = event.data_object
        charge_id = _str_or_none(charge.get("id"))
        payment_intent_id = _str_or_none(charge.get("payment_intent"))

        conditions = []
        if payment_intent_id is not None:
            conditions.append(Order.stripe_payment_intent_id == payment_intent_id)
        if charge_id is not None:
            conditions.append(Order.stripe_charge_id == charge_id)
        if not conditions:
            return ReconciliationOutcome.ignored("missing_charge_identifiers")

        order = await self._locked_order(session, or_(*conditions), required=False)
        if order is None:
            logger.info(
                "refund_order_not_found",
                event_id=event.id,
                charge_id=charge_id,
                payment_intent_id=payment_intent_id,
            )
            return ReconciliationOutcome.ignored("order_not_found_for_refund")

        order.status = OrderStatus.REFUNDED.value
        if order.refunded_at is None:
            order.refunded_at = datetime.now(UTC)
        if charge_id is not None and order.stripe_charge_id is None:
            order.stripe_charge_id = charge_id
        if payment_intent_id is not None and order.stripe_payment_intent_id is None:
            order.stripe_payment_intent_id = payment_intent_id
        order.metadata_ = merge_metadata(
            order.metadata_,
            {
                "amount_refunded": normalize_amount(charge.get("amount_refunded")),
                "refund_charge_id": charge_id,
                "last_event_id": event.id,
            },
        )
        await session.flush()

        logger.info("order_marked_refunded", event_id=event.id, order_id=order.id, charge_id=charge_id)
        return ReconciliationOutcome.processed("order_marked_refunded")

    # ── Queries ─────────────────────────────────────────────────────

    async def _locked_order(self, session: AsyncSession, condition, required: bool = True) -> Order | None:
        result = await session.execute(
            select(Order)
            .where(condition)
            .order_by(Order.id)
            .limit(1)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if required:
            return result.scalar_one()
        return result.scalar_one_or_none()
