"""Order model, keyed by the provider's checkout session id."""

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from commerce_api.db.base import Base


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    customer = relationship("Customer", back_populates="orders")

    # Stripe
    stripe_checkout_session_id = Column(String(255), unique=True, nullable=False, index=True)
    stripe_payment_intent_id = Column(String(255), nullable=True, index=True)  # fill-once
    stripe_charge_id = Column(String(255), nullable=True, index=True)  # fill-once

    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value)
    currency = Column(String(3), nullable=False, default="USD")
    amount_cents = Column(Integer, nullable=False, default=0)

    product_sku = Column(String(255), nullable=True)
    product_version = Column(String(50), nullable=True)

    fulfilled_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    metadata_ = Column("metadata", JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=lambda: {})

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )
