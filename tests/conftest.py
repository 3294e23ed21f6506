"""Shared test fixtures: database, signing helpers, and provider event builders."""

import hashlib
import hmac
import json
import os
import time
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from commerce_api.db.base import Base, build_engine

WEBHOOK_SECRET = "whsec_test_secret"

# Set TEST_DATABASE_URL=postgresql+asyncpg://... to run against PostgreSQL;
# otherwise each test gets its own SQLite file.
_TEST_DB_URL = os.getenv("TEST_DATABASE_URL")


# ──────────────────────────────────────────────────────────────────────────────
# Database
# ──────────────────────────────────────────────────────────────────────────────


@pytest.fixture
async def engine(tmp_path) -> AsyncEngine:
    """Create a test engine with fresh tables and install it as the global factory."""
    import commerce_api.db.base as db_mod

    url = _TEST_DB_URL or f"sqlite+aiosqlite:///{tmp_path / 'commerce_test.db'}"
    engine = build_engine(url)

    # Import all models so metadata is populated
    import commerce_api.db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    db_mod._engine = engine
    db_mod._session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    db_mod._engine = None
    db_mod._session_factory = None
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# ──────────────────────────────────────────────────────────────────────────────
# Signing
# ──────────────────────────────────────────────────────────────────────────────


def keyed_signature(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def timestamped_header(body: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode("utf-8") + body
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def sign_keyed():
    return keyed_signature


@pytest.fixture
def sign_timestamped():
    return timestamped_header


# ──────────────────────────────────────────────────────────────────────────────
# Provider events
# ──────────────────────────────────────────────────────────────────────────────


def build_event(event_id: str, event_type: str, data_object: dict[str, Any], livemode: bool = False) -> dict:
    """Build a minimal provider-style event document."""
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "livemode": livemode,
        "created": 1760572800,
        "data": {"object": data_object},
    }


def checkout_session(
    session_id: str = "cs_1",
    email: str | None = "buyer@example.com",
    name: str | None = "Ada Lovelace",
    payment_status: str = "paid",
    amount_total: Any = 1999,
    currency: Any = "usd",
    customer: str | None = "cus_1",
    payment_intent: str | None = "pi_1",
    metadata: dict | None = None,
) -> dict:
    return {
        "id": session_id,
        "object": "checkout.session",
        "amount_total": amount_total,
        "currency": currency,
        "customer": customer,
        "customer_details": {"email": email, "name": name},
        "payment_intent": payment_intent,
        "payment_status": payment_status,
        "client_reference_id": "ref_1",
        "metadata": {"product_sku": "genx-delay-vst3", "plugin_version": "0.1.0"} if metadata is None else metadata,
    }


@pytest.fixture
def make_event():
    return build_event


@pytest.fixture
def make_checkout_session():
    return checkout_session


@pytest.fixture
def encode():
    """Serialize an event document to the raw bytes a provider would send."""

    def _encode(document: dict) -> bytes:
        return json.dumps(document, separators=(",", ":")).encode("utf-8")

    return _encode
