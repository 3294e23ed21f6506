"""API-specific test fixtures."""

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from commerce_api.api.routes.checkout import get_checkout_service
from commerce_api.api.routes.webhooks import get_signature_verifier
from commerce_api.core.config import Settings
from commerce_api.main import create_app
from commerce_api.services.checkout_service import CheckoutService
from commerce_api.webhooks.signature import KeyedHashVerifier

WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture
def app() -> FastAPI:
    """Fresh application with a keyed-hash verifier and mock checkout.

    Lifespan is not run: the ``engine`` fixture installs the global session
    factory in the test's own event loop instead.
    """
    application = create_app()
    application.dependency_overrides[get_signature_verifier] = lambda: KeyedHashVerifier(secret=WEBHOOK_SECRET)
    application.dependency_overrides[get_checkout_service] = lambda: CheckoutService(Settings(stripe_mode="mock"))
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app: FastAPI) -> AsyncClient:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def db_client(engine, client: AsyncClient) -> AsyncClient:
    """Client whose routes see the per-test database."""
    return client
