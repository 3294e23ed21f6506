"""CheckoutService: creates hosted checkout sessions with the payment provider."""

import uuid

import stripe
import structlog

from commerce_api.core.config import Settings
from commerce_api.core.exceptions import CheckoutError
from commerce_api.schemas.checkout import CheckoutRequest, CheckoutResponse

logger = structlog.get_logger(__name__)

METADATA_SOURCE = "genx-commerce-api"


class CheckoutService:
    """Outbound checkout session creation.

    ``mock`` mode fabricates a session locally; ``test`` mode calls the
    provider with a test secret key. The webhook pipeline never depends on
    this service.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def build_metadata(self, request: CheckoutRequest) -> dict[str, str]:
        return {
            "product_sku": request.product_sku or self.settings.default_product_sku,
            "plugin_version": request.plugin_version or self.settings.default_plugin_version,
            "checkout_mode": self.settings.normalized_stripe_mode,
            "source": METADATA_SOURCE,
        }

    async def create_session(self, request: CheckoutRequest) -> CheckoutResponse:
        """Create a checkout session for ``request``.

        Raises:
            CheckoutError: unsupported mode, missing provider configuration,
                or the provider rejected the request.
        """
        mode = self.settings.normalized_stripe_mode
        metadata = self.build_metadata(request)
        client_reference_id = request.client_reference_id or str(uuid.uuid4())
        success_url = request.success_url or self.settings.checkout_success_url
        cancel_url = request.cancel_url or self.settings.checkout_cancel_url

        if mode == "mock":
            session_id = f"cs_mock_{uuid.uuid4().hex[:24]}"
            logger.info("mock_checkout_session_created", checkout_session_id=session_id)
            return CheckoutResponse(
                provider="mock",
                checkout_session_id=session_id,
                checkout_url=f"{self.settings.mock_checkout_base_url}/{session_id}",
                client_reference_id=client_reference_id,
                metadata=metadata,
            )

        if mode != "test":
            raise CheckoutError(f"Unsupported STRIPE_MODE: {mode}", status_code=500)
        if not self.settings.stripe_api_key.startswith("sk_test_"):
            raise CheckoutError("STRIPE_API_KEY must be set to a test secret key in test mode", status_code=500)
        if not self.settings.stripe_price_id:
            raise CheckoutError("STRIPE_PRICE_ID must be set in test mode", status_code=500)

        self._configure_stripe()
        params = {
            "mode": "payment",
            "line_items": [{"price": self.settings.stripe_price_id, "quantity": request.quantity}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": client_reference_id,
            "metadata": metadata,
        }
        if request.customer_email:
            params["customer_email"] = request.customer_email

        try:
            session = await stripe.checkout.Session.create_async(**params)
        except stripe.StripeError as exc:
            logger.warning("stripe_checkout_failed", error=str(exc), http_status=exc.http_status)
            message = exc.user_message or "Stripe Checkout session creation failed"
            raise CheckoutError(message, status_code=exc.http_status or 502) from exc

        logger.info("stripe_checkout_session_created", checkout_session_id=session.id)
        return CheckoutResponse(
            provider="stripe",
            checkout_session_id=session.id,
            checkout_url=session.url,
            client_reference_id=client_reference_id,
            metadata=metadata,
        )

    def _configure_stripe(self) -> None:
        stripe.api_key = self.settings.stripe_api_key
