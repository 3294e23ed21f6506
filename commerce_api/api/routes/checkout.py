"""Checkout session creation for the storefront."""

from fastapi import APIRouter, Depends, HTTPException

from commerce_api.core.config import get_settings
from commerce_api.core.exceptions import CheckoutError
from commerce_api.schemas.checkout import CheckoutRequest, CheckoutResponse
from commerce_api.services.checkout_service import CheckoutService

router = APIRouter()


def get_checkout_service() -> CheckoutService:
    return CheckoutService(get_settings())


@router.post("/checkout", response_model=CheckoutResponse, status_code=201)
async def create_checkout_session(
    body: CheckoutRequest,
    service: CheckoutService = Depends(get_checkout_service),
):
    """Create a hosted checkout session and return its URL."""
    try:
        return await service.create_session(body)
    except CheckoutError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc))
