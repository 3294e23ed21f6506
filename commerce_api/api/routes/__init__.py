from fastapi import APIRouter

from commerce_api.api.routes import checkout, health, webhooks

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(webhooks.router, tags=["webhooks"])
api_router.include_router(checkout.router, tags=["checkout"])
