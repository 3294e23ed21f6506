"""Re-export all models so Base.metadata sees them."""

from commerce_api.db.models.customer import Customer
from commerce_api.db.models.order import Order, OrderStatus
from commerce_api.db.models.webhook_event import ProcessingStatus, WebhookEventRecord

__all__ = [
    "Customer",
    "Order",
    "OrderStatus",
    "ProcessingStatus",
    "WebhookEventRecord",
]
