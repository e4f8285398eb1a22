# Database models
from coffee_shop.models.user import User
from coffee_shop.models.product import Product
from coffee_shop.models.order import Order, OrderStatus
from coffee_shop.models.subscription import Subscription, SubscriptionStatus, DeliveryFrequency
from coffee_shop.models.webhook_event import WebhookEvent

__all__ = [
    "User",
    "Product",
    "Order",
    "OrderStatus",
    "Subscription",
    "SubscriptionStatus",
    "DeliveryFrequency",
    "WebhookEvent",
]
