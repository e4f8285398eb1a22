"""
订阅相关Schema
"""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Dict, Any

from coffee_shop.models.subscription import DeliveryFrequency


class SubscriptionCreate(BaseModel):
    """订阅创建"""
    product_id: int
    frequency: DeliveryFrequency
    quantity: int = Field(1, ge=1)
    shipping_address: Optional[Dict[str, Any]] = None


class SubscriptionResponse(BaseModel):
    """订阅响应"""
    id: int
    user_id: int
    product_id: int
    frequency: str
    quantity: int
    status: str
    stripe_subscription_id: str
    next_delivery: Optional[datetime] = None
    shipping_address: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SubscriptionCreateResponse(BaseModel):
    subscription: SubscriptionResponse
    client_secret: Optional[str] = None


class SubscriptionListResponse(BaseModel):
    subscriptions: List[SubscriptionResponse]
    total: int
