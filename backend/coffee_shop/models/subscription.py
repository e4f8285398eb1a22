"""
订阅模型
"""
from enum import Enum

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from coffee_shop.core.database import Base


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class DeliveryFrequency(str, Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class Subscription(Base):
    """订阅表（cancelled 为终态，不可重新激活）"""
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    frequency = Column(String(20), nullable=False)  # weekly, biweekly, monthly
    quantity = Column(Integer, nullable=False, default=1)
    status = Column(String(20), nullable=False, default=SubscriptionStatus.ACTIVE.value)
    stripe_subscription_id = Column(String(255), nullable=False, unique=True, index=True)
    next_delivery = Column(DateTime(timezone=True), nullable=True)
    shipping_address = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # 关系
    user = relationship("User", back_populates="subscriptions")
    product = relationship("Product")
