"""
订单模型
"""
from enum import Enum

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from coffee_shop.core.database import Base


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# 履约主线顺序，运营只能沿此方向推进
FULFILLMENT_FLOW = [
    OrderStatus.PENDING,
    OrderStatus.PAID,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
]

# 只有已取消是终态，已送达仍可由运营取消
TERMINAL_STATUSES = {OrderStatus.CANCELLED}

STATUS_LABELS = {
    OrderStatus.PENDING: "待支付",
    OrderStatus.PAID: "已支付",
    OrderStatus.PROCESSING: "处理中",
    OrderStatus.SHIPPED: "已发货",
    OrderStatus.DELIVERED: "已送达",
    OrderStatus.CANCELLED: "已取消",
}


class Order(Base):
    """订单表

    items 为下单时的快照：[{"product_id", "name", "quantity", "price"}]，
    total_amount 在创建时计算一次并落库，之后不再重算。
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(50), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)  # 游客下单为空
    items = Column(JSON, nullable=False)
    total_amount = Column(Integer, nullable=False)  # 美分
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value, index=True)
    shipping_address = Column(JSON, nullable=False)
    checkout_session_id = Column(String(255), nullable=True, unique=True, index=True)
    # 旧版 PaymentIntent 流程遗留字段；当前仅在结账完成事件中回填
    payment_intent_id = Column(String(255), nullable=True, index=True)
    tracking_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # 关系
    user = relationship("User", back_populates="orders")
