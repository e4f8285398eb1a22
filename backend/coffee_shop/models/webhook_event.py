"""
Webhook 事件处理记录：每个 Stripe 事件一条，用于去重与离线排查
"""
from sqlalchemy import Column, Integer, String, Text, DateTime
from sqlalchemy.sql import func
from coffee_shop.core.database import Base


class WebhookEvent(Base):
    """Webhook 事件表"""
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    stripe_event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False, index=True)
    outcome = Column(String(20), nullable=False, index=True)  # processed, skipped, ignored, failed
    reference = Column(String(255), nullable=True)  # 关联的会话/支付/订阅 ID
    detail = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
