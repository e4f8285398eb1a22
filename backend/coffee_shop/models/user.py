"""
用户模型
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from coffee_shop.core.database import Base


class User(Base):
    """用户表"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(100), unique=True, nullable=False, index=True)
    password_hash = Column("hashed_password", String(255), nullable=False)
    role = Column(String(20), default="user")  # user, admin
    address = Column(JSON, nullable=True)  # 默认收货地址，订阅未指定地址时使用
    stripe_customer_id = Column(String(100), nullable=True, index=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # 关系
    orders = relationship("Order", back_populates="user")
    subscriptions = relationship("Subscription", back_populates="user")
