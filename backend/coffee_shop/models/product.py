"""
商品模型（价格以美分为单位的整数）
"""
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, JSON, CheckConstraint
from sqlalchemy.sql import func
from coffee_shop.core.database import Base


class Product(Base):
    """商品表"""
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=False, default="")
    origin = Column(String(100), nullable=True)
    roast_type = Column(String(20), nullable=True)  # light, medium, dark, espresso
    category = Column(String(20), nullable=True)  # single-origin, blend, decaf, seasonal
    tags = Column(JSON, nullable=True)
    weight = Column(Integer, nullable=True)  # 克
    price = Column(Integer, nullable=False)  # 美分
    stock = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True)
    stripe_product_id = Column(String(100), nullable=True)
    stripe_price_id = Column(String(100), nullable=True)  # 订阅用的周期价格
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
