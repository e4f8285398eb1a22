"""
订单相关Schema
"""
from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from typing import Optional, List

from coffee_shop.models.order import OrderStatus


class CartItem(BaseModel):
    """购物车条目"""
    product_id: int
    quantity: int = Field(..., ge=1)


class ShippingAddress(BaseModel):
    """收货地址"""
    full_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    street: str = Field(..., min_length=1, max_length=200)
    number: Optional[str] = Field(None, max_length=20)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    zip_code: str = Field(..., min_length=1, max_length=20)


class OrderCreate(BaseModel):
    """订单创建"""
    items: List[CartItem] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    notes: Optional[str] = Field(None, max_length=1000)


class OrderItemResponse(BaseModel):
    """订单条目（下单时快照）"""
    product_id: int
    name: str
    quantity: int
    price: int


class OrderResponse(BaseModel):
    """订单响应"""
    id: int
    order_number: str
    user_id: Optional[int] = None
    items: List[OrderItemResponse]
    total_amount: int
    status: str
    shipping_address: ShippingAddress
    checkout_session_id: Optional[str] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrderCreateResponse(BaseModel):
    """下单响应：订单 + 支付跳转地址"""
    order: OrderResponse
    checkout_url: str


class OrderListResponse(BaseModel):
    orders: List[OrderResponse]
    total: int


class OrderStatusUpdate(BaseModel):
    """运营修改订单状态"""
    status: OrderStatus
    tracking_number: Optional[str] = Field(None, max_length=100)
