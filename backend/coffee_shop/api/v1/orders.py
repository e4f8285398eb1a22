"""
订单相关API
"""
from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from coffee_shop.api.deps import get_notifier, get_payment_gateway
from coffee_shop.api.v1.auth import get_current_active_user, get_optional_user, require_admin
from coffee_shop.core.database import get_db
from coffee_shop.schemas.auth import UserResponse
from coffee_shop.schemas.order import (
    OrderCreate,
    OrderCreateResponse,
    OrderListResponse,
    OrderResponse,
    OrderStatusUpdate,
)
from coffee_shop.services.notification_service import Notifier
from coffee_shop.services.order_service import OrderService, find_unattached_orders
from coffee_shop.services.payment_gateway import PaymentGateway

router = APIRouter()


@router.get("", response_model=OrderListResponse)
async def list_orders(
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """获取当前用户订单"""
    orders = await OrderService(db).list_user_orders(current_user.id)
    return {"orders": orders, "total": len(orders)}


@router.post("", response_model=OrderCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    order_data: OrderCreate,
    current_user: Optional[UserResponse] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: Notifier = Depends(get_notifier),
):
    """创建订单并返回 Stripe Checkout 跳转地址"""
    service = OrderService(db, gateway, notifier)
    order, checkout_url = await service.create_order(
        order_data,
        user_id=current_user.id if current_user else None,
    )
    return {"order": order, "checkout_url": checkout_url}


@router.get("/unattached", response_model=OrderListResponse)
async def list_unattached_orders(
    _admin: UserResponse = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """（管理员）无支付会话的滞留 pending 订单"""
    orders = await find_unattached_orders(db)
    return {"orders": orders, "total": len(orders)}


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """获取订单详情（本人或管理员）"""
    return await OrderService(db).get_order_for_user(order_id, current_user)


@router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: int,
    body: OrderStatusUpdate,
    _admin: UserResponse = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """（管理员）修改订单状态/物流单号"""
    return await OrderService(db).update_status(order_id, body.status, body.tracking_number)
