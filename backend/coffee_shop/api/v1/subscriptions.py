"""
订阅相关API
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from coffee_shop.api.deps import get_payment_gateway
from coffee_shop.api.v1.auth import get_current_active_user
from coffee_shop.core.database import get_db
from coffee_shop.schemas.auth import UserResponse
from coffee_shop.schemas.subscription import (
    SubscriptionCreate,
    SubscriptionCreateResponse,
    SubscriptionListResponse,
    SubscriptionResponse,
)
from coffee_shop.services.payment_gateway import PaymentGateway
from coffee_shop.services.subscription_service import SubscriptionService

router = APIRouter()


@router.get("", response_model=SubscriptionListResponse)
async def list_subscriptions(
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """获取当前用户订阅"""
    subscriptions = await SubscriptionService(db).list_user_subscriptions(current_user.id)
    return {"subscriptions": subscriptions, "total": len(subscriptions)}


@router.post("", response_model=SubscriptionCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_subscription(
    body: SubscriptionCreate,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """创建订阅，返回首期账单的 client_secret 供前端确认支付"""
    subscription, client_secret = await SubscriptionService(db, gateway).create_subscription(
        body, current_user.id
    )
    return {"subscription": subscription, "client_secret": client_secret}


@router.patch("/{subscription_id}/cancel", response_model=SubscriptionResponse)
async def cancel_subscription(
    subscription_id: int,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """取消订阅（本人）"""
    return await SubscriptionService(db, gateway).cancel_subscription(subscription_id, current_user.id)
