"""
Stripe Webhook API
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from coffee_shop.api.deps import get_notifier, get_payment_gateway
from coffee_shop.core.database import get_db
from coffee_shop.schemas.webhook import WebhookAck
from coffee_shop.services.notification_service import Notifier
from coffee_shop.services.payment_gateway import PaymentGateway
from coffee_shop.services.webhook_service import WebhookReconciler

router = APIRouter()


@router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: Notifier = Depends(get_notifier),
):
    """接收 Stripe 事件：签名必须基于原始请求体校验，校验失败返回 400，其余一律 200"""
    payload = await request.body()
    raw_event = gateway.verify_webhook(payload, request.headers.get("stripe-signature"))
    return await WebhookReconciler(db, notifier).reconcile(raw_event)
