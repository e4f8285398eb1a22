"""
Stripe 支付网关适配层

进程启动时构造一个实例挂到 app.state，通过依赖注入传给路由/服务，
不使用模块级全局 stripe.api_key。Stripe SDK 为同步调用，统一放到线程池执行。
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import stripe

from coffee_shop.core.config import settings
from coffee_shop.core.exceptions import GatewayUnavailable, SignatureInvalid

logger = logging.getLogger(__name__)


@dataclass
class CheckoutSession:
    id: str
    url: str


@dataclass
class RecurringBilling:
    id: str
    status: str
    client_secret: Optional[str] = None


class PaymentGateway:
    """Stripe 能力封装：结账会话、客户、订阅、Webhook 验签"""

    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        currency: str = "usd",
        success_url: str = "",
        cancel_url: str = "",
        webhook_tolerance: int = 300,
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.currency = currency
        self.success_url = success_url
        self.cancel_url = cancel_url
        self.webhook_tolerance = webhook_tolerance

    @classmethod
    def from_settings(cls) -> "PaymentGateway":
        return cls(
            api_key=settings.STRIPE_SECRET_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            currency=settings.STRIPE_CURRENCY,
            success_url=settings.checkout_success_url,
            cancel_url=settings.checkout_cancel_url,
            webhook_tolerance=settings.STRIPE_WEBHOOK_TOLERANCE,
        )

    async def _call(self, operation: str, fn, *args, **kwargs):
        """在线程池执行 SDK 调用，Stripe 错误统一转换为 GatewayUnavailable"""
        kwargs.setdefault("api_key", self.api_key)
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except stripe.StripeError as e:
            logger.error("Stripe %s 失败: %s (%s)", operation, e, type(e).__name__)
            raise GatewayUnavailable() from e

    def build_line_items(self, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """订单条目转换为 Stripe price_data 结构（金额单位：美分）"""
        return [
            {
                "price_data": {
                    "currency": self.currency,
                    "product_data": {"name": item["name"]},
                    "unit_amount": int(item["price"]),
                },
                "quantity": int(item["quantity"]),
            }
            for item in items
        ]

    async def create_checkout_session(
        self,
        line_items: List[Dict[str, Any]],
        metadata: Dict[str, str],
        customer_email: str,
        idempotency_key: Optional[str] = None,
    ) -> CheckoutSession:
        """创建一次性支付的 Checkout Session"""
        params = dict(
            mode="payment",
            payment_method_types=["card"],
            line_items=self.build_line_items(line_items),
            metadata=metadata,
            payment_intent_data={"metadata": metadata},
            customer_email=customer_email,
            success_url=self.success_url,
            cancel_url=self.cancel_url,
        )
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        session = await self._call("checkout.Session.create", stripe.checkout.Session.create, **params)
        return CheckoutSession(id=session["id"], url=session["url"])

    async def create_customer(self, email: str, name: str, metadata: Dict[str, str]) -> str:
        customer = await self._call(
            "Customer.create",
            stripe.Customer.create,
            email=email,
            name=name,
            metadata=metadata,
        )
        return customer["id"]

    async def create_subscription(
        self,
        customer_id: str,
        price_id: str,
        metadata: Dict[str, str],
    ) -> RecurringBilling:
        """创建周期扣款；首期账单待前端用 client_secret 确认支付"""
        subscription = await self._call(
            "Subscription.create",
            stripe.Subscription.create,
            customer=customer_id,
            items=[{"price": price_id}],
            metadata=metadata,
            payment_behavior="default_incomplete",
            payment_settings={"save_default_payment_method": "on_subscription"},
            expand=["latest_invoice.payment_intent"],
        )
        client_secret = None
        try:
            client_secret = subscription["latest_invoice"]["payment_intent"]["client_secret"]
        except (KeyError, TypeError):
            logger.info("订阅 %s 未返回首期 client_secret", subscription["id"])
        return RecurringBilling(
            id=subscription["id"],
            status=subscription["status"],
            client_secret=client_secret,
        )

    async def cancel_subscription(self, subscription_id: str) -> RecurringBilling:
        """到期后取消，当前周期内仍会配送"""
        subscription = await self._call(
            "Subscription.modify",
            stripe.Subscription.modify,
            subscription_id,
            cancel_at_period_end=True,
        )
        return RecurringBilling(id=subscription["id"], status=subscription["status"])

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """校验 Stripe-Signature 后解析事件；任何失败都只抛 SignatureInvalid，不暴露细节"""
        if not signature or not self.webhook_secret:
            logger.warning("Webhook 缺少签名头或未配置 STRIPE_WEBHOOK_SECRET")
            raise SignatureInvalid()
        try:
            text = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                text, signature, self.webhook_secret, self.webhook_tolerance
            )
            return json.loads(text)
        except stripe.SignatureVerificationError as e:
            logger.warning("Webhook 签名校验失败: %s", e)
            raise SignatureInvalid() from e
        except (UnicodeDecodeError, ValueError) as e:
            logger.warning("Webhook 报文无法解析: %s", e)
            raise SignatureInvalid() from e
