"""
Stripe Webhook 事件Schema

原始事件按 type 映射为封闭的几种事件，每种只携带对账需要的字段；
未识别的 type 统一落到 UnknownEvent，接收后忽略。
"""
from enum import Enum
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel


class EventOutcome(str, Enum):
    PROCESSED = "processed"  # 产生了状态变更
    SKIPPED = "skipped"      # 无匹配记录或重复投递，未做变更
    IGNORED = "ignored"      # 未识别的事件类型
    FAILED = "failed"        # 处理异常，已回滚，留待离线排查


class _StripeEvent(BaseModel):
    event_id: str
    event_type: str


class PaymentSucceeded(_StripeEvent):
    """支付成功：reference 为 Checkout Session ID 或 PaymentIntent ID"""
    kind: Literal["payment_succeeded"] = "payment_succeeded"
    reference: str
    payment_intent_id: Optional[str] = None


class PaymentFailed(_StripeEvent):
    """支付失败/会话过期"""
    kind: Literal["payment_failed"] = "payment_failed"
    reference: str


class PaymentPending(_StripeEvent):
    """结账完成但款项未到（异步支付方式），等待后续 async_payment_* 事件"""
    kind: Literal["payment_pending"] = "payment_pending"
    reference: str


class InvoicePaid(_StripeEvent):
    """订阅周期账单支付成功"""
    kind: Literal["invoice_paid"] = "invoice_paid"
    subscription_id: Optional[str] = None


class SubscriptionDeleted(_StripeEvent):
    """订阅在 Stripe 侧被删除"""
    kind: Literal["subscription_deleted"] = "subscription_deleted"
    subscription_id: str


class UnknownEvent(_StripeEvent):
    kind: Literal["unknown"] = "unknown"


GatewayEvent = Union[
    PaymentSucceeded,
    PaymentFailed,
    PaymentPending,
    InvoicePaid,
    SubscriptionDeleted,
    UnknownEvent,
]


class WebhookAck(BaseModel):
    """Webhook 响应：签名通过后一律 200"""
    received: bool = True
    event_id: Optional[str] = None
    outcome: EventOutcome
    detail: Optional[str] = None


def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    """兼容新旧 API 版本：旧版在 invoice.subscription，新版在 parent.subscription_details"""
    sub = invoice.get("subscription")
    if isinstance(sub, dict):
        sub = sub.get("id")
    if sub:
        return sub
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    sub = details.get("subscription")
    if isinstance(sub, dict):
        sub = sub.get("id")
    return sub or None


def _id_of(value: Any) -> Optional[str]:
    # expand 过的字段是对象，未 expand 时是字符串 ID
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def parse_event(raw: Dict[str, Any]) -> GatewayEvent:
    """把已验签的原始事件转换为对应的事件类型；字段缺失时抛 pydantic.ValidationError"""
    event_type = raw.get("type") or "unknown"
    event_id = raw.get("id") or ""
    obj = (raw.get("data") or {}).get("object") or {}
    base = {"event_id": event_id, "event_type": event_type}

    if event_type == "checkout.session.completed":
        if obj.get("payment_status") in ("paid", "no_payment_required"):
            return PaymentSucceeded(
                **base,
                reference=obj.get("id"),
                payment_intent_id=_id_of(obj.get("payment_intent")),
            )
        return PaymentPending(**base, reference=obj.get("id"))

    if event_type == "checkout.session.async_payment_succeeded":
        return PaymentSucceeded(
            **base,
            reference=obj.get("id"),
            payment_intent_id=_id_of(obj.get("payment_intent")),
        )

    if event_type in ("checkout.session.async_payment_failed", "checkout.session.expired"):
        return PaymentFailed(**base, reference=obj.get("id"))

    if event_type == "payment_intent.succeeded":
        return PaymentSucceeded(**base, reference=obj.get("id"), payment_intent_id=obj.get("id"))

    if event_type == "payment_intent.payment_failed":
        return PaymentFailed(**base, reference=obj.get("id"))

    # 同一张账单还会触发 invoice.paid（事件 ID 不同），只处理这一种
    if event_type == "invoice.payment_succeeded":
        return InvoicePaid(**base, subscription_id=_invoice_subscription_id(obj))

    if event_type == "customer.subscription.deleted":
        return SubscriptionDeleted(**base, subscription_id=obj.get("id"))

    return UnknownEvent(**base)
