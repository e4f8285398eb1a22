"""
Webhook 对账服务

把 Stripe 的异步事件落到订单/订阅状态上。Stripe 可能重复投递、乱序投递或漏投，
因此每个处理器都必须幂等，找不到关联记录时只记日志不报错：
- 支付成功：pending -> paid（条件更新，只有抢到状态变更的那一次才扣库存、发确认邮件）
- 支付失败：pending -> cancelled，已支付/已取消的订单不受影响
- 订阅账单支付成功：下次配送时间 = 当前时间 + 配送周期，只前移不回退
- 订阅删除：置为 cancelled（终态）
单个事件处理异常时回滚该事件的写入并记录为 failed，接口仍返回 200，避免 Stripe 无限重试。
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coffee_shop.models.order import STATUS_LABELS, Order, OrderStatus
from coffee_shop.models.subscription import Subscription, SubscriptionStatus
from coffee_shop.models.webhook_event import WebhookEvent
from coffee_shop.schemas.webhook import (
    EventOutcome,
    InvoicePaid,
    PaymentFailed,
    PaymentPending,
    PaymentSucceeded,
    SubscriptionDeleted,
    UnknownEvent,
    WebhookAck,
    parse_event,
)
from coffee_shop.services.catalog_service import CatalogService
from coffee_shop.services.notification_service import Notifier
from coffee_shop.services.subscription_service import as_utc, next_delivery_after

logger = logging.getLogger(__name__)

# 这些结果的事件再次投递时直接确认，不再执行处理器
SETTLED_OUTCOMES = {EventOutcome.PROCESSED.value, EventOutcome.SKIPPED.value, EventOutcome.IGNORED.value}


@dataclass
class HandlerResult:
    outcome: EventOutcome
    detail: str
    reference: Optional[str] = None


class WebhookReconciler:
    """Webhook 对账服务类"""

    def __init__(self, db: AsyncSession, notifier: Optional[Notifier] = None):
        self.db = db
        self.notifier = notifier
        self.catalog = CatalogService(db)
        self._handlers = {
            PaymentSucceeded: self._handle_payment_succeeded,
            PaymentFailed: self._handle_payment_failed,
            PaymentPending: self._handle_payment_pending,
            InvoicePaid: self._handle_invoice_paid,
            SubscriptionDeleted: self._handle_subscription_deleted,
            UnknownEvent: self._handle_unknown,
        }

    async def reconcile(self, raw: dict) -> WebhookAck:
        """处理一个已验签的事件，永不抛出异常"""
        event_id = raw.get("id")
        event_type = raw.get("type") or "unknown"

        if event_id:
            settled = await self._settled_event(event_id)
            if settled is not None:
                logger.info("重复投递的事件 %s（%s），上次结果 %s", event_id, event_type, settled.outcome)
                return WebhookAck(event_id=event_id, outcome=EventOutcome.SKIPPED, detail="重复事件")

        try:
            event = parse_event(raw)
            result = await self._handlers[type(event)](event)
        except Exception as e:
            await self.db.rollback()
            logger.exception("Webhook 事件 %s（%s）处理失败", event_id, event_type)
            result = HandlerResult(EventOutcome.FAILED, f"{type(e).__name__}: {e}")

        logger.info(
            "Webhook 事件 %s（%s）结果 %s: %s",
            event_id, event_type, result.outcome.value, result.detail,
        )
        await self._record(event_id, event_type, result)
        return WebhookAck(event_id=event_id, outcome=result.outcome, detail=result.detail)

    # ---------- 订单 ---------- #

    async def _find_order(self, reference: str) -> Optional[Order]:
        """按 Checkout Session ID 或 PaymentIntent ID 查找订单"""
        if not reference:
            return None
        result = await self.db.execute(
            select(Order).where(
                or_(Order.checkout_session_id == reference, Order.payment_intent_id == reference)
            ).execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def _handle_payment_succeeded(self, event: PaymentSucceeded) -> HandlerResult:
        order = await self._find_order(event.reference)
        if not order:
            logger.warning("支付成功事件未匹配到订单: %s", event.reference)
            return HandlerResult(EventOutcome.SKIPPED, "未找到匹配订单", event.reference)
        # rollback 会使实例过期，先取出后面要用的字段
        order_number, observed_status = order.order_number, order.status

        # 条件更新：只有从 pending 变为 paid 的那一次才继续扣库存
        result = await self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == OrderStatus.PENDING.value)
            .values(
                status=OrderStatus.PAID.value,
                paid_at=datetime.now(timezone.utc),
                payment_intent_id=order.payment_intent_id or event.payment_intent_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            if observed_status == OrderStatus.CANCELLED.value:
                logger.error("订单 %s 已取消却收到支付成功事件，需人工核对退款", order_number)
            return HandlerResult(
                EventOutcome.SKIPPED,
                f"订单 {order_number} 当前{STATUS_LABELS[OrderStatus(observed_status)]}，不重复处理",
                event.reference,
            )

        shortages = []
        for item in order.items:
            ok = await self.catalog.decrement_stock(item["product_id"], item["quantity"])
            if not ok:
                shortages.append(item["product_id"])
                logger.error(
                    "库存告警：订单 %s 商品 %s 扣减 %s 失败（库存不足或商品已删除）",
                    order.order_number, item["product_id"], item["quantity"],
                )
        await self.db.commit()

        if self.notifier:
            await self.notifier.order_confirmation(order)
            if shortages:
                await self.notifier.stock_alert(order, shortages)

        detail = f"订单 {order.order_number} 已支付"
        if shortages:
            detail += f"，库存扣减失败商品: {shortages}"
        return HandlerResult(EventOutcome.PROCESSED, detail, event.reference)

    async def _handle_payment_failed(self, event: PaymentFailed) -> HandlerResult:
        order = await self._find_order(event.reference)
        if not order:
            logger.warning("支付失败事件未匹配到订单: %s", event.reference)
            return HandlerResult(EventOutcome.SKIPPED, "未找到匹配订单", event.reference)
        order_number, observed_status = order.order_number, order.status

        result = await self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == OrderStatus.PENDING.value)
            .values(status=OrderStatus.CANCELLED.value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            return HandlerResult(
                EventOutcome.SKIPPED,
                f"订单 {order_number} 当前{STATUS_LABELS[OrderStatus(observed_status)]}，忽略支付失败",
                event.reference,
            )
        await self.db.commit()
        return HandlerResult(EventOutcome.PROCESSED, f"订单 {order_number} 已取消", event.reference)

    async def _handle_payment_pending(self, event: PaymentPending) -> HandlerResult:
        return HandlerResult(EventOutcome.SKIPPED, "款项未到账，等待异步支付结果", event.reference)

    # ---------- 订阅 ---------- #

    async def _find_subscription(self, stripe_subscription_id: str) -> Optional[Subscription]:
        result = await self.db.execute(
            select(Subscription).where(Subscription.stripe_subscription_id == stripe_subscription_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _handle_invoice_paid(self, event: InvoicePaid) -> HandlerResult:
        if not event.subscription_id:
            return HandlerResult(EventOutcome.SKIPPED, "非订阅账单")
        subscription = await self._find_subscription(event.subscription_id)
        if not subscription:
            logger.warning("账单事件未匹配到订阅: %s", event.subscription_id)
            return HandlerResult(EventOutcome.SKIPPED, "未找到匹配订阅", event.subscription_id)
        if subscription.status == SubscriptionStatus.CANCELLED.value:
            return HandlerResult(EventOutcome.SKIPPED, f"订阅 {subscription.id} 已取消", event.subscription_id)

        next_delivery = next_delivery_after(datetime.now(timezone.utc), subscription.frequency)
        current = as_utc(subscription.next_delivery)
        if current is not None and current >= next_delivery:
            return HandlerResult(EventOutcome.SKIPPED, "下次配送时间已更晚，不回退", event.subscription_id)

        # 条件更新保证并发时也只前移
        result = await self.db.execute(
            update(Subscription)
            .where(
                Subscription.id == subscription.id,
                Subscription.status != SubscriptionStatus.CANCELLED.value,
                or_(Subscription.next_delivery.is_(None), Subscription.next_delivery < next_delivery),
            )
            .values(next_delivery=next_delivery)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount != 1:
            return HandlerResult(EventOutcome.SKIPPED, "订阅已被并发更新", event.subscription_id)
        return HandlerResult(
            EventOutcome.PROCESSED,
            f"订阅 {subscription.id} 下次配送 {next_delivery.isoformat()}",
            event.subscription_id,
        )

    async def _handle_subscription_deleted(self, event: SubscriptionDeleted) -> HandlerResult:
        subscription = await self._find_subscription(event.subscription_id)
        if not subscription:
            logger.warning("订阅删除事件未匹配到订阅: %s", event.subscription_id)
            return HandlerResult(EventOutcome.SKIPPED, "未找到匹配订阅", event.subscription_id)
        if subscription.status == SubscriptionStatus.CANCELLED.value:
            return HandlerResult(EventOutcome.SKIPPED, f"订阅 {subscription.id} 已是取消状态", event.subscription_id)

        subscription.status = SubscriptionStatus.CANCELLED.value
        await self.db.commit()
        return HandlerResult(EventOutcome.PROCESSED, f"订阅 {subscription.id} 已取消", event.subscription_id)

    async def _handle_unknown(self, event: UnknownEvent) -> HandlerResult:
        return HandlerResult(EventOutcome.IGNORED, f"未处理的事件类型 {event.event_type}")

    # ---------- 事件记录 ---------- #

    async def _settled_event(self, event_id: str) -> Optional[WebhookEvent]:
        result = await self.db.execute(
            select(WebhookEvent).where(
                WebhookEvent.stripe_event_id == event_id,
                WebhookEvent.outcome.in_(SETTLED_OUTCOMES),
            )
        )
        return result.scalar_one_or_none()

    async def _record(self, event_id: Optional[str], event_type: str, result: HandlerResult) -> None:
        """写入/更新事件处理记录；记录失败不影响确认"""
        if not event_id:
            return
        try:
            existing = (await self.db.execute(
                select(WebhookEvent).where(WebhookEvent.stripe_event_id == event_id)
                .execution_options(populate_existing=True)
            )).scalar_one_or_none()
            if existing and existing.outcome in SETTLED_OUTCOMES:
                # 并发投递的落败方不覆盖已确认的结果
                existing.attempts = (existing.attempts or 0) + 1
            elif existing:
                existing.outcome = result.outcome.value
                existing.detail = result.detail
                existing.reference = result.reference
                existing.attempts = (existing.attempts or 0) + 1
            else:
                self.db.add(WebhookEvent(
                    stripe_event_id=event_id,
                    event_type=event_type,
                    outcome=result.outcome.value,
                    reference=result.reference,
                    detail=result.detail,
                ))
            await self.db.commit()
        except IntegrityError:
            # 同一事件并发投递，另一请求已写入记录
            await self.db.rollback()
            logger.info("事件 %s 记录已存在（并发投递）", event_id)
        except Exception as e:
            await self.db.rollback()
            logger.warning("事件 %s 处理记录写入失败: %s", event_id, e)
