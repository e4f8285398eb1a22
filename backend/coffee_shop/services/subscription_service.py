"""
订阅服务：创建/取消周期配送订阅，计算下次配送时间
"""
import calendar
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coffee_shop.core.exceptions import NotFoundError, PermissionDenied, ProductUnavailable, SubscriptionError
from coffee_shop.models.subscription import DeliveryFrequency, Subscription, SubscriptionStatus
from coffee_shop.models.user import User
from coffee_shop.schemas.subscription import SubscriptionCreate
from coffee_shop.services.catalog_service import CatalogService
from coffee_shop.services.payment_gateway import PaymentGateway

logger = logging.getLogger(__name__)


def add_months(moment: datetime, months: int) -> datetime:
    """按日历月相加，目标月份天数不足时取月末（1月31日 + 1月 = 2月28/29日）"""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def next_delivery_after(now: datetime, frequency) -> datetime:
    """根据配送频率计算下次配送时间"""
    frequency = DeliveryFrequency(frequency)
    if frequency == DeliveryFrequency.WEEKLY:
        return now + timedelta(days=7)
    if frequency == DeliveryFrequency.BIWEEKLY:
        return now + timedelta(days=14)
    return add_months(now, 1)


def as_utc(moment: Optional[datetime]) -> Optional[datetime]:
    """SQLite 读回的时间不带时区，统一按 UTC 处理"""
    if moment is None or moment.tzinfo is not None:
        return moment
    return moment.replace(tzinfo=timezone.utc)


class SubscriptionService:
    """订阅服务类"""

    def __init__(self, db: AsyncSession, gateway: Optional[PaymentGateway] = None):
        self.db = db
        self.gateway = gateway
        self.catalog = CatalogService(db)

    async def list_user_subscriptions(self, user_id: int) -> List[Subscription]:
        result = await self.db.execute(
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        )
        return result.scalars().all()

    async def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        result = await self.db.execute(select(Subscription).where(Subscription.id == subscription_id))
        return result.scalar_one_or_none()

    async def create_subscription(
        self,
        data: SubscriptionCreate,
        user_id: int,
    ) -> Tuple[Subscription, Optional[str]]:
        """先在 Stripe 建立周期扣款，再落库 active 订阅；返回 (订阅, 首期 client_secret)"""
        product = await self.catalog.get_product(data.product_id)
        if not product or not product.is_active:
            raise ProductUnavailable(data.product_id)
        if not product.stripe_price_id:
            raise SubscriptionError(f"商品 {product.name} 不支持订阅")

        user = (await self.db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
        if not user:
            raise NotFoundError("用户不存在")
        if not user.stripe_customer_id:
            raise SubscriptionError("未找到 Stripe 客户信息，请联系客服")

        billing = await self.gateway.create_subscription(
            user.stripe_customer_id,
            product.stripe_price_id,
            {
                "user_id": str(user.id),
                "product_id": str(product.id),
                "frequency": data.frequency.value,
            },
        )

        subscription = Subscription(
            user_id=user.id,
            product_id=product.id,
            frequency=data.frequency.value,
            quantity=data.quantity,
            status=SubscriptionStatus.ACTIVE.value,
            stripe_subscription_id=billing.id,
            shipping_address=data.shipping_address or user.address,
        )
        self.db.add(subscription)
        await self.db.commit()
        await self.db.refresh(subscription)
        logger.info("订阅 %s 已创建（stripe=%s）", subscription.id, billing.id)
        return subscription, billing.client_secret

    async def cancel_subscription(self, subscription_id: int, user_id: int) -> Subscription:
        """用户取消订阅；已取消的直接返回"""
        subscription = await self.get_subscription(subscription_id)
        if not subscription:
            raise NotFoundError("订阅不存在")
        if subscription.user_id != user_id:
            raise PermissionDenied()
        if subscription.status == SubscriptionStatus.CANCELLED.value:
            return subscription

        await self.gateway.cancel_subscription(subscription.stripe_subscription_id)
        subscription.status = SubscriptionStatus.CANCELLED.value
        await self.db.commit()
        await self.db.refresh(subscription)
        logger.info("订阅 %s 已由用户取消", subscription.id)
        return subscription
