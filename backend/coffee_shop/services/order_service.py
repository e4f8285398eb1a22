"""
订单服务：下单（校验库存、计算金额、创建支付会话）与订单查询/运营改状态
"""
import logging
import uuid
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coffee_shop.core.config import settings
from coffee_shop.core.exceptions import (
    GatewayUnavailable,
    InsufficientStock,
    InvalidStatusTransition,
    NotFoundError,
    PermissionDenied,
    ProductUnavailable,
    ValidationError,
)
from coffee_shop.models.order import Order, OrderStatus, FULFILLMENT_FLOW, STATUS_LABELS, TERMINAL_STATUSES
from coffee_shop.schemas.auth import UserResponse
from coffee_shop.schemas.order import OrderCreate
from coffee_shop.services.catalog_service import CatalogService
from coffee_shop.services.notification_service import Notifier
from coffee_shop.services.payment_gateway import PaymentGateway

logger = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 3


def generate_order_number(prefix: str = None) -> str:
    """生成订单号，如 ORD-9F8C1A2B"""
    prefix = prefix or settings.ORDER_NUMBER_PREFIX
    return f"{prefix}-{uuid.uuid4().hex[:8].upper()}"


class OrderService:
    """订单服务类"""

    def __init__(
        self,
        db: AsyncSession,
        gateway: Optional[PaymentGateway] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.notifier = notifier
        self.catalog = CatalogService(db)

    async def _price_cart(self, order_data: OrderCreate) -> Tuple[List[dict], int]:
        """校验购物车并快照单价；同一商品多行合并后再校验库存"""
        if not order_data.items:
            raise ValidationError("购物车为空")
        quantities = OrderedDict()
        for line in order_data.items:
            quantities[line.product_id] = quantities.get(line.product_id, 0) + line.quantity

        items = []
        total_amount = 0
        for product_id, quantity in quantities.items():
            product = await self.catalog.get_product(product_id)
            if not product or not product.is_active:
                raise ProductUnavailable(product_id)
            # 仅为下单时刻的校验，不做库存预留
            if product.stock < quantity:
                raise InsufficientStock(product.name, quantity, product.stock)

            total_amount += product.price * quantity
            items.append({
                "product_id": product.id,
                "name": product.name,
                "quantity": quantity,
                "price": product.price,
            })
        return items, total_amount

    async def _persist_pending(
        self,
        order_data: OrderCreate,
        items: List[dict],
        total_amount: int,
        user_id: Optional[int],
    ) -> Order:
        """写入 pending 订单；订单号撞车时重新生成"""
        for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
            order = Order(
                order_number=generate_order_number(),
                user_id=user_id,
                items=items,
                total_amount=total_amount,
                status=OrderStatus.PENDING.value,
                shipping_address=order_data.shipping_address.model_dump(),
                notes=order_data.notes,
            )
            self.db.add(order)
            try:
                await self.db.commit()
            except IntegrityError:
                await self.db.rollback()
                logger.warning("订单号冲突，重新生成（第 %s 次）", attempt)
                continue
            await self.db.refresh(order)
            return order
        raise RuntimeError("订单号生成失败")

    async def create_order(
        self,
        order_data: OrderCreate,
        user_id: Optional[int] = None,
    ) -> Tuple[Order, str]:
        """创建订单并发起 Stripe Checkout，返回 (订单, 支付跳转地址)"""
        items, total_amount = await self._price_cart(order_data)
        order = await self._persist_pending(order_data, items, total_amount, user_id)
        logger.info("订单 %s 已创建，金额 %s", order.order_number, total_amount)

        try:
            session = await self.gateway.create_checkout_session(
                line_items=items,
                metadata={"order_id": str(order.id), "order_number": order.order_number},
                customer_email=order_data.shipping_address.email,
                idempotency_key=f"checkout_{order.order_number}",
            )
        except GatewayUnavailable as e:
            # 订单保持 pending 且无会话，由巡检任务/运营处理
            logger.error("订单 %s 创建支付会话失败，保持 pending", order.order_number)
            e.order_number = order.order_number
            raise

        await self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.checkout_session_id.is_(None))
            .values(checkout_session_id=session.id)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        order.checkout_session_id = session.id

        if self.notifier:
            await self.notifier.order_placed(order)
        return order, session.url

    async def list_user_orders(self, user_id: int) -> List[Order]:
        """获取用户订单，按创建时间倒序"""
        result = await self.db.execute(
            select(Order).where(Order.user_id == user_id).order_by(Order.created_at.desc(), Order.id.desc())
        )
        return result.scalars().all()

    async def get_order(self, order_id: int) -> Optional[Order]:
        result = await self.db.execute(select(Order).where(Order.id == order_id))
        return result.scalar_one_or_none()

    async def get_order_for_user(self, order_id: int, user: UserResponse) -> Order:
        """本人或管理员可查看"""
        order = await self.get_order(order_id)
        if not order:
            raise NotFoundError("订单不存在")
        if order.user_id != user.id and user.role != "admin":
            raise PermissionDenied()
        return order

    async def update_status(
        self,
        order_id: int,
        new_status: OrderStatus,
        tracking_number: Optional[str] = None,
    ) -> Order:
        """运营修改订单状态：沿履约方向推进，或从任意未取消状态取消；已取消不可再改"""
        order = await self.get_order(order_id)
        if not order:
            raise NotFoundError("订单不存在")

        current = OrderStatus(order.status)
        if new_status != current:
            if current in TERMINAL_STATUSES:
                raise InvalidStatusTransition(
                    f"订单{STATUS_LABELS[current]}，不能改为{STATUS_LABELS[new_status]}"
                )
            if new_status != OrderStatus.CANCELLED and (
                FULFILLMENT_FLOW.index(new_status) < FULFILLMENT_FLOW.index(current)
            ):
                raise InvalidStatusTransition(
                    f"订单状态不能从{STATUS_LABELS[current]}回退到{STATUS_LABELS[new_status]}"
                )
            order.status = new_status.value
            if new_status == OrderStatus.PAID and order.paid_at is None:
                order.paid_at = datetime.now(timezone.utc)

        if tracking_number:
            order.tracking_number = tracking_number
        await self.db.commit()
        await self.db.refresh(order)
        logger.info("订单 %s 状态由运营更新: %s -> %s", order.order_number, current.value, order.status)
        return order


async def find_unattached_orders(db: AsyncSession, grace_minutes: int = None) -> List[Order]:
    """超过宽限期仍没有支付会话的 pending 订单（支付网关调用失败遗留）"""
    if grace_minutes is None:
        grace_minutes = settings.UNATTACHED_ORDER_GRACE_MINUTES
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=grace_minutes)
    result = await db.execute(
        select(Order)
        .where(
            Order.status == OrderStatus.PENDING.value,
            Order.checkout_session_id.is_(None),
            Order.created_at <= cutoff,
        )
        .order_by(Order.created_at)
    )
    return result.scalars().all()
