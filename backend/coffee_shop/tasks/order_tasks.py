"""
订单巡检任务：找出下单后未能挂上支付会话的 pending 订单，仅告警不自动重试
"""
import asyncio
import logging
from typing import Any, Dict

from coffee_shop.celery_app import celery_app
from coffee_shop.core.database import create_async_engine_and_session_for_celery
from coffee_shop.services.order_service import find_unattached_orders

logger = logging.getLogger(__name__)


def _run_async(coro):
    """在同步上下文中运行异步协程（Celery 任务内使用）"""
    loop = asyncio.new_event_loop()
    try:
        asyncio.set_event_loop(loop)
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@celery_app.task(bind=True, name="orders.report_unattached")
def report_unattached_orders_task(self) -> Dict[str, Any]:
    """巡检：统计并告警无支付会话的 pending 订单"""
    async def _run():
        engine, session_factory = create_async_engine_and_session_for_celery()
        try:
            async with session_factory() as db:
                return await find_unattached_orders(db)
        finally:
            await engine.dispose()

    orders = _run_async(_run())
    if orders:
        logger.error(
            "发现 %s 个无支付会话的 pending 订单: %s",
            len(orders),
            ", ".join(o.order_number for o in orders),
        )
    return {"count": len(orders), "order_numbers": [o.order_number for o in orders]}
