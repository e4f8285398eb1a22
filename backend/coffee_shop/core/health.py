"""
健康检查：数据库、Redis（邮件/巡检任务队列）、支付配置
"""
import logging
from typing import Tuple

from sqlalchemy import text

from coffee_shop.core.config import settings

logger = logging.getLogger(__name__)


async def check_db() -> Tuple[bool, str]:
    from coffee_shop.core.database import engine
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True, "ok"
    except Exception as e:
        logger.warning("健康检查 DB 失败: %s", e)
        return False, str(e)


def check_redis() -> Tuple[bool, str]:
    """同步 ping，调用方放到线程池执行"""
    broker = settings.CELERY_BROKER_URL or settings.REDIS_URL
    if not broker.strip():
        return False, "REDIS_URL 未配置"
    try:
        import redis
        redis.Redis.from_url(broker, socket_connect_timeout=2).ping()
        return True, "ok"
    except Exception as e:
        logger.warning("健康检查 Redis 失败: %s", e)
        return False, str(e)


def check_payment_config() -> Tuple[bool, str]:
    """只检查 Stripe 密钥是否配置，不发起网络请求"""
    missing = [
        name for name in ("STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET")
        if not getattr(settings, name, "")
    ]
    if missing:
        return False, f"未配置: {', '.join(missing)}"
    return True, "ok"
