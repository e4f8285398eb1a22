"""
邮件通知：投递到 Celery 队列后立即返回，任何失败只记日志，不影响调用方
"""
import asyncio
import html as html_lib
import logging

from coffee_shop.core.config import settings
from coffee_shop.models.order import Order

logger = logging.getLogger(__name__)

# 提交 Celery 任务的超时（秒）；broker 不可达时 delay() 会阻塞重连
CELERY_SUBMIT_TIMEOUT = 5.0


def format_amount(cents: int) -> str:
    """美分转为展示金额，如 5497 -> $54.97"""
    return f"${cents // 100}.{cents % 100:02d}"


class Notifier:
    """通知发送器（fire-and-forget）"""

    def __init__(self, submit_timeout: float = CELERY_SUBMIT_TIMEOUT):
        self.submit_timeout = submit_timeout

    def _enqueue(self, recipient: str, subject: str, body_html: str) -> None:
        from coffee_shop.tasks.notification_tasks import send_email_task
        send_email_task.delay(recipient, subject, body_html)

    async def send(self, recipient: str, subject: str, body_html: str) -> bool:
        """在线程池中投递邮件任务，不阻塞事件循环；返回是否成功入队"""
        if not recipient:
            logger.info("收件人为空，跳过邮件: %s", subject)
            return False
        loop = asyncio.get_running_loop()
        try:
            await asyncio.wait_for(
                loop.run_in_executor(None, self._enqueue, recipient, subject, body_html),
                timeout=self.submit_timeout,
            )
            return True
        except asyncio.TimeoutError:
            logger.warning("邮件任务入队超时 to=%s subject=%s", recipient, subject)
            return False
        except Exception as e:
            logger.warning("邮件任务入队失败 to=%s subject=%s: %s", recipient, subject, e)
            return False

    async def order_placed(self, order: Order) -> bool:
        address = order.shipping_address or {}
        name = html_lib.escape(address.get("full_name", ""))
        subject = f"Order placed - {order.order_number}"
        body = f"""
    <h2>We received your order</h2>
    <p>Hi {name},</p>
    <p>Your order <strong>{order.order_number}</strong> has been placed and is awaiting payment.</p>
    <p><strong>Total:</strong> {format_amount(order.total_amount)}</p>
    """
        return await self.send(address.get("email"), subject, body)

    async def order_confirmation(self, order: Order) -> bool:
        address = order.shipping_address or {}
        name = html_lib.escape(address.get("full_name", ""))
        subject = f"Order Confirmation - {order.order_number}"
        body = f"""
    <h2>Thank you for your order!</h2>
    <p>Hi {name},</p>
    <p>Your order <strong>{order.order_number}</strong> has been confirmed.</p>
    <p><strong>Total:</strong> {format_amount(order.total_amount)}</p>
    <p>We'll send you another email when your order ships.</p>
    <p>Thank you for choosing Artisan Coffee!</p>
    """
        return await self.send(address.get("email"), subject, body)

    async def stock_alert(self, order: Order, product_ids) -> bool:
        """支付成功但库存扣减失败，通知运营补货或退款"""
        if not settings.ADMIN_EMAIL:
            return False
        subject = f"Stock alert - {order.order_number}"
        body = f"""
    <h2>Stock could not be decremented</h2>
    <p>Order <strong>{order.order_number}</strong> was paid, but stock was short for products: {html_lib.escape(str(list(product_ids)))}.</p>
    <p>Please restock or refund.</p>
    """
        return await self.send(settings.ADMIN_EMAIL, subject, body)
