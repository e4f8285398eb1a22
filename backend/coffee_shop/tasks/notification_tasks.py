"""
通知异步任务：通过 Resend 发送邮件
在 Celery Worker 中执行，发送失败只记录日志，不影响订单/订阅状态。
"""
import logging
from typing import Any, Dict

import resend

from coffee_shop.celery_app import celery_app
from coffee_shop.core.config import settings

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="notifications.send_email", max_retries=3, default_retry_delay=60)
def send_email_task(self, recipient: str, subject: str, html: str) -> Dict[str, Any]:
    """异步：发送一封邮件"""
    if not settings.EMAIL_ENABLED or not settings.RESEND_API_KEY:
        logger.info("邮件发送未启用，丢弃邮件 to=%s subject=%s", recipient, subject)
        return {"sent": False, "reason": "disabled"}

    resend.api_key = settings.RESEND_API_KEY
    try:
        response = resend.Emails.send({
            "from": settings.EMAIL_FROM,
            "to": [recipient],
            "subject": subject,
            "html": html,
        })
    except Exception as e:
        logger.warning("邮件发送失败 to=%s subject=%s: %s", recipient, subject, e)
        raise self.retry(exc=e)

    message_id = response.get("id") if isinstance(response, dict) else None
    logger.info("邮件已发送 to=%s id=%s", recipient, message_id)
    return {"sent": True, "id": message_id}
