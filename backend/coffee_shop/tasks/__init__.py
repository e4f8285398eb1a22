"""
Celery 任务模块：邮件通知、订单巡检
"""
from coffee_shop.tasks.notification_tasks import send_email_task
from coffee_shop.tasks.order_tasks import report_unattached_orders_task

__all__ = [
    "send_email_task",
    "report_unattached_orders_task",
]
