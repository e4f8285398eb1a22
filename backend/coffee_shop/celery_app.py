"""
Celery 应用：邮件通知与订单巡检两个队列
"""
from urllib.parse import urlparse, urlunparse, parse_qs, urlencode

from celery import Celery
from celery.schedules import crontab

from coffee_shop.core.config import settings


def _redis_url_with_ssl(url: str, cert_reqs: str = "CERT_NONE") -> str:
    """托管 Redis（rediss://）需显式带 ssl_cert_reqs，否则 broker 连接直接报错"""
    if not url or not url.strip().lower().startswith("rediss://"):
        return url
    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    query.setdefault("ssl_cert_reqs", [cert_reqs])
    return urlunparse(parsed._replace(query=urlencode(query, doseq=True)))


celery_app = Celery(
    "coffee_shop",
    broker=_redis_url_with_ssl(settings.CELERY_BROKER_URL or settings.REDIS_URL),
    backend=_redis_url_with_ssl(settings.CELERY_RESULT_BACKEND or settings.REDIS_URL),
    include=["coffee_shop.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
    task_ignore_result=True,
    task_routes={
        "notifications.*": {"queue": "notifications"},
        "orders.*": {"queue": "orders"},
    },
    # 巡检频率与宽限期同一量级即可
    beat_schedule={
        "report-unattached-orders": {
            "task": "orders.report_unattached",
            "schedule": crontab(minute="*/15"),
        },
    },
    worker_concurrency=2,
)
