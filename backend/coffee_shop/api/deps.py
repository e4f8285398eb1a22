"""
通用依赖：支付网关、通知发送器（进程启动时创建，挂在 app.state 上）
"""
from fastapi import Request

from coffee_shop.services.notification_service import Notifier
from coffee_shop.services.payment_gateway import PaymentGateway


def get_payment_gateway(request: Request) -> PaymentGateway:
    """获取启动时创建的支付网关实例"""
    return request.app.state.payment_gateway


def get_notifier(request: Request) -> Notifier:
    """获取启动时创建的通知发送器"""
    return request.app.state.notifier
