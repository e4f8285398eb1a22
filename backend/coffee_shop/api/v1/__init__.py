"""
API v1 路由
"""
from fastapi import APIRouter
from coffee_shop.api.v1 import auth, products, orders, subscriptions, webhooks

api_router = APIRouter()

# 注册子路由
api_router.include_router(auth.router, prefix="/auth", tags=["认证"])
api_router.include_router(products.router, prefix="/products", tags=["商品"])
api_router.include_router(orders.router, prefix="/orders", tags=["订单"])
api_router.include_router(subscriptions.router, prefix="/subscriptions", tags=["订阅"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["Webhook"])
