"""
FastAPI主应用入口
"""
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from coffee_shop import models  # noqa: F401  注册全部表到 Base.metadata
from coffee_shop.api.v1 import api_router
from coffee_shop.core.config import settings
from coffee_shop.core.database import engine, Base
from coffee_shop.core.exceptions import ShopError
from coffee_shop.core.health import check_db, check_payment_config, check_redis
from coffee_shop.core.logging import setup_logging
from coffee_shop.services.notification_service import Notifier
from coffee_shop.services.payment_gateway import PaymentGateway

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    # 启动时执行
    setup_logging()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    # 外部依赖在此处显式创建一次，通过依赖注入下发
    app.state.payment_gateway = PaymentGateway.from_settings()
    app.state.notifier = Notifier()

    yield

    # 关闭时执行
    await engine.dispose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="咖啡商城后端：订单、支付对账与订阅配送",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# GZip压缩
app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """为每个请求生成或透传 X-Request-ID，并写入 request.state"""
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    response = await call_next(request)
    response.headers["X-Request-ID"] = rid
    return response


def _error_response(message: str, request_id: str | None = None) -> dict:
    body = {"status": "error", "message": message}
    if request_id:
        body["request_id"] = request_id
    return body


@app.exception_handler(ShopError)
async def shop_exception_handler(request: Request, exc: ShopError):
    """业务异常：直接返回可读提示"""
    rid = getattr(request.state, "request_id", None)
    body = _error_response(exc.message, rid)
    # 支付网关失败时订单已落库，返回订单号便于客服追踪
    if getattr(exc, "order_number", None):
        body["order_number"] = exc.order_number
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """统一 HTTP 异常响应格式"""
    rid = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_response(
            exc.detail if isinstance(exc.detail, str) else str(exc.detail),
            rid,
        ),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """请求体校验错误统一按 400 返回"""
    rid = getattr(request.state, "request_id", None)
    errs = exc.errors()
    message = errs[0].get("msg", "请求参数校验失败") if errs else "请求参数校验失败"
    body = _error_response(message, rid)
    body["errors"] = jsonable_encoder(errs)
    return JSONResponse(status_code=400, content=body)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """未捕获异常统一格式，不泄露内部细节"""
    rid = getattr(request.state, "request_id", None)
    logger.exception("未处理异常 %s %s (request_id=%s)", request.method, request.url.path, rid)
    return JSONResponse(status_code=500, content=_error_response("服务器内部错误", rid))


# 注册路由
app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/")
async def root():
    """根路径"""
    return {
        "message": f"{settings.PROJECT_NAME} API",
        "version": "1.0.0",
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """健康检查：返回各依赖连通状态"""
    db_ok, db_msg = await check_db()
    redis_ok, redis_msg = await asyncio.to_thread(check_redis)
    payment_ok, payment_msg = check_payment_config()
    all_ok = db_ok and redis_ok and payment_ok
    return JSONResponse(
        content={
            "status": "healthy" if all_ok else "degraded",
            "service": "coffee-shop-api",
            "dependencies": {
                "database": {"ok": db_ok, "message": db_msg},
                "redis": {"ok": redis_ok, "message": redis_msg},
                "payment": {"ok": payment_ok, "message": payment_msg},
            },
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "coffee_shop.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_excludes=["**/__pycache__/**", "**/*.pyc"],
    )
