"""
应用配置：从环境变量读取配置
"""
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """应用配置类"""

    # 项目根目录
    PROJECT_ROOT: Path = Path(__file__).parent.parent.parent

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT.parent / ".env"),  # 从项目根目录读取 .env
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # API配置
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Artisan Coffee 商城"
    CORS_ORIGINS: List[str] = ["*"]  # CORS允许的源

    # 数据库配置
    DATABASE_URL: str = "sqlite+aiosqlite:///./coffee_shop.db"
    DATABASE_ECHO: bool = False

    # Redis配置
    REDIS_URL: str = "redis://localhost:6379/0"

    # Celery配置（不填则与 REDIS_URL 一致，只维护一份 Redis 地址即可）
    CELERY_BROKER_URL: str = ""
    CELERY_RESULT_BACKEND: str = ""
    CELERY_TASK_ALWAYS_EAGER: bool = False  # 本地调试/测试时同步执行任务

    # 安全配置
    JWT_SECRET_KEY: str = "your-jwt-secret-key-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 10080

    # Stripe 支付配置
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_WEBHOOK_TOLERANCE: int = 300  # 签名时间戳容差（秒）
    STRIPE_CURRENCY: str = "usd"

    # 前端回跳地址
    FRONTEND_URL: str = "http://localhost:3000"
    CHECKOUT_SUCCESS_PATH: str = "/checkout/success"
    CHECKOUT_CANCEL_PATH: str = "/checkout/cancel"

    # 订单配置
    ORDER_NUMBER_PREFIX: str = "ORD"
    UNATTACHED_ORDER_GRACE_MINUTES: int = 30  # 超过该时间仍无支付会话的 pending 订单视为异常

    # 邮件配置（Resend）
    EMAIL_ENABLED: bool = True
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "Artisan Coffee <orders@artisan-coffee.example>"
    ADMIN_EMAIL: str = ""

    # 日志配置
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Path = PROJECT_ROOT / "logs" / "app.log"

    @property
    def checkout_success_url(self) -> str:
        """支付成功回跳地址，{CHECKOUT_SESSION_ID} 由 Stripe 替换"""
        return f"{self.FRONTEND_URL.rstrip('/')}{self.CHECKOUT_SUCCESS_PATH}?session_id={{CHECKOUT_SESSION_ID}}"

    @property
    def checkout_cancel_url(self) -> str:
        """支付取消回跳地址"""
        return f"{self.FRONTEND_URL.rstrip('/')}{self.CHECKOUT_CANCEL_PATH}"


# 创建全局配置实例
settings = Settings()
