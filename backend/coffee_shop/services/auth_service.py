"""
认证服务（直接使用 bcrypt，避免 passlib 与 bcrypt 版本不兼容）
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
import bcrypt
from jose import jwt, JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from coffee_shop.core.config import settings
from coffee_shop.core.exceptions import GatewayUnavailable
from coffee_shop.models.user import User
from coffee_shop.schemas.auth import UserCreate
from coffee_shop.services.payment_gateway import PaymentGateway

logger = logging.getLogger(__name__)

# bcrypt 最多 72 字节，超长密码需截断（与注册/登录一致）
BCRYPT_MAX_BYTES = 72


def _truncate_password_72(password: str) -> bytes:
    """将密码截断为 72 字节（UTF-8），返回 bytes 供 bcrypt 使用"""
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


class AuthService:
    """认证服务类"""

    def __init__(self, db: AsyncSession, gateway: Optional[PaymentGateway] = None):
        self.db = db
        self.gateway = gateway

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        """验证密码"""
        try:
            return bcrypt.checkpw(
                _truncate_password_72(plain_password),
                hashed_password.encode("utf-8"),
            )
        except ValueError:
            return False

    def get_password_hash(self, password: str) -> str:
        """生成密码哈希"""
        return bcrypt.hashpw(
            _truncate_password_72(password),
            bcrypt.gensalt(),
        ).decode("utf-8")

    def create_access_token(self, data: dict, expires_delta: Optional[timedelta] = None) -> str:
        """创建访问令牌"""
        to_encode = data.copy()
        expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=15))
        to_encode.update({"exp": expire})
        return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

    async def authenticate_user(self, email: str, password: str) -> Optional[User]:
        """验证用户"""
        user = await self.get_user_by_email(email)
        if not user:
            return None
        if not self.verify_password(password, user.password_hash):
            return None
        return user

    async def get_user_by_email(self, email: str) -> Optional[User]:
        """根据邮箱获取用户"""
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def register_user(self, user_data: UserCreate) -> User:
        """注册用户；Stripe 客户创建失败不影响注册"""
        existing_email = await self.get_user_by_email(user_data.email)
        if existing_email:
            raise ValueError("邮箱已存在")

        user = User(
            name=user_data.name,
            email=user_data.email,
            password_hash=self.get_password_hash(user_data.password),
            address=user_data.address,
        )
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)

        if self.gateway:
            try:
                user.stripe_customer_id = await self.gateway.create_customer(
                    email=user.email,
                    name=user.name,
                    metadata={"user_id": str(user.id)},
                )
                await self.db.commit()
                await self.db.refresh(user)
            except GatewayUnavailable:
                logger.warning("用户 %s 的 Stripe 客户创建失败，稍后可补建", user.id)
        return user

    async def get_current_user(self, token: str) -> User:
        """获取当前用户"""
        credentials_exception = ValueError("无效的认证凭据")
        try:
            payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
            subject = payload.get("sub")
            if subject is None:
                raise credentials_exception
        except JWTError:
            raise credentials_exception

        user = await self.get_user_by_email(subject)
        if user is None:
            raise credentials_exception
        return user
