"""
数据库连接：异步 engine、会话工厂与 FastAPI 依赖
"""
from typing import AsyncIterator, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from coffee_shop.core.config import settings

Base = declarative_base()


def _create_engine() -> AsyncEngine:
    return create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DATABASE_ECHO,
        pool_pre_ping=True,
    )


engine = _create_engine()
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncIterator[AsyncSession]:
    """每个请求一个会话，请求结束自动关闭"""
    async with AsyncSessionLocal() as session:
        yield session


def create_async_engine_and_session_for_celery() -> Tuple[AsyncEngine, async_sessionmaker]:
    """Celery 任务内使用：在当前 loop 上新建 engine/session，避免跨 loop 复用全局连接池"""
    task_engine = _create_engine()
    return task_engine, async_sessionmaker(task_engine, class_=AsyncSession, expire_on_commit=False)
