"""
初始化商品目录

用法：python -m coffee_shop.seed
已存在的同名商品跳过，可重复执行。
"""
import asyncio
import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coffee_shop import models  # noqa: F401
from coffee_shop.core.database import AsyncSessionLocal, Base, engine
from coffee_shop.core.logging import setup_logging
from coffee_shop.models.product import Product
from coffee_shop.schemas.product import ProductCreate

logger = logging.getLogger(__name__)

SEED_PRODUCTS = [
    ProductCreate(
        name="Ethiopian Yirgacheffe",
        description="Bright and floral with notes of lemon and bergamot.",
        origin="Ethiopia", roast_type="light", category="single-origin",
        tags=["floral", "citrus", "bright"], weight=340, price=1899, stock=45,
    ),
    ProductCreate(
        name="Colombian Supremo",
        description="Well-balanced with caramel sweetness and a nutty finish.",
        origin="Colombia", roast_type="medium", category="single-origin",
        tags=["caramel", "nutty", "balanced"], weight=340, price=1699, stock=62,
    ),
    ProductCreate(
        name="French Roast Blend",
        description="Bold and smoky with a rich, full body.",
        origin="Blend", roast_type="dark", category="blend",
        tags=["smoky", "bold", "full-bodied"], weight=340, price=1599, stock=38,
    ),
    ProductCreate(
        name="Guatemalan Antigua",
        description="Chocolate and spice with a velvety body.",
        origin="Guatemala", roast_type="medium", category="single-origin",
        tags=["chocolate", "spice", "velvety"], weight=340, price=1799, stock=29,
    ),
    ProductCreate(
        name="Espresso Blend Supreme",
        description="Rich crema with dark chocolate and cherry notes.",
        origin="Blend", roast_type="espresso", category="espresso",
        tags=["crema", "dark-chocolate", "cherry"], weight=340, price=1999, stock=55,
    ),
    ProductCreate(
        name="Kenyan AA",
        description="Wine-like acidity with blackcurrant and grapefruit.",
        origin="Kenya", roast_type="light", category="single-origin",
        tags=["blackcurrant", "grapefruit", "juicy"], weight=340, price=2099, stock=33,
    ),
]


async def seed_products(db: AsyncSession, items: List[ProductCreate] = SEED_PRODUCTS) -> List[Product]:
    """写入尚不存在的商品，返回本次新建的商品"""
    result = await db.execute(select(Product.name))
    existing = set(result.scalars().all())
    created = []
    for item in items:
        if item.name in existing:
            logger.info("商品 %s 已存在，跳过", item.name)
            continue
        product = Product(**item.model_dump())
        db.add(product)
        created.append(product)
    await db.commit()
    logger.info("新建商品 %d 个", len(created))
    return created


async def main() -> None:
    setup_logging()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with AsyncSessionLocal() as db:
        await seed_products(db)
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
