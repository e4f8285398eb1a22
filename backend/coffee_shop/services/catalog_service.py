"""
商品目录服务：读取商品与原子扣减库存
"""
import logging
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from coffee_shop.core.exceptions import NotFoundError
from coffee_shop.models.product import Product
from coffee_shop.schemas.product import ProductCreate, ProductUpdate

logger = logging.getLogger(__name__)


class CatalogService:
    """商品目录服务类"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_product(self, product_id: int) -> Optional[Product]:
        """获取商品"""
        result = await self.db.execute(select(Product).where(Product.id == product_id))
        return result.scalar_one_or_none()

    async def list_active_products(self) -> List[Product]:
        """获取上架商品列表"""
        result = await self.db.execute(
            select(Product).where(Product.is_active == True).order_by(Product.name)
        )
        return result.scalars().all()

    async def create_product(self, data: ProductCreate) -> Product:
        product = Product(**data.model_dump())
        self.db.add(product)
        await self.db.commit()
        await self.db.refresh(product)
        logger.info("商品 %s（%s）已创建", product.id, product.name)
        return product

    async def update_product(self, product_id: int, data: ProductUpdate) -> Product:
        """只更新请求中出现且非空的字段；已生成的订单保留下单时的价格快照"""
        product = await self.get_product(product_id)
        if not product:
            raise NotFoundError("商品不存在")
        for field, value in data.model_dump(exclude_unset=True, exclude_none=True).items():
            setattr(product, field, value)
        await self.db.commit()
        await self.db.refresh(product)
        return product

    async def deactivate_product(self, product_id: int) -> Product:
        """下架（软删除），历史订单与订阅仍引用该商品"""
        product = await self.get_product(product_id)
        if not product:
            raise NotFoundError("商品不存在")
        product.is_active = False
        await self.db.commit()
        await self.db.refresh(product)
        logger.info("商品 %s 已下架", product.id)
        return product

    async def decrement_stock(self, product_id: int, quantity: int) -> bool:
        """条件扣减：仅当扣减后库存不为负时生效，返回是否扣减成功。不提交事务。"""
        result = await self.db.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
