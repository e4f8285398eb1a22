"""
商品相关API：公开浏览，管理员维护
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from coffee_shop.api.v1.auth import require_admin
from coffee_shop.core.database import get_db
from coffee_shop.schemas.auth import UserResponse
from coffee_shop.schemas.product import ProductCreate, ProductListResponse, ProductResponse, ProductUpdate
from coffee_shop.services.catalog_service import CatalogService

router = APIRouter()


@router.get("", response_model=ProductListResponse)
async def list_products(db: AsyncSession = Depends(get_db)):
    """获取上架商品列表"""
    products = await CatalogService(db).list_active_products()
    return {"products": products, "total": len(products)}


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(product_id: int, db: AsyncSession = Depends(get_db)):
    """获取商品详情"""
    product = await CatalogService(db).get_product(product_id)
    if not product or not product.is_active:
        raise HTTPException(status_code=404, detail="商品不存在")
    return product


@router.post("", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
async def create_product(
    body: ProductCreate,
    _admin: UserResponse = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """（管理员）新增商品"""
    return await CatalogService(db).create_product(body)


@router.put("/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: int,
    body: ProductUpdate,
    _admin: UserResponse = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """（管理员）修改商品价格、库存、上下架等"""
    return await CatalogService(db).update_product(product_id, body)


@router.delete("/{product_id}", response_model=ProductResponse)
async def delete_product(
    product_id: int,
    _admin: UserResponse = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """（管理员）下架商品，不物理删除"""
    return await CatalogService(db).deactivate_product(product_id)
