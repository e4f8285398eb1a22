"""
商品相关Schema
"""
from pydantic import BaseModel, Field
from typing import Optional, List


class ProductResponse(BaseModel):
    """商品响应"""
    id: int
    name: str
    description: str = ""
    origin: Optional[str] = None
    roast_type: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    weight: Optional[int] = None
    price: int
    stock: int
    is_active: bool
    stripe_price_id: Optional[str] = None

    class Config:
        from_attributes = True


class ProductListResponse(BaseModel):
    products: List[ProductResponse]
    total: int


class ProductCreate(BaseModel):
    """（管理员）创建商品"""
    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    origin: Optional[str] = Field(None, max_length=100)
    roast_type: Optional[str] = Field(None, max_length=20)
    category: Optional[str] = Field(None, max_length=20)
    tags: Optional[List[str]] = None
    weight: Optional[int] = Field(None, ge=1)
    price: int = Field(..., ge=0)
    stock: int = Field(0, ge=0)
    is_active: bool = True
    stripe_product_id: Optional[str] = Field(None, max_length=100)
    stripe_price_id: Optional[str] = Field(None, max_length=100)


class ProductUpdate(BaseModel):
    """（管理员）更新商品，只修改传入且非空的字段"""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    origin: Optional[str] = Field(None, max_length=100)
    roast_type: Optional[str] = Field(None, max_length=20)
    category: Optional[str] = Field(None, max_length=20)
    tags: Optional[List[str]] = None
    weight: Optional[int] = Field(None, ge=1)
    price: Optional[int] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    stripe_product_id: Optional[str] = Field(None, max_length=100)
    stripe_price_id: Optional[str] = Field(None, max_length=100)
