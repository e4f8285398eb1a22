"""
认证相关Schema
"""
from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from typing import Optional, Dict, Any


class UserCreate(BaseModel):
    """用户创建"""
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6)
    address: Optional[Dict[str, Any]] = None


class UserResponse(BaseModel):
    """用户响应"""
    id: int
    name: str
    email: str
    role: str
    address: Optional[Dict[str, Any]] = None
    stripe_customer_id: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Token(BaseModel):
    """Token响应"""
    access_token: str
    token_type: str = "bearer"
