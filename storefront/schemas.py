from datetime import datetime
from decimal import Decimal
from typing import Any, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field

T = TypeVar("T")


class ErrorInfo(BaseModel):
    kind: str
    reason: Optional[str] = None
    detail: Any = None


class Envelope(BaseModel, Generic[T]):
    """Shared response body: a message, the status code, and either data or an error."""

    message: str
    status: int
    data: Optional[T] = None
    error: Optional[ErrorInfo] = None


# Users
class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)


class LoginRequest(BaseModel):
    # Empty values are rejected by the handler with a dedicated message.
    email: str = ""
    password: str = ""


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class UserOut(BaseModel):
    id: int
    email: EmailStr
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LoginOut(BaseModel):
    user: UserOut
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class TokenOut(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


# Products
class ProductOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    price: Decimal
    quantity: int

    model_config = ConfigDict(from_attributes=True)


# Cart
class CartItemIn(BaseModel):
    product_id: int = Field(..., gt=0, description="Product ID")
    quantity: int = Field(..., ge=1, description="Requested quantity")


class CartLineOut(BaseModel):
    cart_id: int
    product: ProductOut
    quantity: int


class CartOut(BaseModel):
    cart: List[CartLineOut]
    total: Decimal


# Orders
class OrderItemOut(BaseModel):
    id: int
    order_id: int
    product_id: int
    product_name: str
    quantity: int
    price: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderOut(BaseModel):
    id: int
    user_id: int
    total_amount: Decimal
    # Plain string so later lifecycle states need no schema change.
    status: str
    created_at: Optional[datetime] = None
    items: List[OrderItemOut] = []

    model_config = ConfigDict(from_attributes=True)


class OrderListOut(BaseModel):
    orders: List[OrderOut]
    total: int
    skip: int
    limit: int
