from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic import ConfigDict


# ---------- Catalog ----------
class CategoryIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    slug: str


class ProductIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    stock: int = Field(ge=0, default=0)
    category_id: Optional[int] = None


class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str
    price: Decimal
    stock: int
    category_id: Optional[int]


class HomeOut(BaseModel):
    categories: List[CategoryOut]
    featured: List[ProductOut]


# ---------- Reviews ----------
class ReviewOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    product_name: str
    customer_name: str
    rating: int
    review_text: str
    created_at: datetime


class ProductDetailOut(BaseModel):
    product: ProductOut
    related: List[ProductOut]
    reviews: List[ReviewOut]
    total_reviews: int
    avg_rating: Decimal
    love_count: int
    loved: bool = False
    reviewed: bool = False


class ReviewPageOut(BaseModel):
    reviews: List[ReviewOut]
    page: int
    total_pages: int
    total_reviews: int


# ---------- Cart ----------
class CartItemOut(BaseModel):
    product_id: int
    name: str
    price: Decimal
    quantity: int
    stock: int
    subtotal: Decimal


class CartOut(BaseModel):
    items: List[CartItemOut]
    total: Decimal


# ---------- Orders ----------
class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: Optional[int]
    product_name: str
    price: Decimal
    quantity: int


class OrderSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    customer_name: str
    total: Decimal
    status: str
    created_at: datetime


class OrderOut(OrderSummaryOut):
    customer_email: str
    customer_address: str
    items: List[OrderItemOut]


# ---------- Customers ----------
class CustomerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    address: str


class CustomerStatsOut(CustomerOut):
    order_count: int
    total_spent: Decimal


class AccountIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: str = Field(min_length=3, max_length=320)
    address: str = ""


class PasswordChangeIn(BaseModel):
    current_password: str
    new_password: str
    confirm_password: str


class CustomerDetailOut(BaseModel):
    customer: CustomerOut
    orders: List[OrderSummaryOut]


# ---------- Admin ----------
class PermissionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    key: str
    label: str


class RoleIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str = ""
    permission_ids: List[int] = Field(default_factory=list)


class RoleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str
    permissions: List[PermissionOut]


class AdminUserIn(BaseModel):
    username: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=6)
    role_id: Optional[int] = None


class AdminUserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    is_super_admin: bool
    role_id: Optional[int]


class RoleAssignIn(BaseModel):
    role_id: Optional[int] = None


class DashboardStats(BaseModel):
    product_count: int
    order_count: int
    customer_count: int
    total_revenue: Decimal


class DashboardOut(BaseModel):
    stats: DashboardStats
    orders: List[OrderSummaryOut]
    products: List[ProductOut]
    page: int
    total_pages: int
