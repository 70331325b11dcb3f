"""
API Schemas for the storefront

Request bodies and response shapes. Fields are snake_case in Python and
camelCase on the wire:
- accounts: register/login/profile payloads and the saved payment methods
- catalog: products and categories
- cart and orders, including order documents
- admin views
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from models import OrderDocumentType, OrderStatus, PaymentMethodType, UserRole


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ---------- Accounts ----------

class UserOut(ApiModel):
    id: int
    first_name: str
    last_name: str
    email: str
    role: UserRole
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AuthResponse(ApiModel):
    access_token: str
    user: UserOut


class RegisterRequest(ApiModel):
    first_name: str = Field(..., min_length=1, description="First name")
    last_name: str = Field(..., min_length=1, description="Last name")
    email: EmailStr = Field(..., description="Email address")
    password: str = Field(..., min_length=6, description="Plain password, hashed before storage")
    address: Optional[str] = Field(None, description="Shipping address")
    billing_address: Optional[str] = Field(None, description="Billing address")


class LoginRequest(ApiModel):
    email: EmailStr
    password: str


class SavedPaymentMethod(ApiModel):
    id: str
    method: PaymentMethodType
    masked_label: str
    is_default: bool = False
    paypal_email: Optional[str] = None
    card_brand: Optional[str] = None
    card_last4: Optional[str] = None
    card_expiry: Optional[str] = None
    bank_iban_last4: Optional[str] = None


class ProfileOut(UserOut):
    phone: Optional[str] = None
    address: Optional[str] = None
    billing_address: Optional[str] = None
    payment_methods: List[SavedPaymentMethod] = Field(default_factory=list)


class ProfileUpdate(ApiModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    billing_address: Optional[str] = None
    # loose on purpose: malformed entries are filtered out, not rejected
    payment_methods: Optional[List[Any]] = None


class PasswordChange(ApiModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


class SuccessResponse(ApiModel):
    success: bool = True


# ---------- Catalog ----------

class CategorySummary(ApiModel):
    id: int
    name: str
    slug: str


class ProductOut(ApiModel):
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    price: float
    images: List[str] = Field(default_factory=list)
    stock: int
    featured: bool
    is_active: bool
    category_id: Optional[int] = None
    category: Optional[CategorySummary] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProductCreate(ApiModel):
    name: str = Field(..., min_length=1, description="Product name")
    slug: str = Field(..., min_length=1, description="Unique URL slug")
    description: Optional[str] = None
    price: float = Field(..., ge=0, description="Unit price")
    images: List[str] = Field(default_factory=list, description="Image URLs")
    stock: int = Field(0, ge=0, description="Units on hand")
    featured: bool = False
    category_id: Optional[int] = None


class ProductUpdate(ApiModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    images: Optional[List[str]] = None
    stock: Optional[int] = Field(None, ge=0)
    featured: Optional[bool] = None
    category_id: Optional[int] = None
    is_active: Optional[bool] = None


class CategoryOut(ApiModel):
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    products: List[ProductOut] = Field(default_factory=list)


class CategoryCreate(ApiModel):
    name: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)
    description: Optional[str] = None
    image_url: Optional[str] = None


class CategoryUpdate(ApiModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None


# ---------- Cart ----------

class CartItemOut(ApiModel):
    id: int
    product_id: int
    quantity: int
    product: Optional[ProductOut] = None


class CartOut(ApiModel):
    id: int
    user_id: int
    items: List[CartItemOut] = Field(default_factory=list)
    total: float = 0


class CartItemAdd(ApiModel):
    product_id: int
    quantity: int = 1


class CartItemUpdate(ApiModel):
    quantity: int


# ---------- Orders ----------

class OrderLineIn(ApiModel):
    product_id: int
    quantity: int
    # accepted for compatibility, never trusted
    unit_price: Optional[float] = None


class OrderCreate(ApiModel):
    # lines are validated one by one when the order is priced
    items: Optional[List[Any]] = None
    shipping_address: Optional[str] = None
    notes: Optional[str] = None


class DraftOrderCreate(OrderCreate):
    checkout_data: Optional[Dict[str, Any]] = None


class OrderStatusUpdate(ApiModel):
    status: OrderStatus


class OrderItemOut(ApiModel):
    id: int
    product_id: int
    quantity: int
    unit_price: float
    product: Optional[ProductOut] = None


class OrderDocumentOut(ApiModel):
    id: int
    order_id: int
    type: OrderDocumentType
    file_name: str
    mime_type: str
    created_at: Optional[datetime] = None


class OrderDocumentContent(OrderDocumentOut):
    data_base64: str


class OrderOut(ApiModel):
    id: int
    user_id: Optional[int] = None
    total: float
    status: OrderStatus
    shipping_address: Optional[str] = None
    notes: Optional[str] = None
    checkout_data: Optional[Dict[str, Any]] = None
    items: List[OrderItemOut] = Field(default_factory=list)
    documents: List[OrderDocumentOut] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DocumentIn(ApiModel):
    # validated per entry in the service so bad entries are skipped
    type: Optional[str] = None
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    data_base64: Optional[str] = None


class DocumentsSave(ApiModel):
    documents: List[DocumentIn] = Field(default_factory=list)


# ---------- Admin ----------

class AdminUserOut(UserOut):
    order_count: int = 0
    total_spent: float = 0


class LogFileOut(ApiModel):
    id: int
    file_name: str
    file_path: str
    level: str
    size_bytes: int
    last_modified_at: datetime
