# storefront/schemas.py
"""
Request and response bodies.
Tables in models.py are snake_case; the JSON the storefront speaks is
camelCase. Every model here accepts either spelling on the way in and
writes camelCase on the way out.
"""

import re
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from storefront.config import DEFAULT_SHIPPING_COUNTRY, MAX_CART_ITEMS, MAX_ITEM_QUANTITY
from storefront.models import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    RefundRequestStatus,
)

PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{1,14}$")
ORDER_NUMBER_PATTERN = r"^ORD-\d{4}-\d{6}$"
CATEGORY_SLUG_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    def dump(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# --- Orders ---

class OrderLineIn(ApiModel):
    product_id: int = Field(gt=0)
    quantity: int = Field(ge=1, le=MAX_ITEM_QUANTITY)


class CreateOrderRequest(ApiModel):
    customer_name: str = Field(min_length=2, max_length=100)
    customer_email: EmailStr
    customer_phone: Optional[str] = None
    shipping_address: str = Field(min_length=5, max_length=200)
    shipping_city: str = Field(min_length=2, max_length=100)
    shipping_state: str = Field(min_length=2, max_length=50)
    shipping_zip: str = Field(pattern=r"^\d{5}(-\d{4})?$")
    shipping_country: str = Field(default=DEFAULT_SHIPPING_COUNTRY, min_length=2)
    items: List[OrderLineIn] = Field(min_length=1, max_length=MAX_CART_ITEMS)
    # What the shopper was shown; checked against the server's own total
    total: Decimal
    currency: Literal["USD", "EUR", "GBP", "CAD"] = "USD"
    payment_method: PaymentMethod
    notes: Optional[str] = Field(default=None, max_length=500)

    @field_validator("customer_phone")
    @classmethod
    def check_phone(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        if not PHONE_PATTERN.match(value):
            raise ValueError("Invalid phone number format")
        return value


class UpdateOrderRequest(ApiModel):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    tracking_number: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=500)


class RefundOrderRequest(ApiModel):
    reason: str = Field(min_length=10, max_length=500)
    refund_amount: Optional[Decimal] = Field(default=None, gt=0)


class OrderItemRead(ApiModel):
    product_id: int
    product_name: str
    product_image: str = ""
    quantity: int
    price: str
    total: str


class OrderRead(ApiModel):
    id: int
    order_number: str
    user_id: Optional[str] = None
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    shipping_address: str
    shipping_city: str
    shipping_state: str
    shipping_zip: str
    shipping_country: str
    items: List[OrderItemRead]
    subtotal: str
    tax: str
    shipping_cost: str
    total: str
    currency: str
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    payment_session_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


# --- Refund requests ---

class CreateRefundRequest(ApiModel):
    order_number: str = Field(pattern=ORDER_NUMBER_PATTERN)
    reason: str = Field(min_length=10, max_length=1000)


class ResolveRefundRequest(ApiModel):
    status: Literal["approved", "rejected"]
    admin_notes: Optional[str] = Field(default=None, max_length=500)


class RefundRequestRead(ApiModel):
    id: int
    order_id: int
    order_number: str
    user_id: str
    reason: str
    status: RefundRequestStatus
    admin_notes: Optional[str] = None
    resolved_by: Optional[str] = None
    provider_refund_id: Optional[str] = None
    refund_amount: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    resolved_at: Optional[datetime] = None


class AdminRefundRequestRead(RefundRequestRead):
    order_total: Optional[str] = None
    order_status: Optional[OrderStatus] = None
    order_payment_status: Optional[PaymentStatus] = None
    order_payment_method: Optional[PaymentMethod] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None


# --- Checkout ---

class CheckoutRequest(ApiModel):
    order_id: int = Field(gt=0)


class CheckoutSessionRead(ApiModel):
    session_id: str
    url: Optional[str] = None


# --- Cart ---

class CartItemIn(ApiModel):
    product_id: int = Field(gt=0)
    quantity: int = Field(ge=1, le=MAX_ITEM_QUANTITY)


class CartItemUpdate(ApiModel):
    product_id: int = Field(gt=0)
    quantity: int = Field(ge=0, le=MAX_ITEM_QUANTITY)  # 0 removes the line


class UpdateCartRequest(ApiModel):
    items: List[CartItemIn] = Field(default_factory=list, max_length=MAX_CART_ITEMS)


class CartRead(ApiModel):
    id: int
    user_id: str
    items: List[CartItemIn]
    created_at: datetime
    updated_at: datetime


# --- Catalog ---

class ProductIn(ApiModel):
    name: str = Field(min_length=1, max_length=200)
    company: str = ""
    category: str = Field(min_length=1, max_length=100)
    description: str = ""
    image_src: str = ""
    price_regular: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    price_sale: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    price_currency: Literal["USD", "EUR", "GBP", "CAD"] = "USD"
    sku: Optional[str] = None
    stock_quantity: int = Field(default=0, ge=0)
    low_stock_threshold: int = Field(default=10, ge=0)
    track_inventory: bool = True


class ProductUpdate(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    company: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    image_src: Optional[str] = None
    price_regular: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    price_sale: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    sku: Optional[str] = None
    stock_quantity: Optional[int] = Field(default=None, ge=0)
    low_stock_threshold: Optional[int] = Field(default=None, ge=0)
    track_inventory: Optional[bool] = None

    # Only priceSale and sku may be cleared; null on anything else is a client error
    @field_validator(
        "name", "company", "category", "description", "image_src", "price_regular",
        "stock_quantity", "low_stock_threshold", "track_inventory",
    )
    @classmethod
    def reject_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("Field cannot be null")
        return value


class ProductRead(ApiModel):
    id: int
    name: str
    company: str
    category: str
    description: str
    image_src: str
    price_regular: Decimal
    price_sale: Optional[Decimal] = None
    price_currency: str
    sku: Optional[str] = None
    stock_quantity: int
    low_stock_threshold: int
    track_inventory: bool


class CategoryIn(ApiModel):
    slug: str = Field(min_length=1, max_length=100, pattern=CATEGORY_SLUG_PATTERN)
    name: str = Field(min_length=1, max_length=100)
    description: str = ""


class CategoryUpdate(ApiModel):
    slug: Optional[str] = Field(default=None, min_length=1, max_length=100, pattern=CATEGORY_SLUG_PATTERN)
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None

    @field_validator("slug", "name", "description")
    @classmethod
    def reject_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("Field cannot be null")
        return value


class CategoryRead(ApiModel):
    id: int
    slug: str
    name: str
    description: str


def pagination(page: int, limit: int, total_count: int) -> dict[str, Any]:
    total_pages = (total_count + limit - 1) // limit
    return {
        "page": page,
        "limit": limit,
        "totalCount": total_count,
        "totalPages": total_pages,
        "hasNextPage": page < total_pages,
        "hasPrevPage": page > 1,
    }
