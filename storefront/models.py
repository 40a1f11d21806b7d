# storefront/models.py

"""
The Contract: Define what our data looks like
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# --- 1. Enums ---
# Enums restrict data to specific values. This prevents "typo" bugs in your data.
class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    AWAITING = "awaiting"  # hosted checkout not finished yet
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    COD = "cod"
    STRIPE = "stripe"


class RefundRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


class Role(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


# --- 2. Database Tables ---

class UserAccount(SQLModel, table=True):
    """
    Local mirror of the identity provider's user record.
    client_metadata is whatever the provider hands back: a bare role string
    for old accounts, an object like {"role": "admin"} for new ones.
    """
    __tablename__ = "user_accounts"

    id: str = Field(primary_key=True)
    primary_email: Optional[str] = Field(default=None, index=True)
    display_name: Optional[str] = None
    client_metadata: Optional[Any] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utc_now)


class Category(SQLModel, table=True):
    __tablename__ = "categories"

    id: Optional[int] = Field(default=None, primary_key=True)
    slug: str = Field(unique=True, index=True)
    name: str
    description: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Product(SQLModel, table=True):
    __tablename__ = "products"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    company: str = ""
    category: str = Field(index=True)  # categories.slug
    description: str = ""
    image_src: str = ""
    price_regular: Decimal = Field(max_digits=10, decimal_places=2)
    price_sale: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=2)
    price_currency: str = "USD"
    sku: Optional[str] = Field(default=None, index=True)
    stock_quantity: int = Field(default=0, ge=0)
    low_stock_threshold: int = Field(default=10)
    track_inventory: bool = Field(default=True)  # False: stock is never checked or touched
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def unit_price(self) -> Decimal:
        return self.price_sale if self.price_sale is not None else self.price_regular


class Order(SQLModel, table=True):
    """
    One purchase. Money columns are decimal strings ("187.78") so nothing
    drifts through a float on the way in or out of the database.
    items is an embedded snapshot of the cart at checkout; it never changes.
    """
    __tablename__ = "orders"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_number: str = Field(unique=True, index=True)
    user_id: Optional[str] = Field(default=None, index=True)

    customer_name: str
    customer_email: str = Field(index=True)
    customer_phone: Optional[str] = None
    shipping_address: str
    shipping_city: str
    shipping_state: str
    shipping_zip: str
    shipping_country: str = "USA"

    items: List[dict] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    subtotal: str
    tax: str
    shipping_cost: str
    total: str
    currency: str = "USD"

    status: OrderStatus = Field(default=OrderStatus.PENDING, index=True)
    payment_status: PaymentStatus = Field(default=PaymentStatus.UNPAID)
    payment_method: PaymentMethod = Field(default=PaymentMethod.COD)
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    payment_session_id: Optional[str] = None
    payment_intent_id: Optional[str] = None

    deleted_at: Optional[datetime] = None  # soft delete, row stays for audit
    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now)


class RefundRequest(SQLModel, table=True):
    """
    Customer-raised refund ticket. Nothing happens to the order until an
    admin approves it.
    """
    __tablename__ = "refund_requests"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="orders.id", index=True)
    order_number: str
    user_id: str = Field(index=True)
    reason: str
    status: RefundRequestStatus = Field(default=RefundRequestStatus.PENDING, index=True)
    admin_notes: Optional[str] = None
    resolved_by: Optional[str] = None
    provider_refund_id: Optional[str] = None
    refund_amount: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    resolved_at: Optional[datetime] = None


class Cart(SQLModel, table=True):
    __tablename__ = "carts"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(unique=True, index=True)
    items: List[dict] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
