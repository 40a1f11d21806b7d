# storefront/pricing.py
"""
Server-side price calculation.
The shopper's browser shows a total, but the only total we charge is the one
computed here from the prices in the database. The client's number is just
compared against ours so a tampered cart is caught before an order exists.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Union

from pydantic import BaseModel
from sqlmodel import Session, col, select

from storefront.config import DEFAULT_PRICE_TOLERANCE, SHIPPING_COST, TAX_RATE
from storefront.errors import ApiError, ErrorCode
from storefront.models import Product

CENT = Decimal("0.01")

Number = Union[Decimal, int, float, str]


def money(value: Number) -> Decimal:
    """Round to cents. Floats go through str() so 0.1 stays 0.1."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(value: Number) -> int:
    return int(money(value) * 100)


class PricedItem(BaseModel):
    product_id: int
    product_name: str
    product_image: str
    quantity: int
    price: Decimal
    total: Decimal

    def snapshot(self) -> dict:
        """The shape stored in Order.items."""
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_image": self.product_image,
            "quantity": self.quantity,
            "price": str(self.price),
            "total": str(self.total),
        }


class OrderCalculation(BaseModel):
    items: List[PricedItem]
    subtotal: Decimal
    tax: Decimal
    tax_rate: Decimal
    shipping_cost: Decimal
    total: Decimal


def compute_totals(subtotal: Decimal) -> tuple[Decimal, Decimal, Decimal]:
    tax = money(subtotal * TAX_RATE)
    shipping = SHIPPING_COST if subtotal > 0 else Decimal("0.00")
    return tax, money(shipping), money(subtotal + tax + shipping)


def calculate_order_prices(session: Session, lines: Iterable) -> OrderCalculation:
    """
    Price every (product_id, quantity) line from the catalog.
    Raises PRODUCT_NOT_FOUND naming the first id that does not exist.
    """
    lines = list(lines)
    ids = {line.product_id for line in lines}
    products = {p.id: p for p in session.exec(select(Product).where(col(Product.id).in_(ids))).all()}

    items = []
    for line in lines:
        product = products.get(line.product_id)
        if product is None:
            raise ApiError(
                ErrorCode.PRODUCT_NOT_FOUND,
                f"Product not found: ID {line.product_id}",
                {"productId": line.product_id},
            )
        unit = money(product.unit_price)
        items.append(PricedItem(
            product_id=product.id,
            product_name=product.name,
            product_image=product.image_src,
            quantity=line.quantity,
            price=unit,
            total=money(unit * line.quantity),
        ))

    subtotal = money(sum((item.total for item in items), Decimal("0")))
    tax, shipping, total = compute_totals(subtotal)
    return OrderCalculation(
        items=items,
        subtotal=subtotal,
        tax=tax,
        tax_rate=TAX_RATE,
        shipping_cost=shipping,
        total=total,
    )


def validate_client_prices(
    client_total: Number,
    calculation: OrderCalculation,
    tolerance: Number = DEFAULT_PRICE_TOLERANCE,
) -> bool:
    client = Decimal(str(client_total)) if isinstance(client_total, float) else Decimal(client_total)
    if client <= 0:
        return False
    limit = Decimal(str(tolerance)) if isinstance(tolerance, float) else Decimal(tolerance)
    return abs(client - calculation.total) <= limit
