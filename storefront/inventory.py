# storefront/inventory.py
"""
Stock ledger operations.
Every function here runs inside the caller's transaction and never commits,
so a stock move and the order change that caused it land together or not at
all. Products with track_inventory=False are never checked or touched.
"""

import logging
from collections import OrderedDict
from typing import Iterable, List, NamedTuple

from sqlalchemy import case, update
from sqlmodel import Session, col, select

from storefront.errors import ApiError, ErrorCode
from storefront.models import Product, utc_now

logger = logging.getLogger(__name__)


class StockLine(NamedTuple):
    product_id: int
    quantity: int


def lines_from_items(items: Iterable[dict]) -> List[StockLine]:
    return [
        StockLine(int(item["product_id"]), int(item["quantity"]))
        for item in items
        if item.get("product_id")
    ]


def _merge(lines: Iterable[StockLine]) -> "OrderedDict[int, int]":
    needed: "OrderedDict[int, int]" = OrderedDict()
    for line in lines:
        needed[line.product_id] = needed.get(line.product_id, 0) + line.quantity
    return needed


def ensure_stock(session: Session, lines: Iterable[StockLine]) -> None:
    """
    Re-read each product under a row lock and refuse the whole order if a
    tracked product cannot cover the requested quantity.
    """
    for product_id, quantity in _merge(lines).items():
        product = session.exec(
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).first()
        if product is None:
            raise ApiError(ErrorCode.PRODUCT_NOT_FOUND, f"Product not found: ID {product_id}", {"productId": product_id})
        if product.track_inventory and product.stock_quantity < quantity:
            raise ApiError(
                ErrorCode.INSUFFICIENT_STOCK,
                f"Insufficient stock for {product.name}: {product.stock_quantity} available, {quantity} requested",
                {
                    "productId": product.id,
                    "productName": product.name,
                    "available": product.stock_quantity,
                    "requested": quantity,
                },
            )


def deduct(session: Session, product_id: int, quantity: int) -> None:
    """stock = max(0, stock - quantity), in one UPDATE."""
    remaining = Product.stock_quantity - quantity
    session.exec(
        update(Product)
        .where(col(Product.id) == product_id, col(Product.track_inventory).is_(True))
        .values(
            stock_quantity=case((remaining < 0, 0), else_=remaining),
            updated_at=utc_now(),
        )
        .execution_options(synchronize_session="fetch")
    )


def restore(session: Session, product_id: int, quantity: int) -> None:
    session.exec(
        update(Product)
        .where(col(Product.id) == product_id, col(Product.track_inventory).is_(True))
        .values(stock_quantity=Product.stock_quantity + quantity, updated_at=utc_now())
        .execution_options(synchronize_session="fetch")
    )


def deduct_items(session: Session, lines: Iterable[StockLine]) -> None:
    for line in lines:
        deduct(session, line.product_id, line.quantity)


def restore_items(session: Session, lines: Iterable[StockLine]) -> None:
    for line in lines:
        restore(session, line.product_id, line.quantity)


def low_stock(session: Session) -> List[Product]:
    statement = (
        select(Product)
        .where(col(Product.track_inventory).is_(True))
        .where(Product.stock_quantity <= Product.low_stock_threshold)
        .order_by(Product.stock_quantity)
    )
    return list(session.exec(statement).all())
