"""Stock ledger: pre-checks, floor-at-zero deduction, restores."""
import pytest
from sqlmodel import select

from storefront.errors import ApiError, ErrorCode
from storefront.inventory import (
    StockLine,
    deduct,
    deduct_items,
    ensure_stock,
    lines_from_items,
    low_stock,
    restore,
    restore_items,
)
from storefront.models import Product


def current(session, product_id):
    return session.exec(select(Product.stock_quantity).where(Product.id == product_id)).one()


def test_ensure_stock_passes(session, catalog):
    ensure_stock(session, [StockLine(catalog["headphones"], 50), StockLine(catalog["charger"], 3)])


def test_ensure_stock_insufficient(session, catalog):
    with pytest.raises(ApiError) as exc:
        ensure_stock(session, [StockLine(catalog["charger"], 5)])
    assert exc.value.code == ErrorCode.INSUFFICIENT_STOCK
    assert exc.value.status_code == 422
    assert exc.value.details == {
        "productId": catalog["charger"],
        "productName": "USB-C Charger",
        "available": 3,
        "requested": 5,
    }


def test_ensure_stock_adds_up_repeated_lines(session, catalog):
    with pytest.raises(ApiError) as exc:
        ensure_stock(session, [StockLine(catalog["charger"], 2), StockLine(catalog["charger"], 2)])
    assert exc.value.details["requested"] == 4


def test_ensure_stock_ignores_untracked(session, catalog):
    ensure_stock(session, [StockLine(catalog["gift_card"], 500)])


def test_ensure_stock_unknown_product(session, catalog):
    with pytest.raises(ApiError) as exc:
        ensure_stock(session, [StockLine(404, 1)])
    assert exc.value.code == ErrorCode.PRODUCT_NOT_FOUND


def test_deduct_and_restore(session, catalog):
    deduct(session, catalog["headphones"], 2)
    assert current(session, catalog["headphones"]) == 48
    restore(session, catalog["headphones"], 2)
    assert current(session, catalog["headphones"]) == 50


def test_deduct_floors_at_zero(session, catalog):
    deduct(session, catalog["charger"], 10)
    assert current(session, catalog["charger"]) == 0


def test_untracked_stock_never_moves(session, catalog):
    deduct(session, catalog["gift_card"], 3)
    restore(session, catalog["gift_card"], 7)
    assert current(session, catalog["gift_card"]) == 0


def test_items_helpers(session, catalog):
    items = [
        {"product_id": catalog["headphones"], "quantity": 2},
        {"product_id": catalog["charger"], "quantity": 1},
    ]
    lines = lines_from_items(items)
    assert lines == [StockLine(catalog["headphones"], 2), StockLine(catalog["charger"], 1)]

    deduct_items(session, lines)
    assert current(session, catalog["headphones"]) == 48
    assert current(session, catalog["charger"]) == 2

    restore_items(session, lines)
    assert current(session, catalog["headphones"]) == 50
    assert current(session, catalog["charger"]) == 3


def test_rollback_undoes_deduction(session, catalog):
    deduct(session, catalog["headphones"], 5)
    session.rollback()
    assert current(session, catalog["headphones"]) == 50


def test_low_stock(session, catalog):
    products = low_stock(session)
    assert [p.id for p in products] == [catalog["charger"]]
