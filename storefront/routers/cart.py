# storefront/routers/cart.py

"""
Server-side cart, one per user.
Lines are stored as [{"productId": 1, "quantity": 2}, ...] and are only a
wish list: prices and stock are checked again when the order is placed.
"""

from typing import Iterable, List

from fastapi import APIRouter, Depends
from sqlmodel import Session, col, select

from storefront.config import MAX_CART_ITEMS, MAX_ITEM_QUANTITY
from storefront.dependencies import Caller, get_current_user
from storefront.errors import ApiError, ErrorCode, envelope
from storefront.models import Cart, Product, utc_now
from storefront.schemas import CartItemIn, CartItemUpdate, CartRead, UpdateCartRequest
from storefront.utils.db import get_session

router = APIRouter(prefix="/cart", tags=["cart"])


def merge_items(existing: Iterable[dict], incoming: Iterable[CartItemIn]) -> List[dict]:
    """
    Add incoming lines to the existing ones.
    Same product means quantities are summed (capped per line); the number of
    distinct products is limited.
    """
    quantities = {}
    for line in existing:
        quantities[line["productId"]] = line["quantity"]
    for item in incoming:
        quantities[item.product_id] = min(quantities.get(item.product_id, 0) + item.quantity, MAX_ITEM_QUANTITY)

    if len(quantities) > MAX_CART_ITEMS:
        raise ApiError(
            ErrorCode.CART_LIMIT_EXCEEDED,
            f"Cart can hold at most {MAX_CART_ITEMS} different products",
            details={"limit": MAX_CART_ITEMS},
        )
    return [{"productId": pid, "quantity": qty} for pid, qty in quantities.items()]


def _ensure_products_exist(session: Session, product_ids: Iterable[int]) -> None:
    wanted = set(product_ids)
    if not wanted:
        return
    found = set(session.exec(select(Product.id).where(col(Product.id).in_(wanted))).all())
    missing = sorted(wanted - found)
    if missing:
        raise ApiError(
            ErrorCode.PRODUCT_NOT_FOUND,
            f"Product not found: ID {missing[0]}",
            details={"productId": missing[0]},
        )


def _get_cart(session: Session, user_id: str) -> Cart:
    cart = session.exec(select(Cart).where(Cart.user_id == user_id)).first()
    if cart is None:
        cart = Cart(user_id=user_id, items=[])
        session.add(cart)
        session.commit()
        session.refresh(cart)
    return cart


def _save(session: Session, cart: Cart, items: List[dict]) -> dict:
    # assign a new list so the JSON column is flagged as changed
    cart.items = items
    cart.updated_at = utc_now()
    session.add(cart)
    session.commit()
    session.refresh(cart)
    return envelope({"cart": CartRead.model_validate(cart).dump()})


@router.get("")
def get_cart(caller: Caller = Depends(get_current_user), session: Session = Depends(get_session)):
    cart = _get_cart(session, caller.user_id)
    return envelope({"cart": CartRead.model_validate(cart).dump()})


@router.post("")
def replace_cart(
    body: UpdateCartRequest,
    caller: Caller = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    items = merge_items([], body.items)
    _ensure_products_exist(session, (line["productId"] for line in items))
    return _save(session, _get_cart(session, caller.user_id), items)


@router.put("")
def update_cart_item(
    body: CartItemUpdate,
    caller: Caller = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Set the quantity of one line. Quantity 0 removes it."""
    cart = _get_cart(session, caller.user_id)
    items = [dict(line) for line in cart.items if line["productId"] != body.product_id]

    if body.quantity > 0:
        _ensure_products_exist(session, [body.product_id])
        if len(items) >= MAX_CART_ITEMS:
            raise ApiError(
                ErrorCode.CART_LIMIT_EXCEEDED,
                f"Cart can hold at most {MAX_CART_ITEMS} different products",
                details={"limit": MAX_CART_ITEMS},
            )
        items.append({"productId": body.product_id, "quantity": body.quantity})

    return _save(session, cart, items)


@router.post("/merge")
def merge_cart(
    body: UpdateCartRequest,
    caller: Caller = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    # Used after login to fold the anonymous browser cart into the saved one
    cart = _get_cart(session, caller.user_id)
    items = merge_items(cart.items, body.items)
    _ensure_products_exist(session, (item.product_id for item in body.items))
    return _save(session, cart, items)


@router.delete("")
def clear_cart(caller: Caller = Depends(get_current_user), session: Session = Depends(get_session)):
    return _save(session, _get_cart(session, caller.user_id), [])
