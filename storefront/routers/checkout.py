# storefront/routers/checkout.py

from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from storefront.config import Settings, get_settings
from storefront.dependencies import Caller, get_current_user, get_payment_gateway, is_owner, require_gateway
from storefront.errors import ApiError, ErrorCode, envelope
from storefront.orders import load_order
from storefront.payments import PaymentGateway, start_checkout
from storefront.ratelimit import rate_limit
from storefront.schemas import CheckoutRequest, CheckoutSessionRead
from storefront.utils.db import get_session

router = APIRouter(tags=["checkout"])


@router.post("/checkout", dependencies=[Depends(rate_limit("strict"))])
def create_checkout_session(
    body: CheckoutRequest,
    caller: Caller = Depends(get_current_user),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    gateway: Optional[PaymentGateway] = Depends(get_payment_gateway),
):
    """
    Hosted payment for an order created with paymentMethod "stripe".
    Returns the session id and the URL to redirect the shopper to.
    Only the shopper who owns the order can pay for it, admins included.
    """
    order = load_order(session, body.order_id)
    if not is_owner(order, caller):
        raise ApiError(ErrorCode.ORDER_ACCESS_DENIED, "You are not authorized to pay for this order")
    checkout = start_checkout(session, require_gateway(gateway), order, caller.user_id, settings)
    return envelope(CheckoutSessionRead(session_id=checkout.id, url=checkout.url).dump())
