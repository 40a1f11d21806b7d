# storefront/payments.py
"""
Bridge to the hosted payment provider (Stripe).

StripeGateway is the only place that talks to the Stripe SDK. The rest of
the app sees plain pydantic objects, which is also what the tests' fake
gateway returns.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Protocol

import stripe
from pydantic import BaseModel
from sqlmodel import Session

from storefront.config import CHECKOUT_SESSION_TTL_SECONDS, Settings
from storefront.errors import ApiError, ErrorCode
from storefront.models import Order, PaymentStatus, utc_now
from storefront.pricing import money, to_minor_units

logger = logging.getLogger(__name__)


class PaymentProviderError(Exception):
    pass


class InvalidSignatureError(Exception):
    pass


class CheckoutSession(BaseModel):
    id: str
    url: Optional[str] = None
    status: Optional[str] = None  # open | complete | expired


class ProviderRefund(BaseModel):
    id: str
    amount: int
    status: Optional[str] = None


class PaymentEvent(BaseModel):
    id: str
    type: str
    data: dict  # the event's data.object


class PaymentGateway(Protocol):
    def create_checkout_session(self, params: dict) -> CheckoutSession: ...

    def retrieve_checkout_session(self, session_id: str) -> CheckoutSession: ...

    def create_refund(self, payment_intent_id: str, amount: int) -> ProviderRefund: ...

    def construct_event(self, payload: bytes, signature: str) -> PaymentEvent: ...


class StripeGateway:
    def __init__(self, secret_key: str, webhook_secret: Optional[str] = None):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret

    def create_checkout_session(self, params: dict) -> CheckoutSession:
        try:
            session = stripe.checkout.Session.create(api_key=self.secret_key, **params)
        except stripe.StripeError as e:
            raise PaymentProviderError(str(e)) from e
        return CheckoutSession(id=session.id, url=session.url, status=session.status)

    def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.secret_key)
        except stripe.StripeError as e:
            raise PaymentProviderError(str(e)) from e
        return CheckoutSession(id=session.id, url=session.url, status=session.status)

    def create_refund(self, payment_intent_id: str, amount: int) -> ProviderRefund:
        try:
            refund = stripe.Refund.create(
                api_key=self.secret_key,
                payment_intent=payment_intent_id,
                amount=amount,
                reason="requested_by_customer",
            )
        except stripe.StripeError as e:
            raise PaymentProviderError(str(e)) from e
        return ProviderRefund(id=refund.id, amount=refund.amount, status=refund.status)

    def construct_event(self, payload: bytes, signature: str) -> PaymentEvent:
        if not self.webhook_secret:
            raise ApiError(ErrorCode.CONFIGURATION_ERROR, "Webhook secret not configured")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise InvalidSignatureError(str(e)) from e
        # Signature is good, so the raw JSON is trustworthy
        raw = json.loads(payload)
        return PaymentEvent(id=raw["id"], type=raw["type"], data=raw["data"]["object"])


# --- Checkout session building ---

def _line(currency: str, name: str, unit_amount: int, quantity: int, images: List[str]) -> dict:
    return {
        "price_data": {
            "currency": currency,
            "product_data": {"name": name, "images": images},
            "unit_amount": unit_amount,
        },
        "quantity": quantity,
    }


def build_line_items(order: Order) -> List[dict]:
    """Order items plus shipping and tax as their own lines, all in cents."""
    currency = order.currency.lower()
    lines = [
        _line(
            currency,
            item["product_name"],
            to_minor_units(item["price"]),
            int(item["quantity"]),
            [item["product_image"]] if item.get("product_image") else [],
        )
        for item in order.items
    ]
    shipping = money(order.shipping_cost)
    if shipping > 0:
        lines.append(_line(currency, "Shipping", to_minor_units(shipping), 1, []))
    tax = money(order.tax)
    if tax > 0:
        lines.append(_line(currency, "Tax", to_minor_units(tax), 1, []))
    return lines


def build_checkout_params(order: Order, user_id: str, app_url: str, now: Optional[datetime] = None) -> dict:
    now = now or datetime.now(timezone.utc)
    expires_at = now + timedelta(seconds=CHECKOUT_SESSION_TTL_SECONDS)
    return {
        "mode": "payment",
        "payment_method_types": ["card"],
        "line_items": build_line_items(order),
        "customer_email": order.customer_email,
        "metadata": {
            "orderId": str(order.id),
            "orderNumber": order.order_number,
            "userId": user_id,
        },
        "success_url": f"{app_url}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}&order={order.order_number}",
        "cancel_url": f"{app_url}/checkout/cancel?order={order.order_number}",
        "expires_at": int(expires_at.timestamp()),
    }


def start_checkout(
    session: Session,
    gateway: PaymentGateway,
    order: Order,
    user_id: str,
    settings: Settings,
) -> CheckoutSession:
    """
    Hand back a hosted checkout for an order that is awaiting payment.
    A session that is still open is reused so a double click never creates
    two payable sessions for one order.
    """
    if order.payment_status != PaymentStatus.AWAITING:
        raise ApiError(
            ErrorCode.ORDER_NOT_AWAITING_PAYMENT,
            f"Cannot create checkout session: payment status is \"{order.payment_status.value}\"",
            {"paymentStatus": order.payment_status.value},
        )

    if order.payment_session_id:
        try:
            existing = gateway.retrieve_checkout_session(order.payment_session_id)
            if existing.status == "open":
                return existing
            logger.info("Checkout session %s is %s, creating a new one", existing.id, existing.status)
        except PaymentProviderError as e:
            logger.warning("Could not retrieve checkout session %s: %s", order.payment_session_id, e)

    try:
        created = gateway.create_checkout_session(build_checkout_params(order, user_id, settings.app_url))
    except PaymentProviderError as e:
        logger.error("Checkout session creation failed for order %s: %s", order.order_number, e)
        raise ApiError(ErrorCode.EXTERNAL_SERVICE_ERROR, "Failed to create checkout session. Please try again.")

    order.payment_session_id = created.id
    order.updated_at = utc_now()
    session.add(order)
    session.commit()
    return created
