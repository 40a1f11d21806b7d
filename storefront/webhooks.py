# storefront/webhooks.py
"""
Payment provider event reconciliation.

Providers deliver events at least once, so everything in here is idempotent
twice over: Redis remembers event ids for 48 hours (SET NX), and the order's
own payment_status is checked before any change. Redis is only advisory; if
it is missing or down the database check still stops a double apply.
"""

import logging
from typing import Optional

import redis
from sqlmodel import Session, col, select

from storefront.config import WEBHOOK_DEDUP_TTL_SECONDS
from storefront.lifecycle import plan_checkout_completed, plan_checkout_expired
from storefront.models import Order
from storefront.notifications import Mailer
from storefront.orders import apply_transition, run_effects
from storefront.payments import PaymentEvent
from storefront.utils.db import atomic

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
CHECKOUT_EXPIRED = "checkout.session.expired"


def mark_event_processed(kv: Optional[redis.Redis], event_id: str) -> bool:
    """True if this is the first time we see the event (or we cannot tell)."""
    if kv is None:
        return True
    try:
        return bool(kv.set(f"stripe:webhook:{event_id}", "1", nx=True, ex=WEBHOOK_DEDUP_TTL_SECONDS))
    except redis.RedisError as e:
        logger.warning("Webhook dedup unavailable for %s, relying on order state: %s", event_id, e)
        return True


def _order_from_metadata(session: Session, data: dict, event_type: str) -> Optional[Order]:
    metadata = data.get("metadata") or {}
    order_id = metadata.get("orderId")
    if not order_id:
        logger.error("❌ %s: Missing orderId in metadata", event_type)
        return None
    order = session.exec(
        select(Order)
        .where(Order.id == int(order_id), col(Order.deleted_at).is_(None))
        .with_for_update()
        .execution_options(populate_existing=True)
    ).first()
    if order is None:
        logger.error("❌ %s: Order %s not found", event_type, order_id)
    return order


def handle_checkout_completed(session: Session, data: dict, kv: Optional[redis.Redis], mailer: Optional[Mailer]) -> None:
    with atomic(session):
        order = _order_from_metadata(session, data, CHECKOUT_COMPLETED)
        if order is None:
            return
        transition = plan_checkout_completed(order, data.get("payment_intent"))
        if transition is None:
            logger.info("Order %s already marked as paid, skipping", order.order_number)
            return
        apply_transition(session, order, transition)

    logger.info("✅ Order %s marked as paid, stock deducted", order.order_number)
    run_effects(session, transition.effects, kv, mailer)


def handle_checkout_expired(session: Session, data: dict) -> None:
    with atomic(session):
        order = _order_from_metadata(session, data, CHECKOUT_EXPIRED)
        if order is None:
            return
        transition = plan_checkout_expired(order)
        if transition is None:
            logger.info(
                "Order %s payment status is %s, skipping expiry",
                order.order_number,
                order.payment_status.value,
            )
            return
        apply_transition(session, order, transition)
    logger.info("⏰ Order %s expired, marked as cancelled/failed", order.order_number)


def handle_event(session: Session, event: PaymentEvent, kv: Optional[redis.Redis], mailer: Optional[Mailer]) -> None:
    if event.type == CHECKOUT_COMPLETED:
        handle_checkout_completed(session, event.data, kv, mailer)
    elif event.type == CHECKOUT_EXPIRED:
        handle_checkout_expired(session, event.data)
    else:
        logger.info("Unhandled payment event type: %s", event.type)
