# storefront/routers/webhooks.py

import logging
from typing import Optional

import redis
from fastapi import APIRouter, Depends, Header, Request
from sqlmodel import Session

from storefront.dependencies import get_kv, get_mailer, get_payment_gateway, require_gateway
from storefront.errors import ApiError, ErrorCode
from storefront.notifications import Mailer
from storefront.payments import InvalidSignatureError, PaymentGateway
from storefront.utils.db import get_session
from storefront.webhooks import handle_event, mark_event_processed

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def raw_body(request: Request) -> bytes:
    # The signature covers the exact bytes, so the body must not be parsed first
    return await request.body()


@router.post("/payment")
@router.post("/stripe", include_in_schema=False)
def payment_webhook(
    payload: bytes = Depends(raw_body),
    signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    session: Session = Depends(get_session),
    gateway: Optional[PaymentGateway] = Depends(get_payment_gateway),
    kv: Optional[redis.Redis] = Depends(get_kv),
    mailer: Optional[Mailer] = Depends(get_mailer),
):
    """
    Called by the payment provider, not by shoppers, so there is no user auth.
    The signature check is the authentication.
    """
    if not signature:
        logger.error("❌ Payment webhook: missing stripe-signature header")
        raise ApiError(ErrorCode.WEBHOOK_SIGNATURE_INVALID, "Missing stripe-signature header")

    try:
        event = require_gateway(gateway).construct_event(payload, signature)
    except InvalidSignatureError as e:
        logger.error("❌ Payment webhook signature verification failed: %s", e)
        raise ApiError(ErrorCode.WEBHOOK_SIGNATURE_INVALID, f"Webhook signature verification failed: {e}")

    logger.info("📨 Payment webhook received: %s (%s)", event.type, event.id)

    if not mark_event_processed(kv, event.id):
        logger.info("Duplicate webhook event %s, skipping", event.id)
        return {"received": True, "duplicate": True}

    try:
        handle_event(session, event, kv, mailer)
    except Exception:
        # Answer 200 anyway: the provider retries on errors and a bug in our
        # handler will not fix itself between retries
        logger.exception("❌ Payment webhook handler error for %s", event.type)
        return {"received": True, "error": "Handler error logged"}

    return {"received": True}
