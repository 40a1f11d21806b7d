# storefront/dependencies.py
"""
Used by FastAPI for dependency injection - Database, Auth & outside services
It verifies who the user is and hands each route the collaborators it needs
(payment gateway, mailer, redis). Tests swap any of these with
app.dependency_overrides.
"""

import logging
from functools import lru_cache
from typing import Annotated, Any, Optional

import redis
from fastapi import Depends, Header
from pydantic import BaseModel
from sqlmodel import Session

from storefront.config import Settings, get_settings
from storefront.errors import ApiError, ErrorCode
from storefront.models import Order, Role, UserAccount
from storefront.notifications import Mailer, ResendMailer
from storefront.payments import PaymentGateway, StripeGateway
from storefront.utils.db import get_session

logger = logging.getLogger(__name__)


class Caller(BaseModel):
    """Who is making this request."""
    user_id: str
    email: Optional[str] = None
    role: Role = Role.CUSTOMER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def normalize_role(metadata: Any) -> Role:
    """
    Read the role out of the identity provider's metadata.
    Old accounts store a bare "admin"/"customer" string, newer ones an
    object like {"role": "admin", "createdAt": "..."}. Anything else is a customer.
    """
    if isinstance(metadata, str):
        value = metadata
    elif isinstance(metadata, dict):
        value = metadata.get("role")
    else:
        return Role.CUSTOMER
    try:
        return Role(value)
    except ValueError:
        return Role.CUSTOMER


# 1. Authentication
# The identity provider's session is resolved upstream; it forwards the
# user id header and we look the account up
def get_current_user(
    user_id: Annotated[Optional[str], Header(alias="X-User-Id")] = None,
    session: Session = Depends(get_session),
) -> Caller:
    if not user_id:
        raise ApiError(ErrorCode.AUTH_REQUIRED)

    account = session.get(UserAccount, user_id)
    if not account:
        raise ApiError(ErrorCode.AUTH_INVALID_TOKEN)

    return Caller(
        user_id=account.id,
        email=account.primary_email,
        role=normalize_role(account.client_metadata),
    )


def require_admin(caller: Caller = Depends(get_current_user)) -> Caller:
    if not caller.is_admin:
        raise ApiError(ErrorCode.AUTH_ADMIN_REQUIRED)
    return caller


def is_owner(order: Order, caller: Caller) -> bool:
    # Orders placed before accounts carried ids are matched by email
    if order.user_id and order.user_id == caller.user_id:
        return True
    return bool(caller.email) and order.customer_email == caller.email


def ensure_can_access(order: Order, caller: Caller, message: str = "You do not have access to this order") -> None:
    if not caller.is_admin and not is_owner(order, caller):
        raise ApiError(ErrorCode.ORDER_ACCESS_DENIED, message)


# 2. Outside services

def get_payment_gateway(settings: Settings = Depends(get_settings)) -> Optional[PaymentGateway]:
    # Cash-on-delivery shops run without Stripe; callers that need it check for None
    if not settings.stripe_secret_key:
        return None
    return StripeGateway(settings.stripe_secret_key, settings.stripe_webhook_secret)


def require_gateway(gateway: Optional[PaymentGateway]) -> PaymentGateway:
    if gateway is None:
        raise ApiError(ErrorCode.CONFIGURATION_ERROR, "Payment provider is not configured")
    return gateway


def get_mailer(settings: Settings = Depends(get_settings)) -> Optional[Mailer]:
    # No API key means emails are switched off
    if not settings.resend_api_key:
        return None
    return ResendMailer(settings.resend_api_key, settings.resend_from_email)


@lru_cache
def _redis_client(url: str) -> redis.Redis:
    return redis.Redis.from_url(url, decode_responses=True)


def get_kv(settings: Settings = Depends(get_settings)) -> Optional[redis.Redis]:
    if not settings.redis_url:
        return None
    return _redis_client(settings.redis_url)
