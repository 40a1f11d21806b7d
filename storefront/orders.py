# storefront/orders.py
"""
Order service: the transactional side of the state machine.

Each operation reads the order row under a lock, asks lifecycle.py what
should happen, then applies field changes and stock moves in one
transaction. Side effects (cache invalidation, email) run only after the
commit, each on its own, so one failing never affects the order or the
other effects.
"""

import logging
import secrets
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence

import redis
from pydantic import BaseModel, ConfigDict
from sqlalchemy import func
from sqlmodel import Session, col, or_, select

from storefront import cache
from storefront.config import Settings
from storefront.dependencies import Caller, ensure_can_access, is_owner, require_gateway
from storefront.errors import ApiError, ErrorCode
from storefront.inventory import StockLine, deduct_items, ensure_stock, restore_items
from storefront.lifecycle import (
    Effect,
    InvalidateCache,
    SendEmail,
    Transition,
    check_refund_request_allowed,
    check_refundable,
    initial_state,
    needs_provider_refund,
    plan_admin_update,
    plan_cancel,
    plan_created,
    plan_refund,
    plan_soft_delete,
    refund_amount_for,
)
from storefront.models import (
    Order,
    OrderStatus,
    RefundRequest,
    RefundRequestStatus,
    utc_now,
)
from storefront.notifications import Mailer, send_order_email
from storefront.payments import PaymentGateway, PaymentProviderError
from storefront.pricing import calculate_order_prices, money, to_minor_units, validate_client_prices
from storefront.schemas import (
    CreateOrderRequest,
    CreateRefundRequest,
    RefundOrderRequest,
    ResolveRefundRequest,
    UpdateOrderRequest,
)
from storefront.utils.db import atomic

logger = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 10


class RefundOutcome(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    order: Order
    amount: Decimal
    provider_refund_id: Optional[str] = None
    transition: Transition
    refund_request: Optional[RefundRequest] = None


# --- Helpers ---

def load_order(session: Session, order_id: int, for_update: bool = False) -> Order:
    """Fetch a live (not soft-deleted) order or raise ORDER_NOT_FOUND."""
    statement = select(Order).where(Order.id == order_id, col(Order.deleted_at).is_(None))
    if for_update:
        statement = statement.with_for_update().execution_options(populate_existing=True)
    order = session.exec(statement).first()
    if order is None:
        raise ApiError(ErrorCode.ORDER_NOT_FOUND)
    return order


def apply_transition(session: Session, order: Order, transition: Transition) -> None:
    restore_items(session, transition.restock)
    deduct_items(session, transition.deduct)
    for field, value in transition.changes.items():
        setattr(order, field, value)
    order.updated_at = utc_now()
    session.add(order)


def run_effects(
    session: Session,
    effects: Sequence[Effect],
    kv: Optional[redis.Redis],
    mailer: Optional[Mailer],
) -> None:
    for effect in effects:
        try:
            if isinstance(effect, InvalidateCache):
                cache.invalidate_namespace(kv, effect.namespace)
            elif isinstance(effect, SendEmail):
                if mailer is None:
                    continue
                order = session.get(Order, effect.order_id)
                if order is not None:
                    send_order_email(mailer, order, effect.template)
        except Exception as e:
            # best effort: the order change is already committed
            logger.warning("Side effect %s failed: %s", effect.kind, e)


def generate_order_number(session: Session, now: datetime) -> str:
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        candidate = f"ORD-{now.year}-{secrets.randbelow(1_000_000):06d}"
        taken = session.exec(select(Order.id).where(Order.order_number == candidate)).first()
        if taken is None:
            return candidate
    raise ApiError(ErrorCode.ORDER_ALREADY_EXISTS, "Could not allocate a unique order number. Please try again.")


def _provider_refund(gateway: Optional[PaymentGateway], order: Order, amount: Decimal) -> str:
    gateway = require_gateway(gateway)
    try:
        refund = gateway.create_refund(order.payment_intent_id, to_minor_units(amount))
    except PaymentProviderError as e:
        logger.error("❌ Stripe refund failed for order %s: %s", order.order_number, e)
        raise ApiError(ErrorCode.EXTERNAL_SERVICE_ERROR, "Failed to process Stripe refund. Please try again.")
    logger.info("✅ Stripe refund created: %s for order %s", refund.id, order.order_number)
    return refund.id


# --- Create ---

def create_order(session: Session, body: CreateOrderRequest, caller: Caller, settings: Settings) -> tuple[Order, List[Effect]]:
    calculation = calculate_order_prices(session, body.items)

    if not validate_client_prices(body.total, calculation, settings.price_tolerance):
        raise ApiError(
            ErrorCode.PRICE_MISMATCH,
            details={
                "clientTotal": str(body.total),
                "serverTotal": str(calculation.total),
                "subtotal": str(calculation.subtotal),
                "tax": str(calculation.tax),
                "shippingCost": str(calculation.shipping_cost),
            },
        )

    now = utc_now()
    status, payment_status = initial_state(body.payment_method)
    lines = [StockLine(item.product_id, item.quantity) for item in calculation.items]

    with atomic(session):
        order_number = generate_order_number(session, now)
        ensure_stock(session, lines)
        order = Order(
            order_number=order_number,
            user_id=caller.user_id,
            customer_name=body.customer_name,
            customer_email=str(body.customer_email),
            customer_phone=body.customer_phone,
            shipping_address=body.shipping_address,
            shipping_city=body.shipping_city,
            shipping_state=body.shipping_state,
            shipping_zip=body.shipping_zip,
            shipping_country=body.shipping_country,
            items=[item.snapshot() for item in calculation.items],
            subtotal=str(calculation.subtotal),
            tax=str(calculation.tax),
            shipping_cost=str(calculation.shipping_cost),
            total=str(calculation.total),
            currency=body.currency,
            status=status,
            payment_status=payment_status,
            payment_method=body.payment_method,
            notes=body.notes,
            created_at=now,
            updated_at=now,
        )
        session.add(order)
        session.flush()
        transition = plan_created(order)
        deduct_items(session, transition.deduct)

    session.refresh(order)
    logger.info("Order %s created for user %s (total %s)", order.order_number, caller.user_id, order.total)
    return order, transition.effects


# --- Reads ---

def get_order_for(session: Session, order_id: int, caller: Caller) -> Order:
    order = load_order(session, order_id)
    ensure_can_access(order, caller)
    return order


def list_orders(session: Session, page: int, limit: int, status: Optional[OrderStatus] = None) -> tuple[List[Order], int]:
    conditions = [col(Order.deleted_at).is_(None)]
    if status is not None:
        conditions.append(Order.status == status)
    total = session.exec(select(func.count()).select_from(Order).where(*conditions)).one()
    orders = session.exec(
        select(Order)
        .where(*conditions)
        .order_by(col(Order.created_at).desc(), col(Order.id).desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    return list(orders), total


def list_orders_for_user(session: Session, caller: Caller) -> List[Order]:
    owner = Order.user_id == caller.user_id
    if caller.email:
        owner = or_(owner, Order.customer_email == caller.email)
    statement = (
        select(Order)
        .where(col(Order.deleted_at).is_(None), owner)
        .order_by(col(Order.created_at).desc(), col(Order.id).desc())
    )
    return list(session.exec(statement).all())


# --- Transitions ---

def cancel_order(session: Session, order_id: int, caller: Caller) -> tuple[Order, Transition]:
    with atomic(session):
        order = load_order(session, order_id, for_update=True)
        ensure_can_access(order, caller, "You do not have permission to cancel this order")
        transition = plan_cancel(order)
        apply_transition(session, order, transition)
    session.refresh(order)
    logger.info("Order %s cancelled by %s", order.order_number, caller.user_id)
    return order, transition


def update_order(session: Session, order_id: int, body: UpdateOrderRequest) -> Order:
    with atomic(session):
        order = load_order(session, order_id, for_update=True)
        apply_transition(session, order, plan_admin_update(order, body.model_dump(exclude_unset=True)))
    session.refresh(order)
    return order


def soft_delete_order(session: Session, order_id: int, caller: Caller) -> tuple[Order, Transition]:
    with atomic(session):
        order = load_order(session, order_id, for_update=True)
        transition = plan_soft_delete(order, caller.user_id, utc_now())
        apply_transition(session, order, transition)
    session.refresh(order)
    logger.info("Order %s soft-deleted by %s", order.order_number, caller.user_id)
    return order, transition


def refund_order(
    session: Session,
    order_id: int,
    body: RefundOrderRequest,
    caller: Caller,
    gateway: Optional[PaymentGateway],
) -> RefundOutcome:
    """
    Admin refund. Money goes back through the provider first; if that fails
    nothing local has changed and the admin can simply retry.
    """
    with atomic(session):
        order = load_order(session, order_id, for_update=True)
        check_refundable(order)
        amount = refund_amount_for(order, body.refund_amount)

        provider_refund_id = None
        if needs_provider_refund(order):
            provider_refund_id = _provider_refund(gateway, order, amount)

        transition = plan_refund(order, f"[REFUND] {amount} {order.currency} by admin {caller.user_id}: {body.reason}")
        apply_transition(session, order, transition)

    session.refresh(order)
    return RefundOutcome(order=order, amount=amount, provider_refund_id=provider_refund_id, transition=transition)


# --- Refund requests ---

def submit_refund_request(session: Session, body: CreateRefundRequest, caller: Caller) -> RefundRequest:
    with atomic(session):
        order = session.exec(
            select(Order)
            .where(Order.order_number == body.order_number, col(Order.deleted_at).is_(None))
            .with_for_update()
        ).first()
        if order is None:
            raise ApiError(ErrorCode.ORDER_NOT_FOUND)
        if not is_owner(order, caller):
            raise ApiError(ErrorCode.ORDER_ACCESS_DENIED, "You can only request refunds for your own orders")

        check_refund_request_allowed(order)

        pending = session.exec(
            select(RefundRequest.id).where(
                RefundRequest.order_id == order.id,
                RefundRequest.status == RefundRequestStatus.PENDING,
            )
        ).first()
        if pending is not None:
            raise ApiError(ErrorCode.REFUND_REQUEST_PENDING)

        refund_request = RefundRequest(
            order_id=order.id,
            order_number=order.order_number,
            user_id=caller.user_id,
            reason=body.reason,
        )
        session.add(refund_request)

    session.refresh(refund_request)
    logger.info("Refund request %s opened for order %s", refund_request.id, order.order_number)
    return refund_request


def list_refund_requests_for_user(session: Session, caller: Caller) -> List[RefundRequest]:
    statement = (
        select(RefundRequest)
        .where(RefundRequest.user_id == caller.user_id)
        .order_by(col(RefundRequest.created_at).desc(), col(RefundRequest.id).desc())
    )
    return list(session.exec(statement).all())


def list_refund_requests(
    session: Session, page: int, limit: int, status: Optional[RefundRequestStatus] = None
) -> tuple[list, int]:
    conditions = [RefundRequest.status == status] if status is not None else []
    total = session.exec(select(func.count()).select_from(RefundRequest).where(*conditions)).one()
    rows = session.exec(
        select(RefundRequest, Order)
        .join(Order, col(RefundRequest.order_id) == col(Order.id), isouter=True)
        .where(*conditions)
        .order_by(col(RefundRequest.created_at).desc(), col(RefundRequest.id).desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    return list(rows), total


def resolve_refund_request(
    session: Session,
    request_id: int,
    body: ResolveRefundRequest,
    caller: Caller,
    gateway: Optional[PaymentGateway],
) -> tuple[RefundRequest, Optional[RefundOutcome]]:
    """
    Approve or reject a customer's refund ticket.
    Approval runs the same sequence as a direct admin refund for the full total.
    """
    now = utc_now()
    with atomic(session):
        refund_request = session.exec(
            select(RefundRequest)
            .where(RefundRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).first()
        if refund_request is None:
            raise ApiError(ErrorCode.REFUND_REQUEST_NOT_FOUND)
        if refund_request.status != RefundRequestStatus.PENDING:
            raise ApiError(
                ErrorCode.REFUND_REQUEST_RESOLVED,
                f"Refund request has already been {refund_request.status.value}",
            )

        order = load_order(session, refund_request.order_id, for_update=True)

        refund_request.admin_notes = body.admin_notes
        refund_request.resolved_by = caller.user_id
        refund_request.resolved_at = now
        refund_request.updated_at = now

        outcome = None
        if body.status == "rejected":
            refund_request.status = RefundRequestStatus.REJECTED
        else:
            check_refundable(order)
            amount = money(order.total)
            provider_refund_id = None
            if needs_provider_refund(order):
                provider_refund_id = _provider_refund(gateway, order, amount)

            transition = plan_refund(order, f"[REFUND APPROVED] {body.admin_notes or 'Approved by admin'}")
            apply_transition(session, order, transition)

            refund_request.status = RefundRequestStatus.COMPLETED
            refund_request.provider_refund_id = provider_refund_id
            refund_request.refund_amount = str(amount)
            outcome = RefundOutcome(
                order=order,
                amount=amount,
                provider_refund_id=provider_refund_id,
                transition=transition,
                refund_request=refund_request,
            )
        session.add(refund_request)

    session.refresh(refund_request)
    if outcome is not None:
        session.refresh(outcome.order)
    logger.info("Refund request %s %s by %s", refund_request.id, refund_request.status.value, caller.user_id)
    return refund_request, outcome
