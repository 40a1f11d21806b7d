# storefront/lifecycle.py
"""
The order state machine.

Each plan_* function looks at an order row that was just read and decides
what should happen to it: which fields change, which stock lines go back on
the shelf or come off it, and which side effects (cache, email) to attempt
afterwards. They never touch the database; orders.py and webhooks.py apply
the result inside a transaction.

Status axis:   pending -> processing -> shipped -> delivered
               (cancelled, refunded are side exits)
Payment axis:  unpaid | awaiting -> paid -> refunded | failed
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field

from storefront.errors import ApiError, ErrorCode
from storefront.inventory import StockLine, lines_from_items
from storefront.models import Order, OrderStatus, PaymentMethod, PaymentStatus
from storefront.pricing import money

CANCELLABLE = {OrderStatus.PENDING, OrderStatus.PROCESSING}
CLOSED = {OrderStatus.CANCELLED, OrderStatus.REFUNDED}


# --- Side effects ---

class InvalidateCache(BaseModel):
    kind: Literal["invalidate_cache"] = "invalidate_cache"
    namespace: str


class SendEmail(BaseModel):
    kind: Literal["send_email"] = "send_email"
    template: Literal["order_received", "payment_confirmed"]
    order_id: int


Effect = Union[InvalidateCache, SendEmail]


class Transition(BaseModel):
    changes: dict = Field(default_factory=dict)
    restock: List[StockLine] = Field(default_factory=list)
    deduct: List[StockLine] = Field(default_factory=list)
    effects: List[Effect] = Field(default_factory=list)

    @property
    def stock_restored(self) -> bool:
        return bool(self.restock)


def append_note(existing: Optional[str], note: str) -> str:
    return f"{existing}\n\n{note}" if existing else note


# --- Create ---

def initial_state(payment_method: PaymentMethod) -> tuple[OrderStatus, PaymentStatus]:
    """Cash on delivery starts unpaid; hosted payment waits for the checkout session."""
    if payment_method == PaymentMethod.COD:
        return OrderStatus.PENDING, PaymentStatus.UNPAID
    return OrderStatus.PENDING, PaymentStatus.AWAITING


def plan_created(order: Order) -> Transition:
    # stock for the new row; the pre-check already ran under lock
    effects: List[Effect] = [InvalidateCache(namespace="products")]
    if order.payment_method == PaymentMethod.COD:
        effects.append(SendEmail(template="order_received", order_id=order.id))
    return Transition(deduct=lines_from_items(order.items), effects=effects)


# --- Customer / admin transitions ---

def plan_cancel(order: Order) -> Transition:
    if order.status not in CANCELLABLE:
        raise ApiError(
            ErrorCode.ORDER_CANNOT_BE_CANCELLED,
            f"Order cannot be cancelled. Current status: {order.status.value}",
            {"status": order.status.value, "reason": "Only pending or processing orders can be cancelled"},
        )
    # Stock came off the shelf at creation whatever the payment state, so it always goes back
    return Transition(
        changes={"status": OrderStatus.CANCELLED},
        restock=lines_from_items(order.items),
        effects=[InvalidateCache(namespace="products")],
    )


def plan_admin_update(order: Order, patch: dict) -> Transition:
    return Transition(changes={k: v for k, v in patch.items() if v is not None})


def plan_soft_delete(order: Order, actor_id: str, now: datetime) -> Transition:
    if order.status == OrderStatus.DELIVERED and order.payment_status == PaymentStatus.PAID:
        raise ApiError(
            ErrorCode.ORDER_CANNOT_BE_DELETED,
            "Delivered and paid orders are financial records. Refund the order instead of deleting it",
            {"status": order.status.value, "paymentStatus": order.payment_status.value},
        )
    restock = [] if order.status in CLOSED else lines_from_items(order.items)
    note = f"[DELETED] Soft-deleted by admin {actor_id} at {now.isoformat()}"
    return Transition(
        changes={"deleted_at": now, "notes": append_note(order.notes, note)},
        restock=restock,
        effects=[InvalidateCache(namespace="products")] if restock else [],
    )


def refund_amount_for(order: Order, requested: Optional[Decimal]) -> Decimal:
    total = money(order.total)
    if requested is None:
        return total
    amount = money(requested)
    if amount > total:
        raise ApiError(
            ErrorCode.REFUND_AMOUNT_EXCEEDS_TOTAL,
            f"Refund amount {amount} exceeds order total {total}",
            {"refundAmount": str(amount), "orderTotal": str(total)},
        )
    return amount


def check_refundable(order: Order) -> None:
    if order.payment_status == PaymentStatus.REFUNDED:
        raise ApiError(ErrorCode.ORDER_ALREADY_REFUNDED)
    if order.payment_status != PaymentStatus.PAID:
        raise ApiError(
            ErrorCode.ORDER_NOT_PAID,
            f"Cannot refund: payment status is \"{order.payment_status.value}\"",
            {"paymentStatus": order.payment_status.value},
        )


def needs_provider_refund(order: Order) -> bool:
    return order.payment_method == PaymentMethod.STRIPE and bool(order.payment_intent_id)


def plan_refund(order: Order, note: str) -> Transition:
    check_refundable(order)
    return Transition(
        changes={
            "status": OrderStatus.REFUNDED,
            "payment_status": PaymentStatus.REFUNDED,
            "notes": append_note(order.notes, note),
        },
        restock=lines_from_items(order.items),
        effects=[InvalidateCache(namespace="products")],
    )


def check_refund_request_allowed(order: Order) -> None:
    if order.payment_status != PaymentStatus.PAID:
        raise ApiError(
            ErrorCode.ORDER_NOT_PAID,
            f"Cannot request refund: payment status is \"{order.payment_status.value}\"",
        )
    if order.status in CLOSED:
        raise ApiError(ErrorCode.ORDER_ALREADY_REFUNDED, "This order has already been refunded or cancelled")


# --- Payment provider events ---

def plan_checkout_completed(order: Order, payment_intent_id: Optional[str]) -> Optional[Transition]:
    """None when the order is already paid (a replayed event)."""
    if order.payment_status == PaymentStatus.PAID:
        return None
    return Transition(
        changes={"payment_status": PaymentStatus.PAID, "payment_intent_id": payment_intent_id},
        deduct=lines_from_items(order.items),
        effects=[
            InvalidateCache(namespace="products"),
            SendEmail(template="payment_confirmed", order_id=order.id),
        ],
    )


def plan_checkout_expired(order: Order) -> Optional[Transition]:
    """Only an order still waiting on the provider can expire."""
    if order.payment_status != PaymentStatus.AWAITING:
        return None
    return Transition(changes={"payment_status": PaymentStatus.FAILED, "status": OrderStatus.CANCELLED})
