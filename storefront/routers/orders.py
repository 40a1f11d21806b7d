# storefront/routers/orders.py

"""
Order endpoints: checkout submission, customer views, cancel,
and the admin back-office actions (update, soft delete, refund).
"""

from typing import Optional

import redis
from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from storefront import orders as order_service
from storefront.config import Settings, get_settings
from storefront.dependencies import (
    Caller,
    get_current_user,
    get_kv,
    get_mailer,
    get_payment_gateway,
    require_admin,
)
from storefront.errors import envelope
from storefront.models import OrderStatus
from storefront.notifications import Mailer
from storefront.payments import PaymentGateway
from storefront.ratelimit import rate_limit
from storefront.schemas import (
    CreateOrderRequest,
    OrderRead,
    RefundOrderRequest,
    UpdateOrderRequest,
    pagination,
)
from storefront.utils.db import get_session

router = APIRouter(prefix="/orders", tags=["orders"])


def _dump(order) -> dict:
    return OrderRead.model_validate(order).dump()


@router.post("", status_code=201, dependencies=[Depends(rate_limit("strict"))])
def create_order(
    body: CreateOrderRequest,
    caller: Caller = Depends(get_current_user),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    kv: Optional[redis.Redis] = Depends(get_kv),
    mailer: Optional[Mailer] = Depends(get_mailer),
):
    """
    Place an order from the checkout form.
    Prices are recomputed here; the client's total only has to agree within a cent.
    """
    order, effects = order_service.create_order(session, body, caller, settings)
    order_service.run_effects(session, effects, kv, mailer)
    return envelope({"order": _dump(order)}, "Order created successfully")


@router.get("", dependencies=[Depends(rate_limit("moderate"))])
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    admin: Caller = Depends(require_admin),
    session: Session = Depends(get_session),
):
    orders, total = order_service.list_orders(session, page, limit, status)
    return envelope({"orders": [_dump(o) for o in orders], "pagination": pagination(page, limit, total)})


@router.get("/my-orders", dependencies=[Depends(rate_limit("moderate"))])
def my_orders(caller: Caller = Depends(get_current_user), session: Session = Depends(get_session)):
    orders = order_service.list_orders_for_user(session, caller)
    return envelope({"orders": [_dump(o) for o in orders], "count": len(orders)})


@router.get("/{order_id}", dependencies=[Depends(rate_limit("moderate"))])
def get_order(order_id: int, caller: Caller = Depends(get_current_user), session: Session = Depends(get_session)):
    order = order_service.get_order_for(session, order_id, caller)
    return envelope({"order": _dump(order)})


@router.put("/{order_id}", dependencies=[Depends(rate_limit("strict"))])
def update_order(
    order_id: int,
    body: UpdateOrderRequest,
    admin: Caller = Depends(require_admin),
    session: Session = Depends(get_session),
):
    order = order_service.update_order(session, order_id, body)
    return envelope({"order": _dump(order)}, "Order updated successfully")


@router.delete("/{order_id}", dependencies=[Depends(rate_limit("strict"))])
def delete_order(
    order_id: int,
    admin: Caller = Depends(require_admin),
    session: Session = Depends(get_session),
    kv: Optional[redis.Redis] = Depends(get_kv),
):
    order, transition = order_service.soft_delete_order(session, order_id, admin)
    order_service.run_effects(session, transition.effects, kv, None)
    return envelope(
        {
            "order": {
                "id": order.id,
                "orderNumber": order.order_number,
                "deletedAt": order.deleted_at.isoformat(),
            },
            "stockRestored": transition.stock_restored,
            "message": "Order deleted successfully",
        },
        "Order deleted successfully",
    )


@router.post("/{order_id}/cancel", dependencies=[Depends(rate_limit("strict"))])
def cancel_order(
    order_id: int,
    caller: Caller = Depends(get_current_user),
    session: Session = Depends(get_session),
    kv: Optional[redis.Redis] = Depends(get_kv),
):
    order, transition = order_service.cancel_order(session, order_id, caller)
    order_service.run_effects(session, transition.effects, kv, None)
    return envelope(
        {
            "order": _dump(order),
            "message": "Order cancelled successfully",
            "inventoryRestored": True,
        },
        "Order cancelled successfully",
    )


@router.post("/{order_id}/refund", dependencies=[Depends(rate_limit("strict"))])
def refund_order(
    order_id: int,
    body: RefundOrderRequest,
    admin: Caller = Depends(require_admin),
    session: Session = Depends(get_session),
    gateway: Optional[PaymentGateway] = Depends(get_payment_gateway),
    kv: Optional[redis.Redis] = Depends(get_kv),
):
    outcome = order_service.refund_order(session, order_id, body, admin, gateway)
    order_service.run_effects(session, outcome.transition.effects, kv, None)
    return envelope(
        {
            "order": _dump(outcome.order),
            "refundAmount": str(outcome.amount),
            "providerRefundId": outcome.provider_refund_id,
            "inventoryRestored": outcome.transition.stock_restored,
        },
        "Order refunded successfully",
    )
