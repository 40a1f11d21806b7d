# storefront/routers/refunds.py

"""
Refund tickets.
Customers open them, admins approve or reject them.
Approval is what actually moves money and stock.
"""

from typing import Optional

import redis
from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from storefront import orders as order_service
from storefront.dependencies import (
    Caller,
    get_current_user,
    get_kv,
    get_payment_gateway,
    require_admin,
)
from storefront.errors import envelope
from storefront.models import RefundRequestStatus
from storefront.payments import PaymentGateway
from storefront.ratelimit import rate_limit
from storefront.schemas import (
    AdminRefundRequestRead,
    CreateRefundRequest,
    RefundRequestRead,
    ResolveRefundRequest,
    pagination,
)
from storefront.utils.db import get_session

router = APIRouter(tags=["refunds"])


@router.post("/refund-requests", status_code=201, dependencies=[Depends(rate_limit("strict"))])
def create_refund_request(
    body: CreateRefundRequest,
    caller: Caller = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    refund_request = order_service.submit_refund_request(session, body, caller)
    return envelope(
        {"refundRequest": RefundRequestRead.model_validate(refund_request).dump()},
        "Refund request submitted successfully. Our team will review it shortly.",
    )


@router.get("/refund-requests", dependencies=[Depends(rate_limit("moderate"))])
def my_refund_requests(caller: Caller = Depends(get_current_user), session: Session = Depends(get_session)):
    requests = order_service.list_refund_requests_for_user(session, caller)
    return envelope({"refundRequests": [RefundRequestRead.model_validate(r).dump() for r in requests]})


@router.get("/admin/refund-requests", dependencies=[Depends(rate_limit("moderate"))])
def list_refund_requests(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    status: Optional[RefundRequestStatus] = None,
    admin: Caller = Depends(require_admin),
    session: Session = Depends(get_session),
):
    """
    Fetch refund tickets with the order details an admin needs to decide
    """
    rows, total = order_service.list_refund_requests(session, page, limit, status)
    requests = []
    for refund_request, order in rows:
        item = AdminRefundRequestRead.model_validate(refund_request)
        if order is not None:
            item.order_total = order.total
            item.order_status = order.status
            item.order_payment_status = order.payment_status
            item.order_payment_method = order.payment_method
            item.customer_name = order.customer_name
            item.customer_email = order.customer_email
        requests.append(item.dump())
    return envelope({"refundRequests": requests, "pagination": pagination(page, limit, total)})


@router.patch("/admin/refund-requests/{request_id}", dependencies=[Depends(rate_limit("strict"))])
def resolve_refund_request(
    request_id: int,
    body: ResolveRefundRequest,
    admin: Caller = Depends(require_admin),
    session: Session = Depends(get_session),
    gateway: Optional[PaymentGateway] = Depends(get_payment_gateway),
    kv: Optional[redis.Redis] = Depends(get_kv),
):
    refund_request, outcome = order_service.resolve_refund_request(session, request_id, body, admin, gateway)
    data = {"refundRequest": RefundRequestRead.model_validate(refund_request).dump()}

    if outcome is None:
        return envelope(data, "Refund request rejected")

    order_service.run_effects(session, outcome.transition.effects, kv, None)
    data.update({
        "providerRefundId": outcome.provider_refund_id,
        "refundAmount": str(outcome.amount),
        "inventoryRestored": outcome.transition.stock_restored,
    })
    return envelope(data, "Refund approved and processed successfully")
