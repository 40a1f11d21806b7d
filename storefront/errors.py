# storefront/errors.py
"""
One error vocabulary for the whole API.
Every failure a client can see has a stable code, an HTTP status and a
human readable default message. Handlers in here turn them into the
{"success": false, "error": {...}} envelope.
"""

import logging
from enum import Enum
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    # Auth
    AUTH_REQUIRED = "AUTH_REQUIRED"
    AUTH_INVALID_TOKEN = "AUTH_INVALID_TOKEN"
    AUTH_ADMIN_REQUIRED = "AUTH_ADMIN_REQUIRED"
    ORDER_ACCESS_DENIED = "ORDER_ACCESS_DENIED"

    # Missing resources
    NOT_FOUND = "NOT_FOUND"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    PRODUCT_NOT_FOUND = "PRODUCT_NOT_FOUND"
    CATEGORY_NOT_FOUND = "CATEGORY_NOT_FOUND"
    REFUND_REQUEST_NOT_FOUND = "REFUND_REQUEST_NOT_FOUND"

    # Bad input
    VALIDATION_FAILED = "VALIDATION_FAILED"
    BAD_REQUEST = "BAD_REQUEST"
    PRICE_MISMATCH = "PRICE_MISMATCH"
    CART_LIMIT_EXCEEDED = "CART_LIMIT_EXCEEDED"
    WEBHOOK_SIGNATURE_INVALID = "WEBHOOK_SIGNATURE_INVALID"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # Conflicts
    ORDER_ALREADY_EXISTS = "ORDER_ALREADY_EXISTS"
    ORDER_ALREADY_REFUNDED = "ORDER_ALREADY_REFUNDED"
    REFUND_REQUEST_PENDING = "REFUND_REQUEST_PENDING"
    REFUND_REQUEST_RESOLVED = "REFUND_REQUEST_RESOLVED"
    CATEGORY_ALREADY_EXISTS = "CATEGORY_ALREADY_EXISTS"
    CATEGORY_IN_USE = "CATEGORY_IN_USE"

    # Illegal transitions
    ORDER_CANNOT_BE_CANCELLED = "ORDER_CANNOT_BE_CANCELLED"
    ORDER_CANNOT_BE_DELETED = "ORDER_CANNOT_BE_DELETED"
    ORDER_NOT_PAID = "ORDER_NOT_PAID"
    ORDER_NOT_AWAITING_PAYMENT = "ORDER_NOT_AWAITING_PAYMENT"
    REFUND_AMOUNT_EXCEEDS_TOTAL = "REFUND_AMOUNT_EXCEEDS_TOTAL"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"

    # Everything else
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    SERVER_ERROR = "SERVER_ERROR"


ERROR_STATUS = {
    ErrorCode.AUTH_REQUIRED: 401,
    ErrorCode.AUTH_INVALID_TOKEN: 401,
    ErrorCode.AUTH_ADMIN_REQUIRED: 403,
    ErrorCode.ORDER_ACCESS_DENIED: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.ORDER_NOT_FOUND: 404,
    ErrorCode.PRODUCT_NOT_FOUND: 404,
    ErrorCode.CATEGORY_NOT_FOUND: 404,
    ErrorCode.REFUND_REQUEST_NOT_FOUND: 404,
    ErrorCode.VALIDATION_FAILED: 400,
    ErrorCode.BAD_REQUEST: 400,
    ErrorCode.PRICE_MISMATCH: 400,
    ErrorCode.CART_LIMIT_EXCEEDED: 400,
    ErrorCode.WEBHOOK_SIGNATURE_INVALID: 400,
    ErrorCode.METHOD_NOT_ALLOWED: 405,
    ErrorCode.RATE_LIMIT_EXCEEDED: 429,
    ErrorCode.ORDER_ALREADY_EXISTS: 409,
    ErrorCode.ORDER_ALREADY_REFUNDED: 409,
    ErrorCode.REFUND_REQUEST_PENDING: 409,
    ErrorCode.REFUND_REQUEST_RESOLVED: 409,
    ErrorCode.CATEGORY_ALREADY_EXISTS: 409,
    ErrorCode.CATEGORY_IN_USE: 409,
    ErrorCode.ORDER_CANNOT_BE_CANCELLED: 422,
    ErrorCode.ORDER_CANNOT_BE_DELETED: 422,
    ErrorCode.ORDER_NOT_PAID: 422,
    ErrorCode.ORDER_NOT_AWAITING_PAYMENT: 422,
    ErrorCode.REFUND_AMOUNT_EXCEEDS_TOTAL: 422,
    ErrorCode.INSUFFICIENT_STOCK: 422,
    ErrorCode.EXTERNAL_SERVICE_ERROR: 502,
    ErrorCode.CONFIGURATION_ERROR: 500,
    ErrorCode.DATABASE_ERROR: 500,
    ErrorCode.SERVER_ERROR: 500,
}

ERROR_MESSAGE = {
    ErrorCode.AUTH_REQUIRED: "Authentication required",
    ErrorCode.AUTH_INVALID_TOKEN: "Invalid or unknown user",
    ErrorCode.AUTH_ADMIN_REQUIRED: "Admin access required",
    ErrorCode.ORDER_ACCESS_DENIED: "You do not have access to this order",
    ErrorCode.NOT_FOUND: "Resource not found",
    ErrorCode.ORDER_NOT_FOUND: "Order not found",
    ErrorCode.PRODUCT_NOT_FOUND: "Product not found",
    ErrorCode.CATEGORY_NOT_FOUND: "Category not found",
    ErrorCode.REFUND_REQUEST_NOT_FOUND: "Refund request not found",
    ErrorCode.VALIDATION_FAILED: "Validation failed",
    ErrorCode.BAD_REQUEST: "Bad request",
    ErrorCode.PRICE_MISMATCH: "Prices have changed. Please review your order and try again",
    ErrorCode.CART_LIMIT_EXCEEDED: "Cart has reached its item limit",
    ErrorCode.WEBHOOK_SIGNATURE_INVALID: "Webhook signature verification failed",
    ErrorCode.METHOD_NOT_ALLOWED: "Method not allowed",
    ErrorCode.RATE_LIMIT_EXCEEDED: "Too many requests. Please try again later",
    ErrorCode.ORDER_ALREADY_EXISTS: "An order with this number already exists",
    ErrorCode.ORDER_ALREADY_REFUNDED: "Order has already been refunded",
    ErrorCode.REFUND_REQUEST_PENDING: "A refund request is already pending for this order",
    ErrorCode.REFUND_REQUEST_RESOLVED: "Refund request has already been resolved",
    ErrorCode.CATEGORY_ALREADY_EXISTS: "A category with this slug already exists",
    ErrorCode.CATEGORY_IN_USE: "Category still has products",
    ErrorCode.ORDER_CANNOT_BE_CANCELLED: "Order cannot be cancelled",
    ErrorCode.ORDER_CANNOT_BE_DELETED: "Order cannot be deleted",
    ErrorCode.ORDER_NOT_PAID: "Order has not been paid",
    ErrorCode.ORDER_NOT_AWAITING_PAYMENT: "Order is not awaiting payment",
    ErrorCode.REFUND_AMOUNT_EXCEEDS_TOTAL: "Refund amount exceeds order total",
    ErrorCode.INSUFFICIENT_STOCK: "Insufficient stock",
    ErrorCode.EXTERNAL_SERVICE_ERROR: "An external service failed. Please try again",
    ErrorCode.CONFIGURATION_ERROR: "Service is not configured correctly",
    ErrorCode.DATABASE_ERROR: "A database error occurred",
    ErrorCode.SERVER_ERROR: "Something went wrong. Please try again later",
}


class ApiError(HTTPException):
    """An HTTPException that knows its error code."""

    def __init__(
        self,
        code: ErrorCode,
        message: Optional[str] = None,
        details: Optional[dict] = None,
        headers: Optional[dict] = None,
    ):
        super().__init__(status_code=ERROR_STATUS[code], detail=message or ERROR_MESSAGE[code], headers=headers)
        self.code = code
        self.message = message or ERROR_MESSAGE[code]
        self.details = details


def error_body(code: ErrorCode, message: str, details: Any = None) -> dict:
    error = {"code": code.value, "message": message}
    if details is not None:
        error["details"] = details
    return {"success": False, "error": error}


def envelope(data: Any, message: Optional[str] = None) -> dict:
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    return body


# --- Exception handlers ---

async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message, exc.details),
        headers=exc.headers,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = {}
    for err in exc.errors():
        # drop the "body"/"query"/"path" prefix so clients see field names
        loc = [str(part) for part in err.get("loc", ())[1:]] or ["request"]
        fields.setdefault(".".join(loc), []).append(err.get("msg", "Invalid value"))
    return JSONResponse(
        status_code=400,
        content=error_body(ErrorCode.VALIDATION_FAILED, ERROR_MESSAGE[ErrorCode.VALIDATION_FAILED], fields),
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        code = ErrorCode.NOT_FOUND
    elif exc.status_code == 405:
        code = ErrorCode.METHOD_NOT_ALLOWED
    elif exc.status_code == 401:
        code = ErrorCode.AUTH_REQUIRED
    elif exc.status_code == 403:
        code = ErrorCode.AUTH_ADMIN_REQUIRED
    elif exc.status_code == 429:
        code = ErrorCode.RATE_LIMIT_EXCEEDED
    elif exc.status_code >= 500:
        code = ErrorCode.SERVER_ERROR
    else:
        code = ErrorCode.BAD_REQUEST
    message = exc.detail if isinstance(exc.detail, str) else ERROR_MESSAGE[code]
    return JSONResponse(status_code=exc.status_code, content=error_body(code, message), headers=exc.headers)


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=error_body(ErrorCode.SERVER_ERROR, ERROR_MESSAGE[ErrorCode.SERVER_ERROR]),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
