# storefront/notifications.py
"""
Transactional email, sent through Resend.
Emails are a courtesy: a failed send is logged by whoever dispatched it and
never undoes the order change that triggered it.
"""

import html
import logging
from typing import Protocol

import resend

from storefront.models import Order

logger = logging.getLogger(__name__)


class Mailer(Protocol):
    def send(self, to: str, subject: str, body_html: str) -> None: ...


class ResendMailer:
    def __init__(self, api_key: str, sender: str):
        resend.api_key = api_key
        self.sender = sender

    def send(self, to: str, subject: str, body_html: str) -> None:
        resend.Emails.send({
            "from": self.sender,
            "to": [to],
            "subject": subject,
            "html": body_html,
        })


SUBJECTS = {
    "order_received": "Order Received - {order_number}",
    "payment_confirmed": "Payment Confirmed - {order_number}",
}


def render_order_email(order: Order, template: str) -> tuple[str, str]:
    subject = SUBJECTS[template].format(order_number=order.order_number)
    rows = "".join(
        f"<tr><td>{html.escape(item['product_name'])}</td>"
        f"<td>{item['quantity']}</td><td>{item['price']}</td><td>{item['total']}</td></tr>"
        for item in order.items
    )
    body = (
        f"<p>Hi {html.escape(order.customer_name)},</p>"
        f"<p>Thanks for your order <strong>{order.order_number}</strong>.</p>"
        f"<table><tr><th>Item</th><th>Qty</th><th>Price</th><th>Total</th></tr>{rows}</table>"
        f"<p>Subtotal: {order.subtotal}<br>Tax: {order.tax}<br>"
        f"Shipping: {order.shipping_cost}<br><strong>Total: {order.total} {order.currency}</strong></p>"
        f"<p>Shipping to: {html.escape(order.shipping_address)}, {html.escape(order.shipping_city)}, "
        f"{html.escape(order.shipping_state)} {order.shipping_zip}</p>"
    )
    return subject, body


def send_order_email(mailer: Mailer, order: Order, template: str) -> None:
    subject, body = render_order_email(order, template)
    mailer.send(order.customer_email, subject, body)
    logger.info("📧 %s email sent for order %s", template, order.order_number)
