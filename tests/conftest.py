"""Shared fixtures: in-memory database, fake payment provider, fake mailer, fake redis."""
import json
from decimal import Decimal

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from storefront.config import Settings, get_settings
from storefront.dependencies import get_kv, get_mailer, get_payment_gateway
from storefront.main import app
from storefront.models import Category, Order, Product, UserAccount
from storefront.payments import (
    CheckoutSession,
    InvalidSignatureError,
    PaymentEvent,
    PaymentProviderError,
    ProviderRefund,
)
from storefront.utils.db import get_session, init_db

VALID_SIGNATURE = "t=1700000000,v1=valid"

CUSTOMER = {"X-User-Id": "customer-1"}


class FakeGateway:
    def __init__(self):
        self.sessions = {}
        self.checkout_params = []
        self.refunds = []
        self.fail_checkout = False
        self.fail_refund = False

    def create_checkout_session(self, params):
        if self.fail_checkout:
            raise PaymentProviderError("Stripe is unavailable")
        session_id = f"cs_test_{len(self.sessions) + 1}"
        checkout = CheckoutSession(id=session_id, url=f"https://checkout.stripe.test/{session_id}", status="open")
        self.sessions[session_id] = checkout
        self.checkout_params.append(params)
        return checkout

    def retrieve_checkout_session(self, session_id):
        if session_id not in self.sessions:
            raise PaymentProviderError(f"No such checkout.session: {session_id}")
        return self.sessions[session_id]

    def create_refund(self, payment_intent_id, amount):
        if self.fail_refund:
            raise PaymentProviderError("Refund declined")
        self.refunds.append((payment_intent_id, amount))
        return ProviderRefund(id=f"re_test_{len(self.refunds)}", amount=amount, status="succeeded")

    def construct_event(self, payload, signature):
        if signature != VALID_SIGNATURE:
            raise InvalidSignatureError("No signatures found matching the expected signature for payload")
        raw = json.loads(payload)
        return PaymentEvent(id=raw["id"], type=raw["type"], data=raw["data"]["object"])


class FakeMailer:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to, subject, body_html):
        if self.fail:
            raise RuntimeError("mail server down")
        self.sent.append((to, subject))


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def catalog(engine):
    """Three products, one category, an admin and two customers. Returns product ids."""
    with Session(engine) as session:
        session.add(Category(slug="electronics", name="Electronics"))
        headphones = Product(
            name="Wireless Headphones",
            company="Sonique",
            category="electronics",
            price_regular=Decimal("99.99"),
            price_sale=Decimal("79.99"),
            stock_quantity=50,
        )
        charger = Product(
            name="USB-C Charger",
            company="Voltix",
            category="electronics",
            price_regular=Decimal("39.00"),
            stock_quantity=3,
        )
        gift_card = Product(
            name="Gift Card",
            category="electronics",
            price_regular=Decimal("25.00"),
            stock_quantity=0,
            track_inventory=False,
        )
        session.add_all([headphones, charger, gift_card])
        session.add_all([
            UserAccount(id="admin-1", primary_email="admin@shopsmart.example", client_metadata={"role": "admin"}),
            UserAccount(id="customer-1", primary_email="jane@example.com", client_metadata="customer"),
            UserAccount(id="customer-2", primary_email="bob@example.com"),
        ])
        session.commit()
        return {"headphones": headphones.id, "charger": charger.id, "gift_card": gift_card.id}


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def kv():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        app_url="https://shop.test",
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret="whsec_test_123",
    )


@pytest.fixture
def client(engine, gateway, mailer, kv, settings):
    def session_override():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = session_override
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_kv] = lambda: kv
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def stock(engine):
    def read(product_id):
        with Session(engine) as session:
            return session.get(Product, product_id).stock_quantity
    return read


@pytest.fixture
def load_order(engine):
    def read(order_id):
        with Session(engine) as session:
            return session.get(Order, order_id)
    return read


@pytest.fixture
def order_body(catalog):
    def build(items=None, total="187.78", payment_method="cod", **overrides):
        body = {
            "customerName": "Jane Doe",
            "customerEmail": "jane@example.com",
            "customerPhone": "+15551234567",
            "shippingAddress": "12 Market Street",
            "shippingCity": "Springfield",
            "shippingState": "IL",
            "shippingZip": "62701",
            "items": items if items is not None else [{"productId": catalog["headphones"], "quantity": 2}],
            "total": total,
            "paymentMethod": payment_method,
        }
        body.update(overrides)
        return body
    return build


@pytest.fixture
def place_order(client, order_body):
    """Create an order through the API and return its JSON."""
    def place(headers=CUSTOMER, **kwargs):
        response = client.post("/orders", json=order_body(**kwargs), headers=headers)
        assert response.status_code == 201, response.text
        return response.json()["data"]["order"]
    return place


@pytest.fixture
def webhook(client):
    def send(event_id, event_type, order_id, payment_intent="pi_test_1", signature=VALID_SIGNATURE):
        payload = json.dumps({
            "id": event_id,
            "type": event_type,
            "data": {
                "object": {
                    "id": "cs_test_1",
                    "payment_intent": payment_intent,
                    "metadata": {"orderId": str(order_id)},
                }
            },
        })
        return client.post("/webhooks/payment", content=payload, headers={"Stripe-Signature": signature})
    return send


@pytest.fixture
def paid_order(place_order, webhook):
    """A stripe order whose checkout has completed."""
    order = place_order(payment_method="stripe")
    response = webhook("evt_paid_setup", "checkout.session.completed", order["id"])
    assert response.json() == {"received": True}
    return order
