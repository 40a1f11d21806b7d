"""Server-side cart."""
import pytest

from storefront.errors import ApiError, ErrorCode
from storefront.routers.cart import merge_items
from storefront.schemas import CartItemIn

CUSTOMER = {"X-User-Id": "customer-1"}


def test_empty_cart_is_created(client, catalog):
    response = client.get("/cart", headers=CUSTOMER)
    assert response.status_code == 200
    cart = response.json()["data"]["cart"]
    assert cart["userId"] == "customer-1"
    assert cart["items"] == []


def test_set_and_remove_item(client, catalog):
    response = client.put("/cart", json={"productId": catalog["headphones"], "quantity": 3}, headers=CUSTOMER)
    assert response.json()["data"]["cart"]["items"] == [{"productId": catalog["headphones"], "quantity": 3}]

    response = client.put("/cart", json={"productId": catalog["headphones"], "quantity": 1}, headers=CUSTOMER)
    assert response.json()["data"]["cart"]["items"] == [{"productId": catalog["headphones"], "quantity": 1}]

    response = client.put("/cart", json={"productId": catalog["headphones"], "quantity": 0}, headers=CUSTOMER)
    assert response.json()["data"]["cart"]["items"] == []


def test_replace_cart_sums_duplicates(client, catalog):
    body = {"items": [
        {"productId": catalog["charger"], "quantity": 1},
        {"productId": catalog["charger"], "quantity": 2},
        {"productId": catalog["headphones"], "quantity": 1},
    ]}
    items = client.post("/cart", json=body, headers=CUSTOMER).json()["data"]["cart"]["items"]
    assert items == [
        {"productId": catalog["charger"], "quantity": 3},
        {"productId": catalog["headphones"], "quantity": 1},
    ]


def test_merge_cart(client, catalog):
    client.put("/cart", json={"productId": catalog["headphones"], "quantity": 60}, headers=CUSTOMER)
    body = {"items": [
        {"productId": catalog["headphones"], "quantity": 60},
        {"productId": catalog["charger"], "quantity": 1},
    ]}
    items = client.post("/cart/merge", json=body, headers=CUSTOMER).json()["data"]["cart"]["items"]
    assert items == [
        {"productId": catalog["headphones"], "quantity": 99},
        {"productId": catalog["charger"], "quantity": 1},
    ]


def test_cart_unknown_product(client, catalog):
    response = client.put("/cart", json={"productId": 999, "quantity": 1}, headers=CUSTOMER)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "PRODUCT_NOT_FOUND"


def test_cart_quantity_limit(client, catalog):
    response = client.put("/cart", json={"productId": catalog["headphones"], "quantity": 100}, headers=CUSTOMER)
    assert response.status_code == 400


def test_clear_cart(client, catalog):
    client.put("/cart", json={"productId": catalog["headphones"], "quantity": 2}, headers=CUSTOMER)
    response = client.delete("/cart", headers=CUSTOMER)
    assert response.json()["data"]["cart"]["items"] == []
    assert client.get("/cart", headers=CUSTOMER).json()["data"]["cart"]["items"] == []


def test_cart_requires_auth(client, catalog):
    assert client.get("/cart").status_code == 401


def test_merge_items_distinct_product_limit():
    existing = [{"productId": i, "quantity": 1} for i in range(1, 51)]
    with pytest.raises(ApiError) as exc:
        merge_items(existing, [CartItemIn(product_id=51, quantity=1)])
    assert exc.value.code == ErrorCode.CART_LIMIT_EXCEEDED

    merged = merge_items(existing, [CartItemIn(product_id=50, quantity=2)])
    assert len(merged) == 50
    assert merged[-1] == {"productId": 50, "quantity": 3}
