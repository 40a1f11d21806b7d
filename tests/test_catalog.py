"""Catalog endpoints and the product list cache."""
from decimal import Decimal

import redis
from sqlmodel import Session

from storefront.dependencies import get_kv
from storefront.main import app
from storefront.models import Product

CUSTOMER = {"X-User-Id": "customer-1"}
ADMIN = {"X-User-Id": "admin-1"}


def test_list_products(client, catalog):
    data = client.get("/products").json()["data"]
    assert data["count"] == 3
    headphones = data["products"][0]
    assert headphones["name"] == "Wireless Headphones"
    assert headphones["priceSale"] == "79.99"
    assert headphones["stockQuantity"] == 50


def test_list_products_by_category(client, catalog):
    assert client.get("/products?category=electronics").json()["data"]["count"] == 3
    assert client.get("/products?category=garden").json()["data"]["count"] == 0


def test_product_list_is_cached_until_invalidated(client, catalog, engine):
    client.get("/products")

    # a change that bypasses the API is not visible while the cache is warm
    with Session(engine) as session:
        product = session.get(Product, catalog["headphones"])
        product.name = "Renamed Headphones"
        session.add(product)
        session.commit()
    assert client.get("/products").json()["data"]["products"][0]["name"] == "Wireless Headphones"

    client.put(f"/products/{catalog['charger']}", json={"stockQuantity": 10}, headers=ADMIN)
    assert client.get("/products").json()["data"]["products"][0]["name"] == "Renamed Headphones"


def test_order_invalidates_product_cache(client, catalog, place_order):
    client.get("/products")
    place_order()
    products = client.get("/products").json()["data"]["products"]
    assert products[0]["stockQuantity"] == 48


def test_get_product(client, catalog):
    response = client.get(f"/products/{catalog['charger']}")
    assert response.json()["data"]["product"]["priceRegular"] == "39.00"

    response = client.get("/products/999")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "PRODUCT_NOT_FOUND"


def test_create_product(client, catalog):
    body = {"name": "Smart Speaker", "category": "electronics", "priceRegular": "59.00", "stockQuantity": 12}
    response = client.post("/products", json=body, headers=ADMIN)
    assert response.status_code == 201
    product = response.json()["data"]["product"]
    assert product["trackInventory"] is True
    assert product["lowStockThreshold"] == 10
    assert client.get("/products").json()["data"]["count"] == 4


def test_create_product_unknown_category(client, catalog):
    body = {"name": "Lawn Mower", "category": "garden", "priceRegular": "199.00"}
    response = client.post("/products", json=body, headers=ADMIN)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "CATEGORY_NOT_FOUND"


def test_create_product_requires_admin(client, catalog):
    body = {"name": "Smart Speaker", "category": "electronics", "priceRegular": "59.00"}
    assert client.post("/products", json=body, headers=CUSTOMER).status_code == 403


def test_update_product(client, catalog, engine):
    response = client.put(f"/products/{catalog['headphones']}", json={"priceSale": "74.99"}, headers=ADMIN)
    assert response.status_code == 200
    with Session(engine) as session:
        assert session.get(Product, catalog["headphones"]).price_sale == Decimal("74.99")


def test_low_stock(client, catalog):
    response = client.get("/products/low-stock", headers=ADMIN)
    data = response.json()["data"]
    assert data["count"] == 1
    assert data["products"][0]["id"] == catalog["charger"]
    assert client.get("/products/low-stock", headers=CUSTOMER).status_code == 403


def test_categories(client, catalog):
    response = client.post("/categories", json={"slug": "outdoor", "name": "Outdoor"}, headers=ADMIN)
    assert response.status_code == 201
    slugs = [c["slug"] for c in client.get("/categories").json()["data"]["categories"]]
    assert slugs == ["electronics", "outdoor"]


def test_duplicate_category(client, catalog):
    response = client.post("/categories", json={"slug": "electronics", "name": "Electronics"}, headers=ADMIN)
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "CATEGORY_ALREADY_EXISTS"


def test_category_slug_format(client, catalog):
    response = client.post("/categories", json={"slug": "Not A Slug", "name": "Bad"}, headers=ADMIN)
    assert response.status_code == 400


def test_update_product_rejects_null(client, catalog, stock):
    response = client.put(f"/products/{catalog['charger']}", json={"stockQuantity": None}, headers=ADMIN)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_FAILED"
    assert "stockQuantity" in response.json()["error"]["details"]
    assert stock(catalog["charger"]) == 3

    response = client.put(f"/products/{catalog['charger']}", json={"name": None, "trackInventory": None}, headers=ADMIN)
    assert response.status_code == 400


def test_update_product_clears_sale_price(client, catalog, engine):
    response = client.put(f"/products/{catalog['headphones']}", json={"priceSale": None}, headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["data"]["product"]["priceSale"] is None
    with Session(engine) as session:
        assert session.get(Product, catalog["headphones"]).unit_price == Decimal("99.99")


class BrokenRedis:
    def get(self, key):
        raise redis.ConnectionError("down")

    def set(self, key, value, ex=None):
        raise redis.ConnectionError("down")

    def incr(self, key):
        raise redis.ConnectionError("down")


def test_product_writes_survive_redis_outage(client, catalog, engine):
    app.dependency_overrides[get_kv] = lambda: BrokenRedis()

    body = {"name": "Smart Speaker", "category": "electronics", "priceRegular": "59.00"}
    response = client.post("/products", json=body, headers=ADMIN)
    assert response.status_code == 201

    response = client.put(f"/products/{catalog['charger']}", json={"stockQuantity": 7}, headers=ADMIN)
    assert response.status_code == 200
    assert client.get("/products").json()["data"]["count"] == 4
    with Session(engine) as session:
        assert session.get(Product, catalog["charger"]).stock_quantity == 7


def test_delete_product(client, catalog, place_order):
    order = place_order()
    client.get("/products")

    response = client.delete(f"/products/{catalog['headphones']}", headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["message"] == "Product deleted successfully"
    assert client.get(f"/products/{catalog['headphones']}").status_code == 404
    assert client.get("/products").json()["data"]["count"] == 2

    # the order keeps its own copy of the line
    fetched = client.get(f"/orders/{order['id']}", headers=CUSTOMER).json()["data"]["order"]
    assert fetched["items"][0]["productName"] == "Wireless Headphones"


def test_delete_product_errors(client, catalog):
    assert client.delete(f"/products/{catalog['charger']}", headers=CUSTOMER).status_code == 403
    response = client.delete("/products/999", headers=ADMIN)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "PRODUCT_NOT_FOUND"


def test_get_category(client, catalog):
    category = client.get("/categories/electronics").json()["data"]["category"]
    assert category["name"] == "Electronics"

    response = client.get("/categories/garden")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "CATEGORY_NOT_FOUND"


def test_update_category(client, catalog):
    response = client.put("/categories/electronics", json={"description": "Gadgets and gear"}, headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["data"]["category"]["description"] == "Gadgets and gear"
    assert client.put("/categories/electronics", json={"name": "X"}, headers=CUSTOMER).status_code == 403
    assert client.put("/categories/garden", json={"name": "Garden"}, headers=ADMIN).status_code == 404
    assert client.put("/categories/electronics", json={"name": None}, headers=ADMIN).status_code == 400


def test_rename_category_moves_products(client, catalog):
    client.get("/products?category=electronics")

    response = client.put("/categories/electronics", json={"slug": "tech"}, headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["data"]["category"]["slug"] == "tech"
    assert client.get("/categories/electronics").status_code == 404
    assert client.get("/products?category=tech").json()["data"]["count"] == 3
    assert client.get("/products?category=electronics").json()["data"]["count"] == 0


def test_rename_category_to_taken_slug(client, catalog):
    client.post("/categories", json={"slug": "outdoor", "name": "Outdoor"}, headers=ADMIN)
    response = client.put("/categories/outdoor", json={"slug": "electronics"}, headers=ADMIN)
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "CATEGORY_ALREADY_EXISTS"


def test_delete_category(client, catalog):
    client.post("/categories", json={"slug": "outdoor", "name": "Outdoor"}, headers=ADMIN)
    assert client.delete("/categories/outdoor", headers=CUSTOMER).status_code == 403

    response = client.delete("/categories/outdoor", headers=ADMIN)
    assert response.status_code == 200
    assert client.get("/categories/outdoor").status_code == 404
    assert client.delete("/categories/outdoor", headers=ADMIN).status_code == 404


def test_delete_category_with_products(client, catalog):
    response = client.delete("/categories/electronics", headers=ADMIN)
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "CATEGORY_IN_USE"
    assert client.get("/categories/electronics").status_code == 200
