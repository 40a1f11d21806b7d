"""Per-caller request limits."""
from types import SimpleNamespace

import fakeredis
import pytest
import redis
from starlette.requests import Request

from storefront import ratelimit
from storefront.errors import ApiError, ErrorCode
from storefront.ratelimit import check_rate_limit, get_ip_address, get_rate_limit_identifier

CUSTOMER = {"X-User-Id": "customer-1"}
OTHER_CUSTOMER = {"X-User-Id": "customer-2"}


def make_request(*headers):
    return Request({"type": "http", "headers": [(k.encode(), v.encode()) for k, v in headers]})


# --- Identifiers ---

def test_identifier_prefers_user_id():
    assert get_rate_limit_identifier("user123", "1.2.3.4") == "user:user123"


def test_identifier_falls_back_to_ip():
    assert get_rate_limit_identifier(None, "1.2.3.4") == "ip:1.2.3.4"


def test_identifier_anonymous():
    assert get_rate_limit_identifier() == "anonymous"


def test_ip_from_forwarded_for():
    assert get_ip_address(make_request(("x-forwarded-for", "1.2.3.4, 5.6.7.8"))) == "1.2.3.4"


def test_ip_from_real_ip():
    assert get_ip_address(make_request(("x-real-ip", "9.8.7.6"))) == "9.8.7.6"


def test_forwarded_for_wins_over_real_ip():
    request = make_request(("x-forwarded-for", "1.1.1.1"), ("x-real-ip", "2.2.2.2"))
    assert get_ip_address(request) == "1.1.1.1"


def test_ip_unknown():
    assert get_ip_address(make_request()) == "unknown"


# --- Counting ---

def test_strict_tier_allows_ten_per_minute():
    kv = fakeredis.FakeRedis(decode_responses=True)
    for _ in range(10):
        check_rate_limit(kv, "user:a", "strict", now=1000.0)

    with pytest.raises(ApiError) as exc:
        check_rate_limit(kv, "user:a", "strict", now=1000.0)
    assert exc.value.code == ErrorCode.RATE_LIMIT_EXCEEDED
    assert exc.value.status_code == 429
    # window 16 ends at 1020
    assert exc.value.headers == {"Retry-After": "20"}


def test_limit_resets_in_next_window():
    kv = fakeredis.FakeRedis(decode_responses=True)
    for _ in range(10):
        check_rate_limit(kv, "user:a", "strict", now=1000.0)
    check_rate_limit(kv, "user:a", "strict", now=1021.0)


def test_tiers_and_callers_are_counted_apart():
    kv = fakeredis.FakeRedis(decode_responses=True)
    for _ in range(10):
        check_rate_limit(kv, "user:a", "strict", now=1000.0)
    check_rate_limit(kv, "user:b", "strict", now=1000.0)
    check_rate_limit(kv, "user:a", "moderate", now=1000.0)


def test_counter_expires_with_window():
    kv = fakeredis.FakeRedis(decode_responses=True)
    check_rate_limit(kv, "user:a", "moderate", now=1000.0)
    assert 0 < kv.ttl("ratelimit:moderate:user:a:16") <= 60


def test_unknown_tier():
    with pytest.raises(KeyError):
        check_rate_limit(fakeredis.FakeRedis(), "user:a", "lenient")


def test_no_redis_means_no_limit():
    for _ in range(50):
        check_rate_limit(None, "user:a", "strict")


class BrokenRedis:
    def incr(self, key):
        raise redis.ConnectionError("connection refused")


def test_redis_failure_lets_requests_through():
    check_rate_limit(BrokenRedis(), "user:a", "strict")


# --- Through the API ---

@pytest.fixture
def frozen_clock(monkeypatch):
    # keep every request in one window
    monkeypatch.setattr(ratelimit, "time", SimpleNamespace(time=lambda: 1000.0))


def test_strict_route_returns_429(client, catalog, frozen_clock):
    for _ in range(10):
        assert client.post("/orders/999/cancel", headers=CUSTOMER).status_code == 404

    response = client.post("/orders/999/cancel", headers=CUSTOMER)
    assert response.status_code == 429
    body = response.json()
    assert body["success"] is False
    assert body["error"]["code"] == "RATE_LIMIT_EXCEEDED"
    assert body["error"]["details"]["limit"] == 10
    assert int(response.headers["Retry-After"]) >= 1

    # another shopper is unaffected
    assert client.post("/orders/999/cancel", headers=OTHER_CUSTOMER).status_code == 404


def test_moderate_route_allows_more_reads(client, catalog, frozen_clock):
    for _ in range(30):
        assert client.get("/orders/my-orders", headers=CUSTOMER).status_code == 200
    assert client.get("/orders/my-orders", headers=CUSTOMER).status_code == 429


def test_checkout_is_rate_limited(client, catalog, frozen_clock):
    for _ in range(10):
        client.post("/checkout", json={"orderId": 999}, headers=CUSTOMER)
    response = client.post("/checkout", json={"orderId": 999}, headers=CUSTOMER)
    assert response.status_code == 429


def test_unauthenticated_request_is_rejected_before_counting(client, catalog, kv):
    assert client.post("/orders/999/cancel").status_code == 401
    assert kv.keys("ratelimit:*") == []
