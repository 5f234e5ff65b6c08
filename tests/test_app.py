from __future__ import annotations

import asyncio
import sqlite3
import time

import httpx
import pytest
from fastapi.testclient import TestClient

from gateway_service.app import create_app
from gateway_service.config import SeedMerchant, Settings
from gateway_service.database import ping

from .conftest import OTHER_MERCHANT

SEED = SeedMerchant()
AUTH = {"X-Api-Key": SEED.api_key, "X-Api-Secret": SEED.api_secret}
OTHER_AUTH = {"X-Api-Key": OTHER_MERCHANT.api_key, "X-Api-Secret": OTHER_MERCHANT.api_secret}
CARD = {
    "number": "5500 0000 0000 0004",
    "expiry_month": "12",
    "expiry_year": "99",
    "cvv": "123",
    "holder_name": "Asha Rao",
}


def make_client(connection_factory, **overrides) -> TestClient:
    options = {"test_mode": True, "test_processing_delay_ms": 0}
    options.update(overrides)
    return TestClient(create_app(Settings(**options), connection_factory=connection_factory))


@pytest.fixture()
def client(connection_factory):
    return make_client(connection_factory)


def create_order(client, amount=500, headers=AUTH, **extra):
    response = client.post("/api/v1/orders", json={"amount": amount, **extra}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def test_health_reports_database(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["database"] == "connected"
    assert body["timestamp"]


def test_ping_reports_failures():
    def broken():
        raise sqlite3.OperationalError("unable to open database file")

    class FailingConnection:
        def execute(self, sql):
            raise sqlite3.OperationalError("disk I/O error")

        def close(self):
            pass

    assert ping(broken) is False
    assert ping(FailingConnection) is False


def test_test_merchant_endpoint(client):
    response = client.get("/api/v1/test/merchant")
    assert response.status_code == 200
    assert response.json() == {
        "id": SEED.id,
        "email": SEED.email,
        "api_key": SEED.api_key,
        "api_secret": SEED.api_secret,
        "seeded": True,
    }


@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"X-Api-Key": SEED.api_key},
        {"X-Api-Key": SEED.api_key, "X-Api-Secret": "wrong"},
        {"X-Api-Key": "unknown", "X-Api-Secret": SEED.api_secret},
    ],
)
def test_private_endpoints_require_credentials(client, headers):
    response = client.post("/api/v1/orders", json={"amount": 500}, headers=headers)
    assert response.status_code == 401
    assert response.json() == {
        "error": {"code": "AUTHENTICATION_ERROR", "description": "Invalid API credentials"}
    }


def test_create_order(client):
    body = create_order(client, amount=100, receipt="rcpt_1", notes={"sku": "A1"})
    assert body["id"].startswith("order_")
    assert body["status"] == "created"
    assert body["amount"] == 100
    assert body["currency"] == "INR"
    assert body["merchant_id"] == SEED.id
    assert body["notes"] == {"sku": "A1"}


@pytest.mark.parametrize(
    "payload",
    [{"amount": 99}, {}, {"amount": 150.5}, {"amount": "500"}, {"amount": 2**31}, {"amount": 2**63}],
)
def test_create_order_rejects_bad_amount(client, payload):
    response = client.post("/api/v1/orders", json=payload, headers=AUTH)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "BAD_REQUEST_ERROR"


def test_get_order_and_public_view(client):
    order = create_order(client)
    private = client.get(f"/api/v1/orders/{order['id']}", headers=AUTH)
    assert private.status_code == 200
    assert private.json() == order

    public = client.get(f"/api/v1/orders/{order['id']}/public")
    assert public.status_code == 200
    assert set(public.json()) == {"id", "merchant_id", "amount", "currency", "receipt", "notes", "status"}


def test_order_ownership_is_hidden_as_not_found(client):
    order = create_order(client)
    foreign = client.get(f"/api/v1/orders/{order['id']}", headers=OTHER_AUTH)
    missing = client.get("/api/v1/orders/order_missing000000000", headers=AUTH)
    assert foreign.status_code == missing.status_code == 404
    assert foreign.json() == missing.json()
    assert foreign.json()["error"]["code"] == "NOT_FOUND_ERROR"


def test_upi_payment_end_to_end(client):
    order = create_order(client, amount=500)
    created = client.post(
        "/api/v1/payments", json={"order_id": order["id"], "method": "upi", "vpa": "user@bank"}, headers=AUTH
    )
    assert created.status_code == 201
    payment = created.json()
    assert payment["id"].startswith("pay_")
    assert payment["amount"] == 500
    assert payment["vpa"] == "user@bank"
    assert "card_network" not in payment and "card_last4" not in payment

    polled = client.get(f"/api/v1/payments/{payment['id']}", headers=AUTH).json()
    assert polled["id"] == payment["id"]
    assert polled["status"] == "success"
    assert polled["error_code"] is None


def test_card_payment_response_has_no_vpa(client):
    order = create_order(client)
    response = client.post("/api/v1/payments/public", json={"order_id": order["id"], "method": "card", "card": CARD})
    assert response.status_code == 201
    payment = response.json()
    assert payment["card_network"] == "mastercard"
    assert payment["card_last4"] == "0004"
    assert "vpa" not in payment
    assert "number" not in payment and "cvv" not in payment


def test_forced_failure_mode(connection_factory):
    client = make_client(connection_factory, test_payment_success=False)
    order = create_order(client)
    created = client.post(
        "/api/v1/payments/public", json={"order_id": order["id"], "method": "upi", "vpa": "user@bank"}
    )
    assert created.status_code == 201

    polled = client.get(f"/api/v1/payments/{created.json()['id']}/public").json()
    assert polled["status"] == "failed"
    assert polled["error_code"] == "PAYMENT_FAILED"
    assert polled["error_description"] == "Payment processing failed"


@pytest.mark.parametrize(
    "payload,code",
    [
        ({"method": "upi", "vpa": "user@"}, "INVALID_VPA"),
        ({"method": "card", "card": {**CARD, "number": "5500000000000005"}}, "INVALID_CARD"),
        ({"method": "card", "card": {**CARD, "expiry_year": "2020"}}, "EXPIRED_CARD"),
        ({"method": "wallet"}, "BAD_REQUEST_ERROR"),
    ],
)
def test_payment_validation_errors(client, payload, code):
    order = create_order(client)
    response = client.post("/api/v1/payments", json={"order_id": order["id"], **payload}, headers=AUTH)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == code
    assert client.get("/api/v1/payments", headers=AUTH).json() == []


def test_payment_for_missing_or_foreign_order(client):
    order = create_order(client)
    body = {"order_id": order["id"], "method": "upi", "vpa": "user@bank"}

    foreign = client.post("/api/v1/payments", json=body, headers=OTHER_AUTH)
    assert foreign.status_code == 404
    missing = client.post("/api/v1/payments/public", json={**body, "order_id": "order_missing000000000"})
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "NOT_FOUND_ERROR"


def test_payment_ownership_isolation(client):
    order = create_order(client)
    payment = client.post(
        "/api/v1/payments", json={"order_id": order["id"], "method": "upi", "vpa": "user@bank"}, headers=AUTH
    ).json()

    assert client.get(f"/api/v1/payments/{payment['id']}", headers=OTHER_AUTH).status_code == 404
    assert client.get("/api/v1/payments", headers=OTHER_AUTH).json() == []
    assert client.get(f"/api/v1/payments/{payment['id']}/public").status_code == 200


def test_list_payments_and_stats(connection_factory):
    client = make_client(connection_factory)
    order = create_order(client, amount=1000)
    ids = []
    for vpa in ("a@bank", "b@bank"):
        response = client.post("/api/v1/payments", json={"order_id": order["id"], "method": "upi", "vpa": vpa}, headers=AUTH)
        ids.append(response.json()["id"])

    listed = client.get("/api/v1/payments", headers=AUTH).json()
    assert [p["id"] for p in listed] == list(reversed(ids))

    stats = client.get("/api/v1/payments/stats", headers=AUTH).json()
    assert stats == {"total": 2, "success_count": 2, "total_amount": 2000, "success_rate": 100}


def test_malformed_payment_body(client):
    response = client.post("/api/v1/payments", json={"method": "upi"}, headers=AUTH)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "BAD_REQUEST_ERROR"
    assert "order_id" in response.json()["error"]["description"]


@pytest.mark.asyncio
async def test_health_answers_while_payment_settles(connection_factory):
    app = create_app(
        Settings(test_mode=True, test_processing_delay_ms=500),
        connection_factory=connection_factory,
    )
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        order = await client.post("/api/v1/orders", json={"amount": 500}, headers=AUTH)
        assert order.status_code == 201

        started = time.monotonic()
        payment = asyncio.create_task(
            client.post(
                "/api/v1/payments",
                json={"order_id": order.json()["id"], "method": "upi", "vpa": "user@bank"},
                headers=AUTH,
            )
        )
        await asyncio.sleep(0.05)

        health = await client.get("/health")
        assert health.status_code == 200
        assert time.monotonic() - started < 0.4
        assert not payment.done()

        response = await payment
        assert response.status_code == 201
        assert response.json()["status"] == "success"


def test_requests_use_single_attempt_connections(tmp_path, monkeypatch):
    db_path = tmp_path / "default.db"
    calls = []

    def connect(kind):
        def factory():
            calls.append(kind)
            conn = sqlite3.connect(db_path)
            conn.row_factory = sqlite3.Row
            return conn

        return factory

    monkeypatch.setattr("gateway_service.app.get_connection", connect("retrying"))
    monkeypatch.setattr("gateway_service.app.connect_once", connect("once"))
    client = TestClient(create_app(Settings(test_mode=True, test_processing_delay_ms=0)))
    assert calls == ["retrying"]

    assert client.get("/health").json()["database"] == "connected"
    assert client.get("/api/v1/payments", headers=AUTH).status_code == 200
    assert set(calls[1:]) == {"once"}
