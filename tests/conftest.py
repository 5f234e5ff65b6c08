from __future__ import annotations

import sqlite3

import pytest

from gateway_service.config import SeedMerchant
from gateway_service.database import init_db, seed_merchant
from gateway_service.repository import MerchantRepository, OrderRepository, PaymentRepository

OTHER_MERCHANT = SeedMerchant(
    id="7c9e6679-7425-40de-944b-e07fc1f90ae7",
    name="Other Merchant",
    email="other@example.com",
    api_key="key_other_456",
    api_secret="secret_other_456",
)


@pytest.fixture()
def connection_factory(tmp_path):
    db_path = tmp_path / "gateway.db"

    def factory():
        conn = sqlite3.connect(db_path)
        conn.row_factory = sqlite3.Row
        return conn

    init_db(factory)
    conn = factory()
    try:
        seed_merchant(conn, OTHER_MERCHANT)
    finally:
        conn.close()
    return factory


@pytest.fixture()
def merchants(connection_factory):
    return MerchantRepository(connection_factory=connection_factory)


@pytest.fixture()
def merchant(merchants):
    return merchants.find_by_email(SeedMerchant().email)


@pytest.fixture()
def other_merchant(merchants):
    return merchants.find_by_email(OTHER_MERCHANT.email)


@pytest.fixture()
def order_repo(connection_factory):
    return OrderRepository(connection_factory=connection_factory)


@pytest.fixture()
def payment_repo(connection_factory):
    return PaymentRepository(connection_factory=connection_factory)
