from __future__ import annotations

import logging
import os
import sqlite3
import time
from datetime import datetime, timezone
from typing import Iterable

import psycopg
from psycopg import errors as pg_errors
from psycopg.rows import dict_row

from .config import SeedMerchant

logger = logging.getLogger("gateway-service")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS merchants (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    api_key TEXT NOT NULL UNIQUE,
    api_secret TEXT NOT NULL,
    webhook_url TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS orders (
    id TEXT PRIMARY KEY,
    merchant_id TEXT NOT NULL REFERENCES merchants (id),
    amount INTEGER NOT NULL CHECK (amount >= 100),
    currency TEXT NOT NULL DEFAULT 'INR',
    receipt TEXT,
    notes_json TEXT,
    status TEXT NOT NULL DEFAULT 'created',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS payments (
    id TEXT PRIMARY KEY,
    order_id TEXT NOT NULL REFERENCES orders (id),
    merchant_id TEXT NOT NULL REFERENCES merchants (id),
    amount INTEGER NOT NULL,
    currency TEXT NOT NULL DEFAULT 'INR',
    method TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'processing',
    vpa TEXT,
    card_network TEXT,
    card_last4 TEXT,
    error_code TEXT,
    error_description TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_orders_merchant_id ON orders (merchant_id);
CREATE INDEX IF NOT EXISTS idx_payments_order_id ON payments (order_id);
CREATE INDEX IF NOT EXISTS idx_payments_merchant_id ON payments (merchant_id);
CREATE INDEX IF NOT EXISTS idx_payments_status ON payments (status);
"""


def _build_database_url() -> str:
    if url := os.environ.get("DATABASE_URL"):
        return url
    user = os.environ.get("DB_USER", "gateway")
    password = os.environ.get("DB_PASSWORD", "gateway")
    host = os.environ.get("DB_HOST", "gateway-db")
    port = os.environ.get("DB_PORT", "5432")
    name = os.environ.get("DB_NAME", "payment_gateway")
    return f"postgresql://{user}:{password}@{host}:{port}/{name}"


DATABASE_URL = _build_database_url()


def get_connection():
    """Return a connection against Postgres (default) or SQLite when configured."""
    retries = int(os.environ.get("DB_CONNECT_MAX_RETRIES", "30"))
    delay = float(os.environ.get("DB_CONNECT_RETRY_DELAY", "2"))
    last_exc: Exception | None = None
    for attempt in range(retries):
        try:
            return connect_once()
        except Exception as exc:  # pragma: no cover - only hits when DB down
            last_exc = exc
            if attempt == retries - 1:
                raise
            logger.warning("Database not reachable (attempt %d/%d): %s", attempt + 1, retries, exc)
            time.sleep(delay)
    raise last_exc  # pragma: no cover


def connect_once():
    if DATABASE_URL.startswith("sqlite://"):
        path = DATABASE_URL.replace("sqlite:///", "")
        conn = sqlite3.connect(path)
        conn.row_factory = sqlite3.Row
        return conn

    return psycopg.connect(DATABASE_URL, autocommit=True, row_factory=dict_row)


def init_db(connection_factory=get_connection, merchant: SeedMerchant | None = None) -> None:
    conn = connection_factory()
    try:
        apply_schema(conn)
        seed_merchant(conn, merchant or SeedMerchant())
    finally:
        conn.close()


def apply_schema(conn) -> None:
    if hasattr(conn, "executescript"):
        conn.executescript(SCHEMA_SQL)
        conn.commit()
        return

    with conn.cursor() as cur:
        for statement in _split_statements(SCHEMA_SQL):
            cur.execute(statement)
    conn.commit()


def _split_statements(sql_blob: str) -> Iterable[str]:
    for statement in sql_blob.split(";"):
        stmt = statement.strip()
        if stmt:
            yield stmt


def seed_merchant(conn, merchant: SeedMerchant) -> bool:
    """Insert the test merchant unless a merchant with its email already exists."""
    placeholder = _placeholder(conn)
    row = conn.execute(
        f"SELECT id FROM merchants WHERE email = {placeholder};",
        (merchant.email,),
    ).fetchone()
    if row is not None:
        logger.info("Test merchant already exists.")
        return False

    now = datetime.now(timezone.utc).isoformat()
    conn.execute(
        f"""
        INSERT INTO merchants (id, name, email, api_key, api_secret, is_active, created_at, updated_at)
        VALUES ({placeholder}, {placeholder}, {placeholder}, {placeholder}, {placeholder}, 1,
                {placeholder}, {placeholder});
        """,
        (
            merchant.id,
            merchant.name,
            merchant.email,
            merchant.api_key,
            merchant.api_secret,
            now,
            now,
        ),
    )
    conn.commit()
    logger.info("Test merchant seeded email=%s", merchant.email)
    return True


def ping(connection_factory=connect_once) -> bool:
    try:
        conn = connection_factory()
    except Exception as exc:
        logger.warning("Database health check failed: %s", exc)
        return False
    try:
        conn.execute("SELECT 1;").fetchone()
        return True
    except Exception as exc:
        logger.warning("Database health check failed: %s", exc)
        return False
    finally:
        conn.close()


def is_unique_violation(exc: Exception) -> bool:
    if isinstance(exc, pg_errors.UniqueViolation):
        return True
    return isinstance(exc, sqlite3.IntegrityError) and "UNIQUE" in str(exc)


def _placeholder(conn) -> str:
    module = conn.__class__.__module__
    return "%s" if "psycopg" in module else "?"
