from __future__ import annotations

import json
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .database import _placeholder, get_connection, is_unique_violation
from .errors import DuplicateIdError

PROCESSING = "processing"
SUCCESS = "success"
FAILED = "failed"
TERMINAL_STATUSES = frozenset({SUCCESS, FAILED})


@dataclass(frozen=True)
class MerchantRecord:
    id: str
    name: str
    email: str
    api_key: str
    api_secret: str
    is_active: bool
    created_at: str


@dataclass(frozen=True)
class OrderRecord:
    id: str
    merchant_id: str
    amount: int
    currency: str
    receipt: Optional[str]
    notes: dict = field(default_factory=dict)
    status: str = "created"
    created_at: str = ""
    updated_at: str = ""


@dataclass(frozen=True)
class PaymentRecord:
    id: str
    order_id: str
    merchant_id: str
    amount: int
    currency: str
    method: str
    status: str
    vpa: Optional[str]
    card_network: Optional[str]
    card_last4: Optional[str]
    error_code: Optional[str]
    error_description: Optional[str]
    created_at: str
    updated_at: str

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class _Repository:
    def __init__(self, connection_factory=get_connection):
        self._connection_factory = connection_factory

    @contextmanager
    def _connection(self):
        conn = self._connection_factory()
        try:
            yield conn
        finally:
            conn.close()

    def _insert(self, conn, sql: str, params: tuple) -> None:
        try:
            conn.execute(sql, params)
            conn.commit()
        except Exception as exc:
            if is_unique_violation(exc):
                raise DuplicateIdError(str(exc)) from exc
            raise


class MerchantRepository(_Repository):
    def find_by_credentials(self, api_key: str, api_secret: str) -> MerchantRecord | None:
        with self._connection() as conn:
            placeholder = _placeholder(conn)
            row = conn.execute(
                f"""
                SELECT id, name, email, api_key, api_secret, is_active, created_at
                FROM merchants
                WHERE api_key = {placeholder} AND api_secret = {placeholder};
                """,
                (api_key, api_secret),
            ).fetchone()
            return _merchant_from_row(row) if row is not None else None

    def find_by_email(self, email: str) -> MerchantRecord | None:
        with self._connection() as conn:
            placeholder = _placeholder(conn)
            row = conn.execute(
                f"""
                SELECT id, name, email, api_key, api_secret, is_active, created_at
                FROM merchants
                WHERE email = {placeholder};
                """,
                (email,),
            ).fetchone()
            return _merchant_from_row(row) if row is not None else None


class OrderRepository(_Repository):
    """Data-access layer for merchant orders."""

    def insert_order(self, record: OrderRecord) -> None:
        with self._connection() as conn:
            placeholder = _placeholder(conn)
            self._insert(
                conn,
                f"""
                INSERT INTO orders (
                    id, merchant_id, amount, currency, receipt, notes_json, status,
                    created_at, updated_at
                ) VALUES ({placeholder}, {placeholder}, {placeholder}, {placeholder}, {placeholder},
                          {placeholder}, {placeholder}, {placeholder}, {placeholder});
                """,
                (
                    record.id,
                    record.merchant_id,
                    record.amount,
                    record.currency,
                    record.receipt,
                    json.dumps(record.notes or {}),
                    record.status,
                    record.created_at,
                    record.updated_at,
                ),
            )

    def get_order(self, order_id: str) -> OrderRecord | None:
        with self._connection() as conn:
            placeholder = _placeholder(conn)
            row = conn.execute(
                f"""
                SELECT id, merchant_id, amount, currency, receipt, notes_json, status,
                       created_at, updated_at
                FROM orders
                WHERE id = {placeholder};
                """,
                (order_id,),
            ).fetchone()
            if row is None:
                return None
            return OrderRecord(
                id=row["id"],
                merchant_id=row["merchant_id"],
                amount=row["amount"],
                currency=row["currency"],
                receipt=row["receipt"],
                notes=json.loads(row["notes_json"]) if row["notes_json"] else {},
                status=row["status"],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
            )


class PaymentRepository(_Repository):
    """Data-access layer for payments and their status transitions."""

    _COLUMNS = """
        id, order_id, merchant_id, amount, currency, method, status, vpa,
        card_network, card_last4, error_code, error_description, created_at, updated_at
    """

    def insert_payment(self, record: PaymentRecord) -> None:
        with self._connection() as conn:
            placeholder = _placeholder(conn)
            values = ", ".join([placeholder] * 14)
            self._insert(
                conn,
                f"INSERT INTO payments ({self._COLUMNS}) VALUES ({values});",
                (
                    record.id,
                    record.order_id,
                    record.merchant_id,
                    record.amount,
                    record.currency,
                    record.method,
                    record.status,
                    record.vpa,
                    record.card_network,
                    record.card_last4,
                    record.error_code,
                    record.error_description,
                    record.created_at,
                    record.updated_at,
                ),
            )

    def finalize(
        self,
        payment_id: str,
        status: str,
        error_code: str | None = None,
        error_description: str | None = None,
    ) -> PaymentRecord | None:
        """Move a processing payment to a terminal status; terminal rows are left untouched."""
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"{status!r} is not a terminal payment status")
        with self._connection() as conn:
            placeholder = _placeholder(conn)
            conn.execute(
                f"""
                UPDATE payments
                SET status = {placeholder}, error_code = {placeholder},
                    error_description = {placeholder}, updated_at = {placeholder}
                WHERE id = {placeholder} AND status = {placeholder};
                """,
                (status, error_code, error_description, utcnow(), payment_id, PROCESSING),
            )
            conn.commit()
        return self.get_payment(payment_id)

    def get_payment(self, payment_id: str) -> PaymentRecord | None:
        with self._connection() as conn:
            placeholder = _placeholder(conn)
            row = conn.execute(
                f"SELECT {self._COLUMNS} FROM payments WHERE id = {placeholder};",
                (payment_id,),
            ).fetchone()
            return _payment_from_row(row) if row is not None else None

    def list_for_merchant(self, merchant_id: str) -> list[PaymentRecord]:
        with self._connection() as conn:
            placeholder = _placeholder(conn)
            rows = conn.execute(
                f"""
                SELECT {self._COLUMNS}
                FROM payments
                WHERE merchant_id = {placeholder}
                ORDER BY created_at DESC;
                """,
                (merchant_id,),
            ).fetchall()
        return [_payment_from_row(row) for row in rows]


def _merchant_from_row(row) -> MerchantRecord:
    return MerchantRecord(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        api_key=row["api_key"],
        api_secret=row["api_secret"],
        is_active=bool(row["is_active"]),
        created_at=row["created_at"],
    )


def _payment_from_row(row) -> PaymentRecord:
    return PaymentRecord(
        id=row["id"],
        order_id=row["order_id"],
        merchant_id=row["merchant_id"],
        amount=row["amount"],
        currency=row["currency"],
        method=row["method"],
        status=row["status"],
        vpa=row["vpa"],
        card_network=row["card_network"],
        card_last4=row["card_last4"],
        error_code=row["error_code"],
        error_description=row["error_description"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )