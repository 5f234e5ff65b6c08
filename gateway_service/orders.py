from __future__ import annotations

import logging
import re
from typing import Optional

from .errors import BadRequestError, NotFoundError
from .identifiers import generate_order_id, insert_with_fresh_id
from .repository import MerchantRecord, OrderRecord, OrderRepository, utcnow

logger = logging.getLogger("gateway-service")

MIN_AMOUNT = 100
# upper bound of a Postgres INTEGER column
MAX_AMOUNT = 2**31 - 1
DEFAULT_CURRENCY = "INR"
CURRENCY_PATTERN = re.compile(r"^[A-Za-z]{3}$")


class OrderService:
    def __init__(self, repository: OrderRepository, id_factory=generate_order_id):
        self._repo = repository
        self._id_factory = id_factory

    def create_order(
        self,
        merchant: MerchantRecord,
        amount,
        currency: Optional[str] = DEFAULT_CURRENCY,
        receipt: Optional[str] = None,
        notes: Optional[dict] = None,
    ) -> OrderRecord:
        # bool is an int subclass
        if not isinstance(amount, int) or isinstance(amount, bool) or amount < MIN_AMOUNT:
            raise BadRequestError(f"amount must be at least {MIN_AMOUNT}")
        if amount > MAX_AMOUNT:
            raise BadRequestError(f"amount must be at most {MAX_AMOUNT}")
        currency = currency or DEFAULT_CURRENCY
        if not CURRENCY_PATTERN.fullmatch(currency):
            raise BadRequestError("currency must be a 3-letter code")

        def build() -> OrderRecord:
            now = utcnow()
            return OrderRecord(
                id=self._id_factory(),
                merchant_id=merchant.id,
                amount=amount,
                currency=currency.upper(),
                receipt=receipt,
                notes=dict(notes or {}),
                status="created",
                created_at=now,
                updated_at=now,
            )

        record = insert_with_fresh_id(build, self._repo.insert_order)
        logger.info(
            "Create order id=%s merchant=%s amount=%d currency=%s",
            record.id,
            merchant.id,
            record.amount,
            record.currency,
        )
        return record

    def get_order(self, order_id: str, merchant: MerchantRecord) -> OrderRecord:
        record = self._repo.get_order(order_id)
        if record is None or record.merchant_id != merchant.id:
            raise NotFoundError("Order not found")
        return record

    def get_public_order(self, order_id: str) -> OrderRecord:
        record = self._repo.get_order(order_id)
        if record is None:
            raise NotFoundError("Order not found")
        return record
