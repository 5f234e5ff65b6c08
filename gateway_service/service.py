from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from starlette.concurrency import run_in_threadpool

from .errors import (
    BadRequestError,
    ExpiredCardError,
    InvalidCardError,
    InvalidVpaError,
    NotFoundError,
)
from .identifiers import generate_payment_id, insert_with_fresh_id
from .repository import (
    FAILED,
    PROCESSING,
    SUCCESS,
    MerchantRecord,
    OrderRecord,
    PaymentRecord,
    PaymentRepository,
    utcnow,
)
from .settlement import SettlementPolicy
from .validators import card_last4, get_card_network, validate_expiry, validate_luhn, validate_vpa

logger = logging.getLogger("gateway-service")

UPI = "upi"
CARD = "card"

FAILURE_CODE = "PAYMENT_FAILED"
FAILURE_DESCRIPTION = "Payment processing failed"


@dataclass(frozen=True)
class CardDetails:
    number: str
    expiry_month: Union[int, str, None]
    expiry_year: Union[int, str, None]
    cvv: Optional[str] = None
    holder_name: Optional[str] = None

    def __repr__(self) -> str:
        return f"CardDetails(last4={card_last4(self.number)!r}, holder_name={self.holder_name!r})"


@dataclass(frozen=True)
class PaymentCommand:
    method: Optional[str]
    vpa: Optional[str] = None
    card: Optional[CardDetails] = None


@dataclass(frozen=True)
class PaymentStats:
    total: int
    success_count: int
    total_amount: int
    success_rate: int


class PaymentProcessor:
    """Runs a payment through validate -> admit -> settle -> finalize.

    The row is written as ``processing`` before the simulated settlement delay and
    is moved to ``success`` or ``failed`` exactly once afterwards. Validation
    failures raise before anything is persisted.
    """

    def __init__(
        self,
        repository: PaymentRepository,
        policy: SettlementPolicy,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        id_factory: Callable[[], str] = generate_payment_id,
    ):
        self._repo = repository
        self._policy = policy
        self._sleep = sleep
        self._id_factory = id_factory

    async def create_payment(self, order: OrderRecord, command: PaymentCommand) -> PaymentRecord:
        vpa, card_network, last4 = self._validate(command)
        record = await run_in_threadpool(self._admit, order, command.method, vpa, card_network, last4)
        logger.info(
            "Payment admitted id=%s order=%s method=%s amount=%d",
            record.id,
            order.id,
            record.method,
            record.amount,
        )

        await self._sleep(self._policy.delay_for(record.method))

        if self._policy.decide_outcome(record.method):
            final = await run_in_threadpool(self._repo.finalize, record.id, SUCCESS)
            logger.info("Payment succeeded id=%s", record.id)
        else:
            final = await run_in_threadpool(
                self._repo.finalize, record.id, FAILED, FAILURE_CODE, FAILURE_DESCRIPTION
            )
            logger.warning("Payment failed id=%s order=%s", record.id, order.id)
        if final is None or not final.is_terminal:
            raise RuntimeError(f"Payment {record.id} did not reach a terminal status")
        return final

    def get_payment(self, payment_id: str, merchant: MerchantRecord) -> PaymentRecord:
        record = self._repo.get_payment(payment_id)
        if record is None or record.merchant_id != merchant.id:
            raise NotFoundError("Payment not found")
        return record

    def get_public_payment(self, payment_id: str) -> PaymentRecord:
        record = self._repo.get_payment(payment_id)
        if record is None:
            raise NotFoundError("Payment not found")
        return record

    def list_payments(self, merchant: MerchantRecord) -> list[PaymentRecord]:
        return self._repo.list_for_merchant(merchant.id)

    def payment_stats(self, merchant: MerchantRecord) -> PaymentStats:
        payments = self._repo.list_for_merchant(merchant.id)
        succeeded = [payment for payment in payments if payment.status == SUCCESS]
        total = len(payments)
        return PaymentStats(
            total=total,
            success_count=len(succeeded),
            total_amount=sum(payment.amount for payment in succeeded),
            success_rate=_percent_half_up(len(succeeded), total),
        )

    def _validate(self, command: PaymentCommand) -> tuple[Optional[str], Optional[str], Optional[str]]:
        if command.method == UPI:
            if not validate_vpa(command.vpa):
                raise InvalidVpaError()
            return command.vpa, None, None

        if command.method == CARD:
            card = command.card
            if card is None or not validate_luhn(card.number):
                raise InvalidCardError()
            if not validate_expiry(card.expiry_month, card.expiry_year):
                raise ExpiredCardError()
            return None, get_card_network(card.number), card_last4(card.number)

        raise BadRequestError("Invalid payment method")

    def _admit(
        self,
        order: OrderRecord,
        method: str,
        vpa: Optional[str],
        card_network: Optional[str],
        last4: Optional[str],
    ) -> PaymentRecord:
        def build() -> PaymentRecord:
            now = utcnow()
            return PaymentRecord(
                id=self._id_factory(),
                order_id=order.id,
                merchant_id=order.merchant_id,
                amount=order.amount,
                currency=order.currency,
                method=method,
                status=PROCESSING,
                vpa=vpa,
                card_network=card_network,
                card_last4=last4,
                error_code=None,
                error_description=None,
                created_at=now,
                updated_at=now,
            )

        return insert_with_fresh_id(build, self._repo.insert_payment)


def shape_payment(record: PaymentRecord) -> dict:
    """Render a payment for the API, carrying only the fields of its own method."""
    payload = {
        "id": record.id,
        "order_id": record.order_id,
        "amount": record.amount,
        "currency": record.currency,
        "method": record.method,
        "status": record.status,
        "error_code": record.error_code,
        "error_description": record.error_description,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    }
    if record.method == UPI:
        payload["vpa"] = record.vpa
    elif record.method == CARD:
        payload["card_network"] = record.card_network
        payload["card_last4"] = record.card_last4
    return payload


def _percent_half_up(part: int, total: int) -> int:
    # integer percent, halves round up
    if not total:
        return 0
    return (part * 200 + total) // (2 * total)
