from __future__ import annotations

import logging
import secrets
import string
from typing import Callable, TypeVar

from .errors import DuplicateIdError

logger = logging.getLogger("gateway-service")

ALPHABET = string.ascii_letters + string.digits
ID_LENGTH = 16
MAX_ID_ATTEMPTS = 5

ORDER_PREFIX = "order_"
PAYMENT_PREFIX = "pay_"

T = TypeVar("T")


def generate_id(prefix: str, length: int = ID_LENGTH) -> str:
    return prefix + "".join(secrets.choice(ALPHABET) for _ in range(length))


def generate_order_id() -> str:
    return generate_id(ORDER_PREFIX)


def generate_payment_id() -> str:
    return generate_id(PAYMENT_PREFIX)


def insert_with_fresh_id(
    build: Callable[[], T],
    insert: Callable[[T], None],
    attempts: int = MAX_ID_ATTEMPTS,
) -> T:
    """Build a record with a new id and insert it, regenerating on primary-key conflicts.

    Uniqueness is enforced by the store; a pre-insert existence check would race
    with concurrent requests.
    """
    attempt = 1
    while True:
        record = build()
        try:
            insert(record)
            return record
        except DuplicateIdError:
            if attempt >= attempts:
                raise
            logger.warning("Identifier collision (attempt %d/%d), regenerating", attempt, attempts)
            attempt += 1
