from __future__ import annotations

import re
from datetime import date
from typing import Optional, Union

VPA_PATTERN = re.compile(r"^[A-Za-z0-9._-]+@[A-Za-z0-9]+$")
CARD_DIGITS_PATTERN = re.compile(r"^[0-9]{13,19}$")

_SEPARATORS = re.compile(r"[\s-]")

MASTERCARD_PREFIXES = frozenset({"51", "52", "53", "54", "55"})
AMEX_PREFIXES = frozenset({"34", "37"})
RUPAY_PREFIXES = frozenset({"60", "65"} | {str(n) for n in range(81, 90)})


def clean_card_number(number: Optional[str]) -> str:
    return _SEPARATORS.sub("", number or "")


def validate_vpa(vpa: Optional[str]) -> bool:
    if not vpa:
        return False
    return VPA_PATTERN.fullmatch(vpa) is not None


def validate_luhn(number: Optional[str]) -> bool:
    cleaned = clean_card_number(number)
    if not CARD_DIGITS_PATTERN.fullmatch(cleaned):
        return False

    total = 0
    for position, char in enumerate(reversed(cleaned)):
        digit = int(char)
        if position % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def get_card_network(number: Optional[str]) -> str:
    """Classify a card number by its leading digits."""
    cleaned = clean_card_number(number)
    if not cleaned:
        return "unknown"

    prefix = cleaned[:2]
    if cleaned.startswith("4"):
        return "visa"
    if prefix in MASTERCARD_PREFIXES:
        return "mastercard"
    if prefix in AMEX_PREFIXES:
        return "amex"
    if prefix in RUPAY_PREFIXES:
        return "rupay"
    return "unknown"


def card_last4(number: Optional[str]) -> str:
    return clean_card_number(number)[-4:]


def validate_expiry(
    month: Union[int, str, None],
    year: Union[int, str, None],
    today: Optional[date] = None,
) -> bool:
    """Return True while the card is usable; the expiry month itself still counts."""
    parsed_month = _parse_int(month)
    parsed_year = _parse_int(year)
    if parsed_month is None or parsed_year is None:
        return False
    if len(str(year).strip()) == 2:
        parsed_year += 2000
    if not 1 <= parsed_month <= 12:
        return False

    today = today or date.today()
    return (parsed_year, parsed_month) >= (today.year, today.month)


def _parse_int(value: Union[int, str, None]) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text.isdigit():
        return None
    return int(text)
