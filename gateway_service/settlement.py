from __future__ import annotations

import random
from typing import Protocol

from .config import Settings


class SettlementPolicy(Protocol):
    """Decides how long a simulated settlement takes and how it ends."""

    def delay_for(self, method: str) -> float: ...

    def decide_outcome(self, method: str) -> bool: ...


class RandomSettlementPolicy:
    def __init__(
        self,
        upi_success_rate: float = 0.90,
        card_success_rate: float = 0.95,
        min_delay: float = 5.0,
        max_delay: float = 10.0,
        rng: random.Random | None = None,
    ):
        for rate in (upi_success_rate, card_success_rate):
            if not 0.0 <= rate <= 1.0:
                raise ValueError(f"success rate must be between 0 and 1, got {rate}")
        if not 0.0 <= min_delay <= max_delay:
            raise ValueError("delay window must satisfy 0 <= min_delay <= max_delay")
        self._rates = {"upi": upi_success_rate, "card": card_success_rate}
        self._min_delay = min_delay
        self._max_delay = max_delay
        self._rng = rng or random.Random()

    def delay_for(self, method: str) -> float:
        return self._rng.uniform(self._min_delay, self._max_delay)

    def decide_outcome(self, method: str) -> bool:
        rate = self._rates.get(method, 0.0)
        return self._rng.random() < rate


class FixedSettlementPolicy:
    """Deterministic policy: constant delay, forced outcome."""

    def __init__(self, delay: float = 1.0, succeed: bool = True):
        if delay < 0:
            raise ValueError("delay must not be negative")
        self._delay = delay
        self._succeed = succeed

    def delay_for(self, method: str) -> float:
        return self._delay

    def decide_outcome(self, method: str) -> bool:
        return self._succeed


def build_settlement_policy(settings: Settings) -> SettlementPolicy:
    if settings.test_mode:
        return FixedSettlementPolicy(
            delay=settings.test_processing_delay_ms / 1000,
            succeed=settings.test_payment_success,
        )
    return RandomSettlementPolicy(
        upi_success_rate=settings.upi_success_rate,
        card_success_rate=settings.card_success_rate,
        min_delay=settings.processing_delay_min_ms / 1000,
        max_delay=settings.processing_delay_max_ms / 1000,
    )
