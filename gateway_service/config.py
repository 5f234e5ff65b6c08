from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional


@dataclass(frozen=True)
class SeedMerchant:
    id: str = "550e8400-e29b-41d4-a716-446655440000"
    name: str = "Test Merchant"
    email: str = "test@example.com"
    api_key: str = "key_test_abc123"
    api_secret: str = "secret_test_xyz789"


@dataclass(frozen=True)
class Settings:
    """Runtime configuration, read once from the environment and passed down explicitly."""

    test_mode: bool = False
    test_processing_delay_ms: int = 1000
    test_payment_success: bool = True
    upi_success_rate: float = 0.90
    card_success_rate: float = 0.95
    processing_delay_min_ms: int = 5000
    processing_delay_max_ms: int = 10000
    test_merchant: SeedMerchant = field(default_factory=SeedMerchant)
    allowed_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        for name in ("upi_success_rate", "card_success_rate"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be between 0 and 1, got {value}")
        if self.test_processing_delay_ms < 0:
            raise ValueError("test_processing_delay_ms must not be negative")
        if not 0 <= self.processing_delay_min_ms <= self.processing_delay_max_ms:
            raise ValueError("processing delay window must satisfy 0 <= min <= max")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        defaults = SeedMerchant()
        return cls(
            test_mode=env.get("TEST_MODE", "false").lower() == "true",
            test_processing_delay_ms=int(env.get("TEST_PROCESSING_DELAY", "1000")),
            test_payment_success=env.get("TEST_PAYMENT_SUCCESS", "true").lower() != "false",
            upi_success_rate=float(env.get("UPI_SUCCESS_RATE", "0.90")),
            card_success_rate=float(env.get("CARD_SUCCESS_RATE", "0.95")),
            processing_delay_min_ms=int(env.get("PROCESSING_DELAY_MIN", "5000")),
            processing_delay_max_ms=int(env.get("PROCESSING_DELAY_MAX", "10000")),
            test_merchant=SeedMerchant(
                email=env.get("TEST_MERCHANT_EMAIL", defaults.email),
                api_key=env.get("TEST_API_KEY", defaults.api_key),
                api_secret=env.get("TEST_API_SECRET", defaults.api_secret),
            ),
            allowed_origins=[
                origin.strip() for origin in env.get("ALLOWED_ORIGINS", "*").split(",")
            ],
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )
