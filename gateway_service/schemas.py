from __future__ import annotations

from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, StrictInt


class HealthResponse(BaseModel):
    status: Literal["healthy"] = "healthy"
    database: Literal["connected", "disconnected"]
    timestamp: str


class SeedMerchantResponse(BaseModel):
    id: str
    email: str
    api_key: str
    api_secret: str
    seeded: bool = True


class CreateOrderRequest(BaseModel):
    amount: Optional[StrictInt] = None
    currency: Optional[str] = "INR"
    receipt: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[Dict[str, Any]] = None


class OrderSummary(BaseModel):
    id: str
    merchant_id: str
    amount: int
    currency: str
    receipt: Optional[str] = None
    notes: Dict[str, Any] = Field(default_factory=dict)
    status: str
    created_at: str
    updated_at: str


class PublicOrder(BaseModel):
    id: str
    merchant_id: str
    amount: int
    currency: str
    receipt: Optional[str] = None
    notes: Dict[str, Any] = Field(default_factory=dict)
    status: str


class CardPayload(BaseModel):
    number: Optional[str] = None
    expiry_month: Union[int, str, None] = None
    expiry_year: Union[int, str, None] = None
    cvv: Optional[str] = None
    holder_name: Optional[str] = None


class PaymentRequest(BaseModel):
    order_id: str
    method: Optional[str] = None
    vpa: Optional[str] = None
    card: Optional[CardPayload] = None


class PaymentView(BaseModel):
    """Payment as returned by the API; only the fields of its own method are set."""

    id: str
    order_id: str
    amount: int
    currency: str
    method: str
    status: str
    error_code: Optional[str] = None
    error_description: Optional[str] = None
    created_at: str
    updated_at: str
    vpa: Optional[str] = None
    card_network: Optional[str] = None
    card_last4: Optional[str] = None


class PaymentStatsResponse(BaseModel):
    total: int
    success_count: int
    total_amount: int
    success_rate: int
