from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional

import httpx

TERMINAL_STATUSES = ("success", "failed")


class GatewayClientError(Exception):
    """Raised when the gateway rejects a request or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class GatewayClient:
    """Small synchronous client for the gateway REST API.

    Mirrors what the checkout page and merchant dashboard do: create orders,
    submit payments and poll a payment until it settles.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        api_secret: str | None = None,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._api_secret = api_secret
        # settlement can take up to ten seconds before the create call returns
        self._client = client or httpx.Client(timeout=30.0)
        self._sleep = sleep

    def use_credentials(self, api_key: str, api_secret: str) -> None:
        self._api_key = api_key
        self._api_secret = api_secret

    def get_test_merchant(self) -> Dict[str, Any]:
        return self._request("GET", "/api/v1/test/merchant")

    def create_order(
        self,
        amount: int,
        currency: str = "INR",
        receipt: str | None = None,
        notes: dict | None = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"amount": amount, "currency": currency}
        if receipt is not None:
            body["receipt"] = receipt
        if notes is not None:
            body["notes"] = notes
        return self._request("POST", "/api/v1/orders", json=body, auth=True)

    def get_order(self, order_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/v1/orders/{order_id}", auth=True)

    def get_public_order(self, order_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/v1/orders/{order_id}/public")

    def create_payment(
        self,
        order_id: str,
        method: str,
        vpa: str | None = None,
        card: dict | None = None,
        public: bool = False,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"order_id": order_id, "method": method}
        if vpa is not None:
            body["vpa"] = vpa
        if card is not None:
            body["card"] = card
        path = "/api/v1/payments/public" if public else "/api/v1/payments"
        return self._request("POST", path, json=body, auth=not public)

    def get_payment(self, payment_id: str, public: bool = False) -> Dict[str, Any]:
        if public:
            return self._request("GET", f"/api/v1/payments/{payment_id}/public")
        return self._request("GET", f"/api/v1/payments/{payment_id}", auth=True)

    def list_payments(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/v1/payments", auth=True)

    def payment_stats(self) -> Dict[str, Any]:
        return self._request("GET", "/api/v1/payments/stats", auth=True)

    def wait_for_payment(
        self,
        payment_id: str,
        interval: float = 2.0,
        timeout: float = 60.0,
        public: bool = True,
    ) -> Dict[str, Any]:
        """Poll a payment until it reaches ``success`` or ``failed``."""
        deadline = time.monotonic() + timeout
        while True:
            payment = self.get_payment(payment_id, public=public)
            if payment.get("status") in TERMINAL_STATUSES:
                return payment
            if time.monotonic() >= deadline:
                raise GatewayClientError(
                    f"Payment {payment_id} still {payment.get('status')} after {timeout}s"
                )
            self._sleep(interval)

    def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
        auth: bool = False,
    ) -> Any:
        headers = {}
        if auth:
            if not self._api_key or not self._api_secret:
                raise GatewayClientError("API credentials are required for this call")
            headers = {"X-Api-Key": self._api_key, "X-Api-Secret": self._api_secret}

        try:
            response = self._client.request(
                method, f"{self._base_url}{path}", json=json, headers=headers
            )
        except httpx.HTTPError as exc:
            raise GatewayClientError(f"Gateway not reachable: {exc}") from exc

        if response.status_code >= 400:
            code = None
            description = response.text
            try:
                error = response.json().get("error") or {}
                code = error.get("code")
                description = error.get("description", description)
            except (ValueError, AttributeError):
                pass
            raise GatewayClientError(
                f"Gateway request failed ({response.status_code}): {description}",
                status_code=response.status_code,
                code=code,
            )
        return response.json()
