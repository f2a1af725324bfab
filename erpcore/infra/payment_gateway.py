from __future__ import annotations

import os
from typing import Any, Protocol

import httpx

PAYSTACK_SECRET_KEY = os.getenv("PAYSTACK_SECRET_KEY")
PAYSTACK_API_BASE = os.getenv("PAYSTACK_API_BASE", "https://api.paystack.co")
PAYSTACK_TIMEOUT_SECONDS = float(os.getenv("PAYSTACK_TIMEOUT_SECONDS", "10"))


class PaymentGatewayError(Exception):
    pass


class PaymentGateway(Protocol):
    def create_payment_link(
        self,
        *,
        email: str,
        amount_minor: int,
        metadata: dict[str, Any],
    ) -> str: ...


class PaystackGateway:
    """Hosted-checkout links through Paystack's transaction initialize API."""

    def __init__(
        self,
        secret_key: str,
        *,
        base_url: str = PAYSTACK_API_BASE,
        timeout_seconds: float = PAYSTACK_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._secret_key = secret_key
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    def create_payment_link(
        self,
        *,
        email: str,
        amount_minor: int,
        metadata: dict[str, Any],
    ) -> str:
        payload = {"email": email, "amount": amount_minor, "metadata": metadata}
        headers = {
            "Authorization": f"Bearer {self._secret_key}",
            "Content-Type": "application/json",
        }
        try:
            with httpx.Client(
                base_url=self._base_url,
                timeout=self._timeout_seconds,
                transport=self._transport,
            ) as client:
                response = client.post("/transaction/initialize", json=payload, headers=headers)
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise PaymentGatewayError(f"paystack request failed: {exc}") from exc

        if not isinstance(body, dict):
            raise PaymentGatewayError("paystack returned an unexpected payload")
        data = body.get("data")
        authorization_url = data.get("authorization_url") if isinstance(data, dict) else None
        if not body.get("status") or not authorization_url:
            raise PaymentGatewayError(str(body.get("message") or "paystack did not return a link"))
        return str(authorization_url)


def build_payment_gateway() -> PaymentGateway | None:
    if not PAYSTACK_SECRET_KEY:
        return None
    return PaystackGateway(PAYSTACK_SECRET_KEY)
