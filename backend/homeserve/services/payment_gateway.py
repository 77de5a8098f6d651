# backend/homeserve/services/payment_gateway.py
"""
Payment gateway client (Razorpay).

The booking core only needs three calls:
- create_order(amount, receipt) → order id
- verify_signature(order_id, payment_id, signature) → bool
- refund(payment_id, amount=None) → refund id

Amounts are passed in rupees and converted to paise on the wire.
Transport failures surface as DependencyError.
"""

import hashlib
import hmac
import logging
from typing import Protocol

import httpx

from ..config import settings
from ..errors import DependencyError

logger = logging.getLogger(__name__)


class PaymentGateway(Protocol):
    def create_order(self, amount: float, receipt: str, currency: str = "INR") -> str: ...

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool: ...

    def refund(self, payment_id: str, amount: float | None = None) -> str: ...


def _to_paise(amount: float) -> int:
    return int(round(amount * 100))


class RazorpayGateway:
    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.client = client or httpx.Client(
            base_url=base_url,
            auth=(key_id, key_secret),
            timeout=timeout,
        )

    def _post(self, path: str, body: dict) -> dict:
        try:
            resp = self.client.post(path, json=body)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Payment gateway {path} returned {e.response.status_code}: {e.response.text[:200]}")
            raise DependencyError("Payment gateway rejected the request")
        except httpx.HTTPError as e:
            logger.error(f"Payment gateway {path} unreachable: {e}")
            raise DependencyError("Payment gateway is unavailable, please try again")

    def create_order(self, amount: float, receipt: str, currency: str = "INR") -> str:
        data = self._post("/orders", {
            "amount": _to_paise(amount),
            "currency": currency,
            "receipt": receipt[:40],
        })
        logger.info(f"Payment order {data['id']} created for receipt {receipt}")
        return data["id"]

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not self.key_secret:
            raise DependencyError("Payment gateway is not configured")
        message = f"{order_id}|{payment_id}".encode("utf-8")
        expected = hmac.new(self.key_secret.encode("utf-8"), message, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature or "")

    def refund(self, payment_id: str, amount: float | None = None) -> str:
        body = {} if amount is None else {"amount": _to_paise(amount)}
        data = self._post(f"/payments/{payment_id}/refund", body)
        logger.info(f"Refund {data['id']} initiated for payment {payment_id}")
        return data["id"]


def get_payment_gateway() -> PaymentGateway:
    return RazorpayGateway(
        key_id=settings.razorpay_key_id,
        key_secret=settings.razorpay_key_secret,
        base_url=settings.razorpay_api_url,
        timeout=settings.payment_timeout_seconds,
    )
