"""Tests for the Razorpay gateway client."""

import hashlib
import hmac
import json

import httpx
import pytest

from homeserve.errors import DependencyError
from homeserve.services.payment_gateway import RazorpayGateway

SECRET = "test_secret"


def make_gateway(handler):
    client = httpx.Client(
        base_url="https://api.razorpay.test/v1",
        transport=httpx.MockTransport(handler),
    )
    return RazorpayGateway("rzp_test", SECRET, client=client)


class TestCreateOrder:
    def test_sends_amount_in_paise(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "order_abc"})

        order_id = make_gateway(handler).create_order(499.99, receipt="batch-1")

        assert order_id == "order_abc"
        assert seen["path"] == "/v1/orders"
        assert seen["body"] == {"amount": 49999, "currency": "INR", "receipt": "batch-1"}

    def test_rejected_request(self):
        gateway = make_gateway(lambda request: httpx.Response(400, json={"error": "bad"}))
        with pytest.raises(DependencyError):
            gateway.create_order(100, receipt="batch-1")

    def test_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(DependencyError):
            make_gateway(handler).create_order(100, receipt="batch-1")


class TestRefund:
    def test_partial_refund(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "rfnd_1"})

        refund_id = make_gateway(handler).refund("pay_1", 250.0)

        assert refund_id == "rfnd_1"
        assert seen["path"] == "/v1/payments/pay_1/refund"
        assert seen["body"] == {"amount": 25000}

    def test_server_error(self):
        gateway = make_gateway(lambda request: httpx.Response(503))
        with pytest.raises(DependencyError):
            gateway.refund("pay_1")


class TestVerifySignature:
    def sign(self, order_id, payment_id, secret=SECRET):
        return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()

    def test_valid(self):
        gateway = make_gateway(lambda request: httpx.Response(200))
        assert gateway.verify_signature("order_1", "pay_1", self.sign("order_1", "pay_1"))

    def test_tampered(self):
        gateway = make_gateway(lambda request: httpx.Response(200))
        assert not gateway.verify_signature("order_1", "pay_2", self.sign("order_1", "pay_1"))

    def test_wrong_secret(self):
        gateway = make_gateway(lambda request: httpx.Response(200))
        assert not gateway.verify_signature("order_1", "pay_1", self.sign("order_1", "pay_1", "other"))

    def test_unconfigured(self):
        gateway = RazorpayGateway("", "", client=httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200))))
        with pytest.raises(DependencyError):
            gateway.verify_signature("order_1", "pay_1", "sig")
