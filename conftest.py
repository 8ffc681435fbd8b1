# -*- coding: utf-8 -*-
import json

import pytest

from exchange_api import OrderService
from ipn_verifier import sign_payload
from nowpayments_client import Invoice
from order_store import FileOrderStore
from src.config import Config, ExchangeConfig
from src.utils import GatewayError

IPN_SECRET = "test-ipn-secret"


class FakeGateway:
    """NOWPayments 대역. fail=True면 항상 GatewayError."""

    def __init__(self, fail=False, status="waiting"):
        self.fail = fail
        self.status = status
        self.calls = []

    def has_api_key(self):
        return not self.fail

    def create_invoice(self, amount_usd, pay_currency, order_id, callback_url, description=None):
        self.calls.append(
            {
                "amount_usd": amount_usd,
                "pay_currency": pay_currency,
                "order_id": order_id,
                "callback_url": callback_url,
            }
        )
        if self.fail:
            raise GatewayError("gateway down", order_id=order_id)
        return Invoice(
            invoice_id="5077125051",
            payment_address="",
            payment_url=f"https://nowpayments.io/payment/?iid=5077125051&order={order_id}",
            status=self.status,
            raw={"id": "5077125051", "order_id": order_id},
        )


class CountingStore(FileOrderStore):
    """put 호출 횟수를 세는 파일 저장소."""

    def __init__(self, path):
        super().__init__(path)
        self.puts = 0

    def put(self, order):
        self.puts += 1
        return super().put(order)


@pytest.fixture
def store(tmp_path):
    return CountingStore(tmp_path / "orders.json")


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def down_gateway():
    return FakeGateway(fail=True)


@pytest.fixture
def service(store, gateway):
    return OrderService(store=store, gateway=gateway, exchange=ExchangeConfig())


@pytest.fixture
def demo_service(store, down_gateway):
    return OrderService(store=store, gateway=down_gateway, exchange=ExchangeConfig())


@pytest.fixture
def test_config(tmp_path):
    class TestConfig(Config):
        NOWPAYMENTS_API_KEY = ""
        NOWPAYMENTS_IPN_SECRET = IPN_SECRET
        ORDER_STORE = "file"
        ORDERS_FILE = str(tmp_path / "orders.json")
        PUBLIC_BASE_URL = "https://exchange.example.com"

    return TestConfig


def signed(payload, secret=IPN_SECRET):
    """(raw body, signature) 쌍."""
    return json.dumps(payload).encode("utf-8"), sign_payload(payload, secret)
