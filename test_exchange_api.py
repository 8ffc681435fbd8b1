# -*- coding: utf-8 -*-
import logging
import re

import pytest

from conftest import FakeGateway
from exchange_api import OrderService, new_order_id, placeholder_address
from order_store import Order
from src.config import ExchangeConfig
from src.utils import OrderNotFound, ValidationError

TRC20_RE = re.compile(r"^T[1-9A-HJ-NP-Za-km-z]{33}$")
ERC20_RE = re.compile(r"^0x[0-9a-f]{40}$")


def _create(service, **kw):
    args = dict(
        coin="BTC",
        amount=0.5,
        receive_method="USDT (TRC20)",
        receive_wallet="Tabc...",
        callback_url="https://ex.io/webhook/payment",
    )
    args.update(kw)
    return service.create(**args)


class TestIds:
    def test_order_id_prefixed_and_unique(self):
        ids = {new_order_id() for _ in range(500)}
        assert len(ids) == 500
        assert all(re.fullmatch(r"NP[0-9A-F]{24}", i) for i in ids)

    def test_placeholder_families(self):
        assert TRC20_RE.match(placeholder_address("trc20"))
        assert ERC20_RE.match(placeholder_address("erc20"))


class TestCreate:
    def test_read_after_write(self, service, store):
        created = _create(service)
        order = service.get_order(created.order_id)
        assert order.coin == "BTC"
        assert order.amount == 0.5
        assert order.usd_value == "82935.00"
        assert order.receive_method == "USDT (TRC20)"
        assert order.receive_wallet == "Tabc..."
        assert order.created_at and order.created_at == order.updated_at
        assert store.puts == 1

    def test_real_invoice(self, service, gateway):
        created = _create(service)
        assert not created.demo
        assert created.redirect_url == f"/payment.html?order_id={created.order_id}"
        call = gateway.calls[0]
        assert call["pay_currency"] == "BTC"
        assert call["order_id"] == created.order_id
        assert call["callback_url"] == "https://ex.io/webhook/payment"
        assert str(call["amount_usd"]) == "82935.00"

        order = service.get_order(created.order_id)
        assert order.provider == "nowpayments"
        assert order.invoice_id == "5077125051"
        assert order.payment_url == created.payment_url
        # 게이트웨이 초기 상태 사용
        assert order.status == "waiting"

    def test_gateway_without_status_defaults_pending(self, store):
        svc = OrderService(store, FakeGateway(status=""), ExchangeConfig())
        created = _create(svc)
        assert svc.get_order(created.order_id).status == "pending"

    def test_usd_rounding(self, service):
        created = _create(service, coin="eth", amount="0.333")
        # 0.333 * 5909 = 1967.697
        assert service.get_order(created.order_id).usd_value == "1967.70"

    @pytest.mark.parametrize(
        "method,pattern", [("USDT (TRC20)", TRC20_RE), ("USDT (ERC20)", ERC20_RE)]
    )
    def test_degraded_mode(self, demo_service, method, pattern):
        created = _create(demo_service, receive_method=method, receive_wallet="0xabc")
        assert created.demo
        assert pattern.match(created.payment_address)
        order = demo_service.get_order(created.order_id)
        assert order.provider == "simulated"
        assert order.invoice_id == "mock_" + created.order_id
        assert order.payment_address == created.payment_address
        assert order.status == "pending"

    def test_no_gateway_is_degraded(self, store):
        svc = OrderService(store, None)
        assert _create(svc).demo

    @pytest.mark.parametrize(
        "kw,field",
        [
            ({"amount": 0}, "amount"),
            ({"amount": -1}, "amount"),
            ({"amount": "abc"}, "amount"),
            ({"amount": None}, "amount"),
            ({"amount": True}, "amount"),
            ({"amount": float("nan")}, "amount"),
            ({"amount": float("inf")}, "amount"),
            ({"amount": 1e25}, "amount"),
            ({"amount": "1e30"}, "amount"),
            ({"coin": "DOGE"}, "coin"),
            ({"coin": ""}, "coin"),
            ({"receive_method": "PayPal"}, "receiveMethod"),
            ({"receive_method": None}, "receiveMethod"),
            ({"receive_wallet": ""}, "receiveWallet"),
            ({"receive_wallet": "   "}, "receiveWallet"),
            ({"receive_wallet": None}, "receiveWallet"),
            ({"receive_wallet": "T abc"}, "receiveWallet"),
            ({"receive_wallet": "T" * 129}, "receiveWallet"),
        ],
    )
    def test_validation_writes_nothing(self, service, store, gateway, kw, field):
        with pytest.raises(ValidationError) as exc:
            _create(service, **kw)
        assert exc.value.field == field
        assert store.puts == 0
        assert gateway.calls == []

    def test_injected_rates(self, store):
        exchange = ExchangeConfig(
            rates={"SOL": "150"}, payment_methods=(("USDC (SPL)", "erc20"),)
        )
        svc = OrderService(store, FakeGateway(), exchange)
        created = _create(svc, coin="SOL", amount=2, receive_method="USDC (SPL)")
        assert svc.get_order(created.order_id).usd_value == "300.00"
        with pytest.raises(ValidationError):
            _create(svc)


class TestGetOrder:
    def test_unknown_on_empty_store(self, service):
        with pytest.raises(OrderNotFound):
            service.get_order("NPDOESNOTEXIST")

    def test_unknown_on_populated_store(self, service):
        _create(service)
        with pytest.raises(OrderNotFound):
            service.get_order("NPDOESNOTEXIST")

    def test_blank_id(self, service):
        with pytest.raises(OrderNotFound):
            service.get_order("")


class TestApplyWebhook:
    def test_updates_existing(self, service):
        created = _create(service)
        payload = {"order_id": created.order_id, "payment_status": "finished"}
        updated = service.apply_webhook(payload)
        assert updated.status == "finished"

        order = service.get_order(created.order_id)
        assert order.status == "finished"
        assert order.webhook == payload
        assert order.usd_value == "82935.00"
        assert order.receive_wallet == "Tabc..."

    def test_idempotent(self, service):
        created = _create(service)
        payload = {"order_id": created.order_id, "status": "paid"}
        service.apply_webhook(payload)
        once = service.get_order(created.order_id)
        service.apply_webhook(payload)
        twice = service.get_order(created.order_id)
        assert once.status == twice.status == "paid"
        assert twice.webhook == payload

    def test_status_missing_keeps_current(self, service):
        created = _create(service)
        service.apply_webhook({"orderId": created.order_id, "note": "ping"})
        assert service.get_order(created.order_id).status == "waiting"

    def test_nested_invoice_order_id(self, service):
        created = _create(service)
        service.apply_webhook({"invoice": {"order_id": created.order_id}, "status": "expired"})
        assert service.get_order(created.order_id).status == "expired"

    def test_unknown_order_creates_stub(self, service):
        order = service.apply_webhook({"order_id": "NPLATE", "payment_status": "confirming"})
        assert order == service.get_order("NPLATE")
        assert order.status == "confirming"
        assert order.webhook["order_id"] == "NPLATE"

    def test_stub_defaults_unknown(self, service):
        service.apply_webhook({"order_id": "NPLATE2"})
        assert service.get_order("NPLATE2").status == "unknown"

    def test_no_order_id_has_no_effect(self, service, store):
        assert service.apply_webhook({"payment_id": 1, "status": "paid"}) is None
        assert store.puts == 0

    def test_regression_is_not_blocked(self, service):
        created = _create(service)
        service.apply_webhook({"order_id": created.order_id, "status": "paid"})
        service.apply_webhook({"order_id": created.order_id, "status": "waiting"})
        assert service.get_order(created.order_id).status == "waiting"


def test_order_service_default_exchange(store):
    svc = OrderService(store)
    assert isinstance(svc.exchange, ExchangeConfig)
    assert isinstance(Order(order_id="x"), Order)


def test_gateway_failure_logged_once(demo_service, caplog):
    with caplog.at_level(logging.WARNING):
        created = _create(demo_service)
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert "gateway down" in warnings[0].getMessage()
    assert created.order_id in warnings[0].getMessage()
