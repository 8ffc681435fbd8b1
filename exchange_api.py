# -*- coding: utf-8 -*-
"""
exchange_api.py

목적(운영용 공통 로직):
- 로컬 Flask(backend/exchange_server)와 serverless handler(api/index)가
  동일한 주문 생성/조회/webhook 반영 로직을 공유하도록 한다.

흐름:
- create      : 입력 검증 -> USD 견적 -> order_id 발급 -> NOWPayments invoice -> 저장
- get_order   : 저장소 조회만(비즈니스 로직 없음)
- apply_webhook: 서명 검증이 끝난 IPN payload를 주문에 반영

결제 제공자:
- 기본: NOWPayments invoice
- fallback: simulated (키 없음/장애/이상 응답) -> 주문은 정상 생성되지만
  invoice_id="mock_..." + provider="simulated"로 표시해 결제 페이지가 DEMO임을 알린다.

상태 전이:
- status는 create(초기값)와 webhook 경로에서만 바뀐다.
- 역방향 전이(paid -> waiting 등)를 막지 않는다. 제공자가 보낸 마지막 상태가 곧 진실.
"""

from __future__ import annotations

import math
import secrets
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Optional

from ipn_verifier import extract_order_id, extract_status
from nowpayments_client import NowPaymentsClient
from order_store import Order, OrderStore
from src.config import ExchangeConfig
from src.utils import GatewayError, OrderNotFound, ValidationError, get_logger, utc_iso

logger = get_logger(__name__)

ORDER_ID_PREFIX = "NP"
MOCK_INVOICE_PREFIX = "mock_"
MAX_WALLET_LENGTH = 128

_BASE58 = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def new_order_id() -> str:
    """order_id 생성(추측 불가, 96bit)."""
    return ORDER_ID_PREFIX + secrets.token_hex(12).upper()


def placeholder_address(address_family: str) -> str:
    """demo 모드용 가짜 입금 주소. 체계별 접두사를 지킨다."""
    if address_family == "trc20":
        # Tron: T + base58 33자 = 34자
        return "T" + "".join(secrets.choice(_BASE58) for _ in range(33))
    # ERC20/ETH: 0x + hex 40자
    return "0x" + secrets.token_hex(20)


@dataclass
class OrderCreated:
    order_id: str
    payment_address: str
    payment_url: str
    redirect_url: str
    demo: bool

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "order_id": self.order_id,
            "payment_address": self.payment_address,
            "payment_url": self.payment_url,
            "redirect_url": self.redirect_url,
            "demo": self.demo,
        }


def _parse_amount(amount) -> Decimal:
    if isinstance(amount, bool) or amount is None:
        raise ValidationError("amount", "amount is required")
    if isinstance(amount, float) and not math.isfinite(amount):
        raise ValidationError("amount", "amount must be a finite number")
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation:
        raise ValidationError("amount", "amount must be a number")
    if not value.is_finite():
        raise ValidationError("amount", "amount must be a finite number")
    if value <= 0:
        raise ValidationError("amount", "amount must be greater than 0")
    return value


def _quote(value: Decimal, rate: Decimal) -> Decimal:
    """USD 견적(센트 단위 반올림). 자릿수 초과는 입력 오류로 본다."""
    try:
        return (value * rate).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError("amount", "amount is too large")


class OrderService:
    """주문 생성/조회/webhook 반영."""

    def __init__(
        self,
        store: OrderStore,
        gateway: Optional[NowPaymentsClient] = None,
        exchange: Optional[ExchangeConfig] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.exchange = exchange or ExchangeConfig()

    # -----------------------------
    # create
    # -----------------------------

    def _validate(self, coin, amount, receive_method, receive_wallet):
        if not coin or not isinstance(coin, str):
            raise ValidationError("coin", "coin is required")
        rate = self.exchange.rate_for(coin)
        if rate is None:
            raise ValidationError("coin", "Invalid coin type")

        value = _parse_amount(amount)

        if not receive_method or not isinstance(receive_method, str):
            raise ValidationError("receiveMethod", "receiveMethod is required")
        family = self.exchange.address_family(receive_method)
        if family is None:
            raise ValidationError("receiveMethod", "Invalid payment method")

        wallet = receive_wallet.strip() if isinstance(receive_wallet, str) else ""
        if not wallet:
            raise ValidationError("receiveWallet", "receiveWallet is required")
        if len(wallet) > MAX_WALLET_LENGTH or any(ch.isspace() for ch in wallet):
            raise ValidationError("receiveWallet", "receiveWallet is malformed")

        return coin.strip().upper(), value, rate, family, wallet

    def create(
        self,
        coin,
        amount,
        receive_method,
        receive_wallet,
        callback_url: str = "",
    ) -> OrderCreated:
        """주문 생성 + invoice 생성(가능하면 NOWPayments, 아니면 demo)."""
        coin, value, rate, family, wallet = self._validate(
            coin, amount, receive_method, receive_wallet
        )
        usd_value = _quote(value, rate)
        order_id = new_order_id()
        now = utc_iso()

        order = Order(
            order_id=order_id,
            coin=coin,
            amount=amount,
            usd_value=str(usd_value),
            receive_method=receive_method,
            receive_wallet=wallet,
            status="pending",
            created_at=now,
            updated_at=now,
        )

        try:
            if self.gateway is None:
                raise GatewayError("No invoice gateway configured", order_id=order_id)
            invoice = self.gateway.create_invoice(
                amount_usd=usd_value,
                pay_currency=coin,
                order_id=order_id,
                callback_url=callback_url,
            )
            order.provider = "nowpayments"
            order.invoice_id = invoice.invoice_id
            order.payment_url = invoice.payment_url
            order.payment_address = invoice.payment_address
            order.status = invoice.status or "pending"
        except GatewayError:
            # 운영 안정성: 제공자 장애여도 주문은 만든다. 단, demo임을 명시.
            order.provider = "simulated"
            order.invoice_id = MOCK_INVOICE_PREFIX + order_id
            order.payment_url = ""
            order.payment_address = placeholder_address(family)
            order.status = "pending"

        self.store.put(order)
        logger.info(
            "주문 생성 order_id=%s coin=%s usd_value=%s provider=%s",
            order_id, coin, order.usd_value, order.provider,
        )
        return OrderCreated(
            order_id=order_id,
            payment_address=order.payment_address,
            payment_url=order.payment_url,
            redirect_url=f"/payment.html?order_id={order_id}",
            demo=order.is_demo,
        )

    # -----------------------------
    # read
    # -----------------------------

    def get_order(self, order_id: str) -> Order:
        order = self.store.get(order_id) if order_id else None
        if order is None:
            raise OrderNotFound(order_id)
        return order

    # -----------------------------
    # webhook
    # -----------------------------

    def apply_webhook(self, payload: Dict[str, Any]) -> Optional[Order]:
        """서명 검증된 IPN payload 반영. 주문 ID가 없으면 아무것도 하지 않는다."""
        order_id = extract_order_id(payload)
        if not order_id:
            logger.info("Verified webhook without order id ignored")
            return None

        status = extract_status(payload)
        now = utc_iso()
        order = self.store.get(order_id)
        if order is not None:
            if status and status != order.status:
                logger.info("order %s status %s -> %s", order_id, order.status, status)
            order.status = status or order.status
            order.webhook = payload
            order.updated_at = now
        else:
            # 아직 안 보이는 주문에 대한 늦은 IPN도 버리지 않는다.
            logger.warning(f"Webhook for unknown order {order_id}; storing stub record")
            order = Order(
                order_id=order_id,
                status=status or "unknown",
                webhook=payload,
                created_at=now,
                updated_at=now,
            )
        self.store.put(order)
        return order
