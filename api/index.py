# -*- coding: utf-8 -*-
"""
api/index.py

Serverless(BaseHTTPRequestHandler) 엔트리포인트.
- 파일 쓰기가 영속적이지 않은 환경이므로 ORDER_STORE=upstash 로 배포한다.
- 라우트/응답 계약은 backend/exchange_server.py 와 동일하다.
"""

from __future__ import annotations

import json
import sys
from http.server import BaseHTTPRequestHandler
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

# Add project root to sys.path for serverless bundles
_root = str(Path(__file__).resolve().parents[1])
if _root not in sys.path:
    sys.path.insert(0, _root)

from api._http import read_body, send_empty, send_json, send_text
from exchange_api import OrderService
from ipn_verifier import signature_from_headers, verify_ipn
from nowpayments_client import NowPaymentsClient
from order_store import get_order_store
from src.config import Config, ExchangeConfig
from src.utils import (
    MalformedPayload,
    OrderNotFound,
    SignatureError,
    StoreError,
    ValidationError,
    get_logger,
)

logger = get_logger(__name__)

_service: Optional[OrderService] = None


def get_service() -> OrderService:
    """콜드스타트 시 1회 조립."""
    global _service
    if _service is None:
        _service = OrderService(
            store=get_order_store(Config),
            gateway=NowPaymentsClient.from_config(Config),
            exchange=ExchangeConfig(),
        )
    return _service


class handler(BaseHTTPRequestHandler):
    # 테스트에서 서브클래스로 주입 가능
    service: Optional[OrderService] = None
    ipn_secret: Optional[str] = None
    public_base_url: Optional[str] = None

    def _svc(self) -> OrderService:
        return self.service or get_service()

    def _path(self) -> str:
        return urlparse(self.path).path

    def do_OPTIONS(self):
        send_empty(self, 204)

    def do_HEAD(self):
        self.do_GET()

    def do_GET(self):
        path = self._path()
        try:
            if path == "/api/rates":
                rates = self._svc().exchange.rates
                send_json(self, {k: float(v) for k, v in rates.items()})
            elif path == "/api/payment-methods":
                send_json(self, self._svc().exchange.method_labels)
            elif path.startswith("/api/order/"):
                order_id = unquote(path[len("/api/order/"):])
                try:
                    order = self._svc().get_order(order_id)
                except OrderNotFound:
                    send_json(self, {"error": "Order not found"}, 404)
                    return
                send_json(self, order.to_dict())
            else:
                send_json(self, {"error": "Not found"}, 404)
        except StoreError:
            send_json(self, {"error": "Internal server error"}, 500)

    def do_POST(self):
        path = self._path()
        try:
            if path == "/api/create-payment":
                self._create_payment()
            elif path == "/webhook/payment":
                self._webhook()
            else:
                send_json(self, {"error": "Not found"}, 404)
        except StoreError:
            send_json(self, {"error": "Internal server error"}, 500)

    def _create_payment(self):
        try:
            body = json.loads(read_body(self).decode("utf-8") or "null")
        except (UnicodeDecodeError, ValueError):
            body = None
        if not isinstance(body, dict):
            send_json(self, {"error": "Invalid JSON"}, 400)
            return

        base = self.public_base_url
        if base is None:
            base = Config.PUBLIC_BASE_URL
        if not base:
            host = self.headers.get("Host", "localhost")
            proto = self.headers.get("X-Forwarded-Proto", "https")
            base = f"{proto}://{host}"
        try:
            created = self._svc().create(
                coin=body.get("coin"),
                amount=body.get("amount"),
                receive_method=body.get("receiveMethod"),
                receive_wallet=body.get("receiveWallet"),
                callback_url=f"{base}/webhook/payment",
            )
        except ValidationError as e:
            send_json(self, {"error": e.message, "field": e.field}, 400)
            return
        send_json(self, created.to_response())

    def _webhook(self):
        raw = read_body(self)
        secret = self.ipn_secret if self.ipn_secret is not None else Config.NOWPAYMENTS_IPN_SECRET
        try:
            payload = verify_ipn(raw, signature_from_headers(self.headers), secret)
        except MalformedPayload:
            send_text(self, "Invalid JSON", 400)
            return
        except SignatureError as e:
            send_text(self, e.message, e.status_code)
            return
        self._svc().apply_webhook(payload)
        send_text(self, "OK", 200)

    def log_message(self, format, *args):
        logger.info("%s - %s", self.address_string(), format % args)
