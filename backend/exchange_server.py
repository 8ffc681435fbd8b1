# -*- coding: utf-8 -*-
"""
backend/exchange_server.py

목적:
- 코인 -> 법정화폐 환전 주문 API 서버(Flask). 로컬/단일 인스턴스 배포용.
- NOWPayments 키가 없어도 demo 모드로 주문이 정상 생성됨(절대 크래시하지 않음).

제공 API:
- GET     /health
- OPTIONS /*                   (preflight, 204)
- GET     /api/rates
- GET     /api/payment-methods
- POST    /api/create-payment  {coin, amount, receiveMethod, receiveWallet}
- GET     /api/order/<order_id>
- POST    /webhook/payment     (NOWPayments IPN, x-nowpayments-sig 필수)

주의:
- webhook은 반드시 원본 바이트(request.get_data)로 서명을 검증한 뒤에만 파싱 결과를 쓴다.
- 저장 실패(StoreError)는 500. 조용히 성공 처리하지 않는다.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

PROJECT_ROOT: Path = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from flask import Flask, Response, jsonify, request

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
    configure_logging,
    get_logger,
)

logger = get_logger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,HEAD,POST,OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, x-nowpayments-sig",
}


def _cors(resp: Response) -> Response:
    """CORS 헤더를 부착합니다."""
    for k, v in CORS_HEADERS.items():
        resp.headers[k] = v
    return resp


def build_service(config=Config) -> OrderService:
    """설정으로부터 저장소 + 게이트웨이 + 환율표를 조립한다."""
    return OrderService(
        store=get_order_store(config),
        gateway=NowPaymentsClient.from_config(config),
        exchange=ExchangeConfig(),
    )


def create_app(
    service: Optional[OrderService] = None,
    config=Config,
) -> Flask:
    app = Flask(__name__)
    app.config["ORDER_SERVICE"] = service or build_service(config)
    app.config["IPN_SECRET"] = config.NOWPAYMENTS_IPN_SECRET
    app.config["PUBLIC_BASE_URL"] = getattr(config, "PUBLIC_BASE_URL", "")

    def _service() -> OrderService:
        return app.config["ORDER_SERVICE"]

    @app.before_request
    def _handle_options():
        """OPTIONS preflight를 공통 처리하여 405를 방지합니다."""
        if request.method == "OPTIONS":
            return Response(status=204)

    @app.after_request
    def _apply_cors(resp: Response) -> Response:
        return _cors(resp)

    @app.errorhandler(StoreError)
    def _store_error(e: StoreError):
        return jsonify({"error": "Internal server error"}), 500

    @app.get("/health")
    def health():
        """헬스 체크"""
        svc = _service()
        return jsonify(
            {
                "ok": True,
                "service": "exchange_server",
                "store": svc.store.name,
                "gateway": bool(svc.gateway and svc.gateway.has_api_key()),
            }
        )

    @app.get("/api/rates")
    def rates():
        return jsonify({k: float(v) for k, v in _service().exchange.rates.items()})

    @app.get("/api/payment-methods")
    def payment_methods():
        return jsonify(_service().exchange.method_labels)

    @app.post("/api/create-payment")
    def create_payment():
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return jsonify({"error": "Invalid JSON"}), 400

        base = app.config["PUBLIC_BASE_URL"] or request.url_root.rstrip("/")
        try:
            created = _service().create(
                coin=body.get("coin"),
                amount=body.get("amount"),
                receive_method=body.get("receiveMethod"),
                receive_wallet=body.get("receiveWallet"),
                callback_url=f"{base}/webhook/payment",
            )
        except ValidationError as e:
            return jsonify({"error": e.message, "field": e.field}), 400
        return jsonify(created.to_response())

    @app.get("/api/order/<order_id>")
    def get_order(order_id: str):
        try:
            order = _service().get_order(order_id)
        except OrderNotFound:
            return jsonify({"error": "Order not found"}), 404
        return jsonify(order.to_dict())

    @app.post("/webhook/payment")
    def webhook_payment():
        # 서명 검증은 반드시 원본 바이트로
        raw = request.get_data(cache=False)
        try:
            payload = verify_ipn(
                raw, signature_from_headers(request.headers), app.config["IPN_SECRET"]
            )
        except MalformedPayload:
            return Response("Invalid JSON", status=400, mimetype="text/plain")
        except SignatureError as e:
            return Response(e.message, status=e.status_code, mimetype="text/plain")

        _service().apply_webhook(payload)
        return Response("OK", status=200, mimetype="text/plain")

    return app


# -----------------------------
# 엔트리포인트
# -----------------------------


def main() -> None:
    """서버 실행(기본 3000, 환경변수 PORT로 변경 가능)"""
    configure_logging(Config.LOG_FILE, Config.LOG_LEVEL)
    Config.validate()
    app = create_app()
    logger.info(f"exchange_server listening on port {Config.PORT} (store={Config.ORDER_STORE})")
    app.run(host="0.0.0.0", port=Config.PORT, debug=False)


if __name__ == "__main__":
    main()
