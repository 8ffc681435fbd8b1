# -*- coding: utf-8 -*-
"""
nowpayments_client.py

목적:
- NOWPayments invoice 생성 기능을 "얇게" 래핑한다.
- 실패(네트워크 오류, 4xx/5xx, 이상한 응답, API KEY 없음)는 전부 GatewayError로 통일한다.
  폴백(demo 주소) 여부는 호출자(OrderService)가 결정한다.

참고:
- NOWPayments는 API 키 기반(x-api-key 헤더).
- 여기서는 최소 기능만 구현한다:
  - create_invoice: invoice 생성 -> invoice id / invoice_url(/pay_address) 반환
  - get_api_status: /v1/status 연결 확인(운영 점검 스크립트용)
- 결제 상태는 polling하지 않고 IPN(webhook)으로만 갱신한다.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests

from src.utils import GatewayError, get_logger

logger = get_logger(__name__)

NOWPAYMENTS_BASE_URL = "https://api.nowpayments.io"


@dataclass
class Invoice:
    """정규화된 invoice 응답."""

    invoice_id: str
    payment_address: str = ""
    payment_url: str = ""
    status: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)


def _body(r: requests.Response) -> Any:
    try:
        return r.json()
    except ValueError:
        return r.text


class NowPaymentsClient:
    """NOWPayments REST API 클라이언트"""

    def __init__(
        self,
        api_key: str,
        base_url: str = NOWPAYMENTS_BASE_URL,
        timeout: float = 10,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = (api_key or "").strip()
        self.base_url = (base_url or NOWPAYMENTS_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config) -> "NowPaymentsClient":
        return cls(
            api_key=config.NOWPAYMENTS_API_KEY,
            base_url=config.NOWPAYMENTS_BASE_URL,
            timeout=config.HTTP_TIMEOUT_SECONDS,
        )

    def has_api_key(self) -> bool:
        """NOWPAYMENTS_API_KEY 존재 여부."""
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise GatewayError("Missing NOWPAYMENTS_API_KEY")
        return {
            "x-api-key": self.api_key,
            "Content-Type": "application/json",
        }

    def create_invoice(
        self,
        amount_usd,
        pay_currency: str,
        order_id: str,
        callback_url: str,
        description: Optional[str] = None,
    ) -> Invoice:
        """invoice 생성. 실패 시 GatewayError(detail=원본 응답)."""
        payload: Dict[str, Any] = {
            "price_amount": float(amount_usd),
            "price_currency": "usd",
            "pay_currency": (pay_currency or "").lower(),  # e.g. btc, eth
            "order_id": order_id,
            "ipn_callback_url": callback_url,
            "order_description": description or f"Payment for order {order_id}",
        }

        try:
            r = self.session.post(
                f"{self.base_url}/v1/invoice",
                headers=self._headers(),
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise GatewayError(
                f"NOWPayments create_invoice request failed: {e}", order_id=order_id
            ) from e

        data = _body(r)
        if r.status_code >= 300:
            raise GatewayError(
                f"NOWPayments create_invoice failed: {r.status_code}",
                detail=data,
                order_id=order_id,
            )
        if not isinstance(data, dict) or not data.get("id"):
            raise GatewayError(
                "NOWPayments create_invoice returned a malformed reply",
                detail=data,
                order_id=order_id,
            )

        logger.info(f"NOWPayments invoice created: order_id={order_id} invoice_id={data.get('id')}")
        return Invoice(
            invoice_id=str(data.get("id")),
            payment_address=str(data.get("pay_address") or ""),
            payment_url=str(data.get("invoice_url") or data.get("payment_url") or ""),
            status=str(data.get("status") or data.get("payment_status") or ""),
            raw=data,
        )

    def get_api_status(self) -> Dict[str, Any]:
        """/v1/status 연결 확인."""
        try:
            r = self.session.get(
                f"{self.base_url}/v1/status",
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise GatewayError(f"NOWPayments status request failed: {e}") from e
        data = _body(r)
        if r.status_code >= 300:
            raise GatewayError(
                f"NOWPayments status failed: {r.status_code}", detail=data
            )
        return data if isinstance(data, dict) else {"message": data}
