# -*- coding: utf-8 -*-
"""
ipn_verifier.py

목적:
- NOWPayments IPN(webhook) 요청의 서명을 검증한다.

서명 규칙(NOWPayments와 비트 단위로 일치해야 함):
1) 받은 원본 바이트(raw body)를 JSON 객체로 파싱한다. (재직렬화된 본문을 쓰면 안 됨)
2) 최상위 키를 사전순으로 정렬해 공백 없이 다시 직렬화한다. -> 제공자가 서명한 문자열
3) IPN secret으로 HMAC-SHA512
4) hex digest를 x-nowpayments-sig 헤더 값과 compare_digest로 비교

주문 ID 위치는 payload마다 다르다: order_id / orderId / invoice.order_id
-> ORDER_ID_STRATEGIES 순서대로 시도, 처음 찾은 값 사용.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from src.utils import MalformedPayload, MissingSignature, SignatureError, get_logger

logger = get_logger(__name__)

SIGNATURE_HEADERS = ("x-nowpayments-sig", "x-nowpayments-signature")


# JSON.stringify와 같은 규칙으로 숫자를 쓴다. (Number.prototype.toString)
# - 1e-6 <= |x| < 1e21 : 고정소수점 (0.00005, 100000000000000000000)
# - 그 밖            : 지수형 (1e-7, 1.5e+21)
# JS는 모든 숫자를 double로 다루므로 2**53 이상 정수도 double로 반올림된다.
_JS_SAFE_INT = 2 ** 53


def _js_number(value) -> str:
    if isinstance(value, int) and abs(value) < _JS_SAFE_INT:
        return str(value)
    x = float(value)
    if x == 0:
        return "0"
    sign = "-" if x < 0 else ""
    # repr은 최단 왕복 자릿수(JS와 동일)를 준다.
    _, digits, exponent = Decimal(repr(abs(x))).as_tuple()
    s = "".join(str(d) for d in digits).rstrip("0")
    exponent += len(digits) - len(s)
    k = len(s)
    n = exponent + k
    if k <= n <= 21:
        text = s + "0" * (n - k)
    elif 0 < n <= 21:
        text = s[:n] + "." + s[n:]
    elif -6 < n <= 0:
        text = "0." + "0" * (-n) + s
    else:
        e = n - 1
        mantissa = s if k == 1 else s[0] + "." + s[1:]
        text = f"{mantissa}e{'+' if e > 0 else '-'}{abs(e)}"
    return sign + text


def _js_dumps(value: Any) -> str:
    """JSON.stringify(value) 와 같은 compact 문자열."""
    if value is None:
        return "null"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, (int, float)):
        return _js_number(value)
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, dict):
        return "{" + ",".join(
            f"{json.dumps(str(k), ensure_ascii=False)}:{_js_dumps(v)}" for k, v in value.items()
        ) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_js_dumps(v) for v in value) + "]"
    raise TypeError(f"Unsupported JSON value: {type(value).__name__}")


def canonicalize(payload: Dict[str, Any]) -> str:
    """서명 대상 문자열(최상위 키 정렬, compact)."""
    return _js_dumps({k: payload[k] for k in sorted(payload)})


def sign_payload(payload: Dict[str, Any], secret: str) -> str:
    """payload를 HMAC-SHA512로 서명한 hex 문자열."""
    return hmac.new(
        secret.encode("utf-8"), canonicalize(payload).encode("utf-8"), hashlib.sha512
    ).hexdigest()


def _reject_constant(name: str):
    # JSON.parse는 NaN/Infinity를 받지 않는다.
    raise ValueError(f"Invalid JSON constant: {name}")


def parse_payload(raw_body: bytes) -> Dict[str, Any]:
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")
    try:
        payload = json.loads(
            (raw_body or b"").decode("utf-8"), parse_constant=_reject_constant
        )
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedPayload() from e
    if not isinstance(payload, dict):
        raise MalformedPayload("Webhook body must be a JSON object")
    return payload


def signature_from_headers(headers) -> Optional[str]:
    """두 가지 헤더 이름 중 먼저 있는 값."""
    for name in SIGNATURE_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return None


def verify_ipn(raw_body: bytes, signature: Optional[str], secret: str) -> Dict[str, Any]:
    """
    IPN 요청을 검증하고 파싱된 payload를 반환한다.
    실패: MalformedPayload(400) / MissingSignature(400) / SignatureError(403)
    """
    payload = parse_payload(raw_body)

    if not signature:
        raise MissingSignature()
    if not secret:
        # secret 없이는 어떤 요청도 진짜인지 알 수 없다.
        logger.error("NOWPAYMENTS_IPN_SECRET is not configured; rejecting webhook")
        raise SignatureError("Webhook secret not configured")

    expected = sign_payload(payload, secret)
    if not hmac.compare_digest(expected, str(signature)):
        raise SignatureError()
    return payload


# -----------------------------
# payload 필드 추출
# -----------------------------


def _top_level(key: str) -> Callable[[Dict[str, Any]], Any]:
    return lambda p: p.get(key)


def _nested(parent: str, key: str) -> Callable[[Dict[str, Any]], Any]:
    def extract(p: Dict[str, Any]) -> Any:
        inner = p.get(parent)
        return inner.get(key) if isinstance(inner, dict) else None

    return extract


ORDER_ID_STRATEGIES: List[Callable[[Dict[str, Any]], Any]] = [
    _top_level("order_id"),
    _top_level("orderId"),
    _nested("invoice", "order_id"),
]

STATUS_STRATEGIES: List[Callable[[Dict[str, Any]], Any]] = [
    _top_level("status"),
    _top_level("payment_status"),
]


def _first(payload: Dict[str, Any], strategies) -> Optional[str]:
    for strategy in strategies:
        value = strategy(payload)
        if value not in (None, ""):
            return str(value)
    return None


def extract_order_id(payload: Dict[str, Any]) -> Optional[str]:
    return _first(payload, ORDER_ID_STRATEGIES)


def extract_status(payload: Dict[str, Any]) -> Optional[str]:
    return _first(payload, STATUS_STRATEGIES)
