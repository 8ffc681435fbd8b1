# api/_http.py
# BaseHTTPRequestHandler 스타일 serverless 런타임에서 공통으로 응답을 만드는 유틸
# - 모든 응답에 CORS 헤더를 붙인다.

import json
from typing import Any, Dict, Optional

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,HEAD,POST,OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, x-nowpayments-sig",
}


def _send(h: Any, status: int, body: bytes, content_type: str, headers: Optional[Dict[str, str]]):
    hdrs = {"Content-Type": content_type, **CORS_HEADERS}
    if headers:
        hdrs.update(headers)
    h.send_response(status)
    for k, v in hdrs.items():
        h.send_header(k, v)
    h.send_header("Content-Length", str(len(body)))
    h.end_headers()
    if body and h.command != "HEAD":
        h.wfile.write(body)


def send_json(
    handler: Any,
    payload: Any,
    status: int = 200,
    headers: Optional[Dict[str, str]] = None,
):
    # JSON 응답 생성
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    _send(handler, status, body, "application/json; charset=utf-8", headers)


def send_text(
    handler: Any,
    text: str,
    status: int = 200,
    headers: Optional[Dict[str, str]] = None,
):
    _send(handler, status, text.encode("utf-8"), "text/plain; charset=utf-8", headers)


def send_empty(handler: Any, status: int = 204):
    _send(handler, status, b"", "text/plain; charset=utf-8", None)


def read_body(handler: Any) -> bytes:
    # 원본 바이트 그대로 (webhook 서명 검증용)
    # Content-Length가 깨져 있으면 빈 본문으로 본다 -> 호출부에서 400
    try:
        length = int(handler.headers.get("Content-Length") or 0)
    except ValueError:
        length = 0
    return handler.rfile.read(length) if length > 0 else b""
