# -*- coding: utf-8 -*-
"""
order_store.py

목적:
- 주문(orders)을 저장/조회하는 단일 인터페이스(OrderStore: put/get) 제공.
- 로컬(단일 프로세스)에서는 data/orders.json 파일 하나에 주문 배열을 저장(원자적 저장).
- 배포(serverless)에서는 Upstash Redis REST에 주문 1건 = 키 1개로 저장.
- 어느 쪽을 쓸지는 설정(ORDER_STORE=file|upstash)으로만 결정한다.

주의:
- FileOrderStore는 put 때마다 파일 전체를 읽고-고치고-다시 쓴다.
  여러 프로세스/스레드가 동시에 쓰면 갱신이 유실될 수 있다(알려진 제한, 잠금 없음).
  저트래픽 단일 인스턴스 전용.
- 저장소가 비어 있거나 파일이 아직 없으면 "주문 없음"(None)이지 오류가 아니다.
  반대로 파일이 깨졌거나 I/O가 실패하면 StoreError를 던진다(조용히 삼키지 않음).
"""

from __future__ import annotations

import abc
import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from src.utils import StoreError, get_logger

logger = get_logger(__name__)


@dataclass
class Order:
    """주문 데이터(반드시 JSON 직렬화 가능한 타입만 사용)."""

    order_id: str
    coin: str = ""
    amount: Any = None  # 요청 그대로 (float 또는 숫자 문자열)
    usd_value: str = ""  # 생성 시점 고정 견적, "82935.00"
    receive_method: str = ""
    receive_wallet: str = ""
    payment_address: str = ""
    invoice_id: str = ""  # NOWPayments invoice id 또는 "mock_..."(demo)
    payment_url: str = ""
    provider: str = ""  # nowpayments|simulated
    status: str = "pending"  # pending/waiting/paid/expired/unknown/...
    created_at: str = ""
    updated_at: str = ""
    webhook: Optional[Dict[str, Any]] = None  # 마지막 IPN 원본

    @property
    def is_demo(self) -> bool:
        return self.provider == "simulated" or self.invoice_id.startswith("mock_")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Order":
        """저장된 dict -> Order. 모르는 키는 무시한다."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


class OrderStore(abc.ABC):
    """주문 저장소 인터페이스."""

    name = "abstract"

    @abc.abstractmethod
    def get(self, order_id: str) -> Optional[Order]:
        """order_id로 조회. 없으면 None."""

    @abc.abstractmethod
    def put(self, order: Order) -> Order:
        """upsert. 반환 시점에 저장이 끝나 있어야 한다."""


def _atomic_write_json(path: Path, obj) -> None:
    """원자적으로 JSON 파일을 저장."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(
            json.dumps(obj, ensure_ascii=False, indent=2) + "\n", encoding="utf-8"
        )
        tmp.replace(path)
    except OSError as e:
        raise StoreError(f"orders file write failed: {path}: {e}") from e


class FileOrderStore(OrderStore):
    """로컬 파일 기반 주문 저장소(JSON 배열 1개)."""

    name = "file"

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise StoreError(f"orders file read failed: {self.path}: {e}") from e
        if not text.strip():
            return []
        try:
            data = json.loads(text)
        except ValueError as e:
            raise StoreError(f"orders file is corrupt: {self.path}: {e}") from e
        if not isinstance(data, list):
            raise StoreError(f"orders file must hold a JSON array: {self.path}")
        return data

    def get(self, order_id: str) -> Optional[Order]:
        for o in self._load():
            if isinstance(o, dict) and str(o.get("order_id")) == str(order_id):
                return Order.from_dict(o)
        return None

    def put(self, order: Order) -> Order:
        orders = self._load()
        for i, o in enumerate(orders):
            if isinstance(o, dict) and str(o.get("order_id")) == order.order_id:
                orders[i] = order.to_dict()
                break
        else:
            orders.append(order.to_dict())
        _atomic_write_json(self.path, orders)
        return order


class UpstashOrderStore(OrderStore):
    """Upstash Redis REST 기반 주문 저장소(주문 1건 = 키 1개)."""

    name = "upstash"

    def __init__(
        self,
        url: str,
        token: str,
        namespace: str = "exchange",
        timeout: float = 10,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not url or not token:
            raise StoreError(
                "Missing UPSTASH_REDIS_REST_URL or UPSTASH_REDIS_REST_TOKEN"
            )
        self.url = url.rstrip("/")
        self.token = token
        self.ns = namespace
        self.timeout = timeout
        self.session = session or requests.Session()

    def _key(self, order_id: str) -> str:
        return f"{self.ns}:order:{order_id}"

    def _path_key(self, order_id: str) -> str:
        # REST 경로 한 칸에 들어가야 하므로 '/' 등은 인코딩
        return quote(self._key(order_id), safe=":")

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    def get(self, order_id: str) -> Optional[Order]:
        try:
            r = self.session.get(
                f"{self.url}/get/{self._path_key(order_id)}",
                headers=self._headers(),
                timeout=self.timeout,
            )
            r.raise_for_status()
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            raise StoreError(f"Upstash get failed: {e}", order_id=order_id) from e

        val = data.get("result") if isinstance(data, dict) else None
        if not val:
            return None
        if isinstance(val, str):
            try:
                val = json.loads(val)
            except ValueError as e:
                raise StoreError(
                    f"Upstash value is corrupt: {e}", order_id=order_id
                ) from e
        if not isinstance(val, dict):
            raise StoreError("Upstash value is not an order object", order_id=order_id)
        return Order.from_dict(val)

    def put(self, order: Order) -> Order:
        value = json.dumps(order.to_dict(), ensure_ascii=False)
        try:
            r = self.session.post(
                f"{self.url}/set/{self._path_key(order.order_id)}",
                headers=self._headers(),
                data=value.encode("utf-8"),
                timeout=self.timeout,
            )
            r.raise_for_status()
        except requests.RequestException as e:
            raise StoreError(
                f"Upstash set failed: {e}", order_id=order.order_id
            ) from e
        return order


def get_order_store(config) -> OrderStore:
    """설정(ORDER_STORE)에 맞는 주문 저장소를 만든다."""
    backend = str(getattr(config, "ORDER_STORE", "file") or "file").lower()
    if backend == "upstash":
        return UpstashOrderStore(
            url=config.UPSTASH_REDIS_REST_URL,
            token=config.UPSTASH_REDIS_REST_TOKEN,
            namespace=getattr(config, "UPSTASH_NAMESPACE", "exchange"),
            timeout=getattr(config, "HTTP_TIMEOUT_SECONDS", 10),
        )
    if backend == "file":
        return FileOrderStore(Path(config.ORDERS_FILE))
    raise ValueError(f"Unknown ORDER_STORE: {backend!r} (expected file|upstash)")
