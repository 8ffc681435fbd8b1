# -*- coding: utf-8 -*-
"""
src/config.py

목적:
- .env / 환경변수에서 운영 설정을 읽어 Config 클래스로 노출한다.
- 환율표/지급 수단(payout rail)은 ExchangeConfig(불변 구조체)로 분리해
  OrderService 생성 시 주입한다. (전역 변수를 직접 고치지 않고도 테스트 가능)

주의:
- 비밀값(NOWPAYMENTS_API_KEY, NOWPAYMENTS_IPN_SECRET)은 로그/응답에 절대 노출하지 않는다.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from types import MappingProxyType
from typing import List, Mapping, Tuple

from dotenv import load_dotenv

# .env 파일에서 환경 변수 로드
PROJECT_ROOT = Path(__file__).resolve().parents[1]
load_dotenv(PROJECT_ROOT / ".env")


class Config:
    # NOWPayments API 키 (x-api-key)
    NOWPAYMENTS_API_KEY = os.getenv("NOWPAYMENTS_API_KEY", "").strip()
    NOWPAYMENTS_BASE_URL = os.getenv(
        "NOWPAYMENTS_BASE_URL", "https://api.nowpayments.io"
    ).rstrip("/")
    # IPN(webhook) 서명 검증용 secret
    NOWPAYMENTS_IPN_SECRET = (
        os.getenv("NOWPAYMENTS_IPN_SECRET") or os.getenv("WEBHOOK_SECRET") or ""
    ).strip()

    # 주문 저장소 선택: file | upstash
    ORDER_STORE = os.getenv("ORDER_STORE", "file").strip().lower()
    ORDERS_FILE = os.getenv("ORDERS_FILE") or str(PROJECT_ROOT / "data" / "orders.json")
    UPSTASH_REDIS_REST_URL = os.getenv("UPSTASH_REDIS_REST_URL", "").strip()
    UPSTASH_REDIS_REST_TOKEN = os.getenv("UPSTASH_REDIS_REST_TOKEN", "").strip()
    UPSTASH_NAMESPACE = os.getenv("UPSTASH_NAMESPACE", "exchange").strip()

    # webhook 콜백 URL 기준 주소 (비어 있으면 요청 URL 기준)
    PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "").rstrip("/")

    # 외부 호출(NOWPayments, Upstash) 타임아웃
    HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))

    # 서버 포트
    PORT = int(os.getenv("PORT", "3000"))

    # 로그 파일 경로
    LOG_FILE = os.getenv("LOG_FILE") or str(PROJECT_ROOT / "logs" / "exchange.log")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    @classmethod
    def validate(cls) -> List[str]:
        """누락된 설정 이름 목록을 반환한다(크래시하지 않고 경고만 남김)."""
        from .utils import get_logger

        required_vars = ["NOWPAYMENTS_API_KEY", "NOWPAYMENTS_IPN_SECRET"]
        if cls.ORDER_STORE == "upstash":
            required_vars += ["UPSTASH_REDIS_REST_URL", "UPSTASH_REDIS_REST_TOKEN"]

        missing_vars = [var for var in required_vars if not getattr(cls, var, "")]
        logger = get_logger(__name__)
        for var in missing_vars:
            # 키가 없으면 결제는 demo(simulated) 모드, 서명 검증은 전부 거부된다.
            logger.warning(f"필수 환경 변수가 누락되었습니다: {var}")
        return missing_vars


# 코인별 고정 환율(USD)
DEFAULT_RATES = {
    "BTC": Decimal("165870"),
    "ETH": Decimal("5909"),
}

# 지급 수단 라벨 -> 주소 체계
DEFAULT_PAYMENT_METHODS = (
    ("USDT (TRC20)", "trc20"),
    ("USDT (ERC20)", "erc20"),
)


def _freeze_rates(rates) -> Mapping[str, Decimal]:
    return MappingProxyType(
        {str(k).upper(): Decimal(str(v)) for k, v in dict(rates).items()}
    )


@dataclass(frozen=True)
class ExchangeConfig:
    """환율표 + 지급 수단. 생성 후 변경 불가."""

    rates: Mapping[str, Decimal] = field(
        default_factory=lambda: _freeze_rates(DEFAULT_RATES)
    )
    payment_methods: Tuple[Tuple[str, str], ...] = DEFAULT_PAYMENT_METHODS

    def __post_init__(self):
        # dict가 들어와도 읽기 전용 view로 고정
        object.__setattr__(self, "rates", _freeze_rates(self.rates))
        object.__setattr__(
            self,
            "payment_methods",
            tuple((str(label), str(family)) for label, family in self.payment_methods),
        )

    @property
    def method_labels(self) -> List[str]:
        return [label for label, _ in self.payment_methods]

    def rate_for(self, coin: str):
        return self.rates.get(str(coin or "").strip().upper())

    def address_family(self, receive_method: str):
        for label, family in self.payment_methods:
            if label == receive_method:
                return family
        return None
