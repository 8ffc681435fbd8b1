# -*- coding: utf-8 -*-
"""
tools/check_nowpayments.py

운영 점검:
- 필수 비밀값이 설정되어 있는지(길이만 출력, 값은 절대 출력하지 않음)
- NOWPayments /v1/status 응답 확인

사용:
  python tools/check_nowpayments.py
  python tools/check_nowpayments.py --skip-api
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from nowpayments_client import NowPaymentsClient
from src.config import Config
from src.utils import GatewayError

SECRET_VARS = ["NOWPAYMENTS_API_KEY", "NOWPAYMENTS_IPN_SECRET"]


def describe_settings(config=Config) -> list:
    lines = []
    for var in SECRET_VARS:
        value = getattr(config, var, "")
        lines.append(f"{var}: {'SET (length ' + str(len(value)) + ')' if value else 'NOT SET'}")
    lines.append(f"ORDER_STORE: {config.ORDER_STORE}")
    if config.ORDER_STORE == "upstash":
        lines.append(
            f"UPSTASH_REDIS_REST_URL: {'SET' if config.UPSTASH_REDIS_REST_URL else 'NOT SET'}"
        )
        lines.append(
            f"UPSTASH_REDIS_REST_TOKEN: {'SET' if config.UPSTASH_REDIS_REST_TOKEN else 'NOT SET'}"
        )
    else:
        lines.append(f"ORDERS_FILE: {config.ORDERS_FILE}")
    return lines


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="NOWPayments 설정/연결 점검")
    parser.add_argument("--skip-api", action="store_true", help="/v1/status 호출 생략")
    args = parser.parse_args(argv)

    print("Environment Variables Check:")
    for line in describe_settings():
        print(f"  {line}")

    missing = Config.validate()
    if args.skip_api:
        return 1 if missing else 0

    client = NowPaymentsClient.from_config(Config)
    try:
        status = client.get_api_status()
    except GatewayError as e:
        print(f"API Status: FAILED ({e.message})")
        return 1
    print(f"API Status: {status}")
    return 1 if missing else 0


if __name__ == "__main__":
    sys.exit(main())
