import logging
import os
import time

# 로그 포맷 (프로젝트 공통)
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


def configure_logging(log_file=None, level="INFO"):
    """파일 + 콘솔 로깅을 한 번만 설정합니다."""
    global _configured
    if _configured:
        return
    handlers = [logging.StreamHandler()]
    if log_file:
        # 로그 디렉토리 생성 (존재하지 않을 경우)
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        handlers.insert(0, logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )
    _configured = True


def get_logger(name):
    """이름을 기준으로 로거 인스턴스를 반환합니다."""
    return logging.getLogger(name)


# 공통 로거 인스턴스
logger = get_logger(__name__)


def utc_iso() -> str:
    """UTC ISO 문자열."""
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


class ExchangeError(Exception):
    """주문/결제 처리 관련 오류의 공통 예외 클래스"""

    log_level = logging.ERROR

    def __init__(self, message, stage="Unknown", order_id=None):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.order_id = order_id
        logger.log(
            self.log_level,
            f"[{type(self).__name__}] Stage: {self.stage}, Order ID: {self.order_id}, Message: {self.message}",
        )


class ValidationError(ExchangeError):
    """잘못된/누락된 입력 (400)"""

    log_level = logging.INFO

    def __init__(self, field, message):
        super().__init__(message, stage="Validation")
        self.field = field


class GatewayError(ExchangeError):
    """NOWPayments 호출 실패. 호출자가 demo 모드로 폴백한다."""

    log_level = logging.WARNING

    def __init__(self, message, detail=None, order_id=None):
        super().__init__(message, stage="Invoice Gateway", order_id=order_id)
        self.detail = detail


class SignatureError(ExchangeError):
    """webhook 서명 불일치 (403)"""

    log_level = logging.WARNING
    status_code = 403

    def __init__(self, message="Invalid signature"):
        super().__init__(message, stage="Webhook")


class MissingSignature(SignatureError):
    """서명 헤더 없음 (400)"""

    status_code = 400

    def __init__(self, message="Missing signature"):
        super().__init__(message)


class MalformedPayload(ExchangeError):
    """webhook 본문이 JSON 객체가 아님 (400)"""

    log_level = logging.WARNING

    def __init__(self, message="Invalid JSON"):
        super().__init__(message, stage="Webhook")


class OrderNotFound(ExchangeError):
    """주문 없음. 오류가 아니라 정상적인 '없음' 결과 (404)"""

    log_level = logging.DEBUG

    def __init__(self, order_id):
        super().__init__("Order not found", stage="Status", order_id=order_id)


class StoreError(ExchangeError):
    """저장소 I/O 실패 또는 손상 (500)"""

    def __init__(self, message, order_id=None):
        super().__init__(message, stage="Order Store", order_id=order_id)
