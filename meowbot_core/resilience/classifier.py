"""错误分类与用户提示文案。

把任意异常归一为 MeowBotError，判定顺序（先命中先返回）：

1. 网络不可达或消息包含 "network"        -> network
2. 状态码 429 或消息包含 "rate limit"     -> upstream_rate_limit
3. 状态码 401 / 403                        -> auth
4. 状态码 502 / 503 或消息包含 "unavailable" -> service_unavailable
5. 超时异常或消息包含 "timeout"            -> timeout
6. 其余                                    -> unexpected

除 auth（以及本地的 busy）外，其余类型都允许重试。
"""

import random
from typing import Dict, Optional

import httpx

from meowbot_core.domain.exceptions import (
    ErrorKind,
    ErrorRecord,
    MeowBotError,
    NetworkError,
)

NON_RETRYABLE = frozenset({ErrorKind.AUTH, ErrorKind.BUSY})

ERROR_MESSAGES: Dict[ErrorKind, Dict[str, str]] = {
    ErrorKind.NETWORK: {
        "en": "Network connection issue. Please check your internet connection.",
        "vi": "Lỗi kết nối mạng. Vui lòng kiểm tra kết nối internet của bạn.",
    },
    ErrorKind.SERVICE_UNAVAILABLE: {
        "en": "AI service is currently unavailable. Please try again later.",
        "vi": "Dịch vụ AI hiện không khả dụng. Vui lòng thử lại sau.",
    },
    ErrorKind.UPSTREAM_RATE_LIMIT: {
        "en": "Too many requests. Please wait a moment before trying again.",
        "vi": "Quá nhiều yêu cầu. Vui lòng đợi một lát trước khi thử lại.",
    },
    ErrorKind.CLIENT_RATE_LIMIT: {
        "en": "You're sending requests too quickly. Please slow down a bit.",
        "vi": "Bạn đang gửi yêu cầu quá nhanh. Vui lòng chậm lại một chút.",
    },
    ErrorKind.AUTH: {
        "en": "Authentication error. Please refresh the page and try again.",
        "vi": "Lỗi xác thực. Vui lòng làm mới trang và thử lại.",
    },
    ErrorKind.TIMEOUT: {
        "en": "Request timed out. Please try again.",
        "vi": "Yêu cầu đã hết thời gian. Vui lòng thử lại.",
    },
    ErrorKind.UNEXPECTED: {
        "en": "Something unexpected happened. Please try again.",
        "vi": "Đã xảy ra lỗi không mong muốn. Vui lòng thử lại.",
    },
    ErrorKind.BUSY: {
        "en": "I'm still answering your previous question. Please wait for it to finish.",
        "vi": "Mình vẫn đang trả lời câu hỏi trước. Vui lòng đợi một chút nhé.",
    },
}

FALLBACK_RESPONSES: Dict[str, list[str]] = {
    "en": [
        "I'm having trouble connecting to my cat brain right now. Can you try again in a moment?",
        "Meow! My AI service seems to be napping. Please try again later.",
        "The cats who power my brain are taking a break. Please try again soon!",
    ],
    "vi": [
        "Mình đang gặp khó khăn kết nối đến bộ não mèo. Bạn có thể thử lại sau một lát được không?",
        "Meow! Dịch vụ AI của mình có vẻ đang ngủ trưa. Vui lòng thử lại sau.",
        "Những chú mèo cung cấp năng lượng cho bộ não mình đang nghỉ ngơi. Hãy thử lại sau nhé!",
    ],
}


def _status_of(error: BaseException) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if status is None:
        status = getattr(error, "http_status", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def detect_error_kind(error: Optional[BaseException]) -> ErrorKind:
    if error is None:
        return ErrorKind.UNEXPECTED
    if isinstance(error, MeowBotError):
        return error.kind

    message = str(error).lower()
    status = _status_of(error)

    if isinstance(error, (NetworkError, httpx.NetworkError, ConnectionError)) or "network" in message:
        return ErrorKind.NETWORK
    if status == 429 or "rate limit" in message:
        return ErrorKind.UPSTREAM_RATE_LIMIT
    if status in (401, 403):
        return ErrorKind.AUTH
    if status in (502, 503) or "unavailable" in message:
        return ErrorKind.SERVICE_UNAVAILABLE
    if isinstance(error, (TimeoutError, httpx.TimeoutException)) or "timeout" in message:
        return ErrorKind.TIMEOUT
    return ErrorKind.UNEXPECTED


def make_error(
    kind: ErrorKind,
    message: str,
    max_attempts: int = 3,
    original: Optional[BaseException] = None,
    http_status: int = 500,
) -> MeowBotError:
    record = ErrorRecord(
        kind=kind,
        message=message,
        retryable=kind not in NON_RETRYABLE,
        attempt=0,
        max_attempts=max_attempts,
    )
    return MeowBotError(record, original=original, http_status=http_status)


def classify(error: BaseException, max_attempts: int = 3) -> MeowBotError:
    """把原始异常转换为 MeowBotError；已分类的异常原样返回。"""

    if isinstance(error, MeowBotError):
        return error
    kind = detect_error_kind(error)
    message = str(getattr(error, "message", "") or error) or "Unknown error occurred"
    return make_error(
        kind,
        message,
        max_attempts=max_attempts,
        original=error,
        http_status=_status_of(error) or 500,
    )


def get_user_message(kind: ErrorKind | str, lang: str = "en", default: Optional[str] = None) -> str:
    try:
        table = ERROR_MESSAGES[ErrorKind(kind)]
    except ValueError:
        return default if default is not None else str(kind)
    return table.get(lang) or table["en"]


def get_fallback_response(lang: str = "en", rng: Optional[random.Random] = None) -> str:
    messages = FALLBACK_RESPONSES.get(lang) or FALLBACK_RESPONSES["en"]
    return (rng or random).choice(messages)
