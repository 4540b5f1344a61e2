"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层或 UI 层做统一捕获与用户提示。

流式调用链路上的错误最终都会被归一为 MeowBotError，
它携带一个不可变的 ErrorRecord（错误类型、是否可重试、第几次尝试）。
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 trace_id、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、DNS 失败等。"""


class ApiError(BusinessError):
    """第三方 API 返回非 2xx/429 错误时抛出。"""


class RateLimitError(BusinessError):
    """Provider 限流错误，由 RetryExecutor 负责重试/退避。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class ErrorKind(str, Enum):
    NETWORK = "network"
    SERVICE_UNAVAILABLE = "service_unavailable"
    UPSTREAM_RATE_LIMIT = "upstream_rate_limit"
    CLIENT_RATE_LIMIT = "client_rate_limit"
    AUTH = "auth"
    TIMEOUT = "timeout"
    UNEXPECTED = "unexpected"
    BUSY = "busy"


@dataclass(frozen=True)
class ErrorRecord:
    """一次失败的分类结果（不可变）。"""

    kind: ErrorKind
    message: str
    retryable: bool
    attempt: int = 0
    max_attempts: int = 3

    def next_attempt(self) -> "ErrorRecord":
        return replace(self, attempt=self.attempt + 1)


class MeowBotError(BusinessError):
    """分类后的流式调用错误。

    kind/retryable/attempt 均来自内部的 ErrorRecord；需要“重试次数 + 1”时
    通过 next_attempt() 得到一个新异常，原异常保持不变。
    """

    def __init__(
        self,
        record: ErrorRecord,
        original: Optional[BaseException] = None,
        http_status: int = 500,
    ):
        super().__init__(
            code=record.kind.value.upper(),
            message=record.message,
            http_status=http_status,
        )
        self.record = record
        self.original = original

    @property
    def kind(self) -> ErrorKind:
        return self.record.kind

    @property
    def retryable(self) -> bool:
        return self.record.retryable

    @property
    def attempt(self) -> int:
        return self.record.attempt

    @property
    def max_attempts(self) -> int:
        return self.record.max_attempts

    def next_attempt(self) -> "MeowBotError":
        return MeowBotError(self.record.next_attempt(), original=self.original, http_status=self.http_status)

    def user_message(self, lang: str = "en") -> str:
        """按语言返回面向用户的提示文本。"""

        # 延迟导入，避免 domain 依赖 resilience 形成循环
        from meowbot_core.resilience.classifier import get_user_message

        return get_user_message(self.kind, lang, default=self.message)
