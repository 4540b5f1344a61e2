"""请求韧性层。

- classifier: 异常分类与多语言提示。
- retry: 指数退避重试执行器。
- gate: 单飞与最小间隔限流。
"""

from meowbot_core.resilience.classifier import classify, get_fallback_response, get_user_message
from meowbot_core.resilience.gate import RequestGate
from meowbot_core.resilience.retry import RetryExecutor

__all__ = [
    "classify",
    "get_fallback_response",
    "get_user_message",
    "RequestGate",
    "RetryExecutor",
]
