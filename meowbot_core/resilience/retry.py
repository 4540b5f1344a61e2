"""指数退避重试。

基于 tenacity.AsyncRetrying：第 n 次重试前等待 initial_delay * 2**n 秒
（n 从 0 开始，无抖动）。超过 max_retries 或错误不可重试时抛出分类后的
MeowBotError，其 attempt 记录已经重试过的次数。
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from meowbot_core.infrastructure.logging.logger import logger
from meowbot_core.resilience.classifier import classify

T = TypeVar("T")


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, asyncio.CancelledError):
        return False
    return classify(exc).retryable


class RetryExecutor:
    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self._sleep = sleep

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        attempts = 0
        try:
            async for attempt in self._retrying():
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = classify(exc, max_attempts=self.max_retries)
            # 已分类的错误可能带着外部的 attempt，这里以本地计数为准
            while error.attempt < attempts - 1:
                error = error.next_attempt()
            if error is exc:
                raise
            raise error from exc
        raise RuntimeError("retry loop exited without a result")

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            sleep=self._sleep,
            reraise=True,
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.initial_delay, exp_base=2, min=0),
            retry=retry_if_exception(_is_retryable),
            before_sleep=self._log_retry,
        )

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            f"Retrying after {delay:.2f}s ({retry_state.attempt_number}/{self.max_retries})",
            extra={"extra": {
                "kind": classify(exc).kind.value if exc is not None else None,
                "attempt": retry_state.attempt_number,
            }},
        )
