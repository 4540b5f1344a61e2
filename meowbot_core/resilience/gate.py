import time
from typing import Callable, Optional

from meowbot_core.domain.exceptions import ErrorKind, MeowBotError
from meowbot_core.resilience.classifier import make_error


class RequestGate:
    """单飞 + 最小请求间隔。

    - 已有请求在进行中：拒绝为 busy（不可重试，调用方应等待）。
    - 距上次被接受的请求不足 min_interval 秒：拒绝为 client_rate_limit（可重试），
      且不刷新 last_request_time。
    """

    def __init__(self, min_interval: float = 1.0, clock: Callable[[], float] = time.monotonic):
        self.min_interval = min_interval
        self._clock = clock
        self._in_flight = False
        self._last_request_time: Optional[float] = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def last_request_time(self) -> Optional[float]:
        return self._last_request_time

    def acquire(self) -> None:
        if self._in_flight:
            raise make_error(ErrorKind.BUSY, "A request is already in progress", http_status=409)
        now = self._clock()
        if self._last_request_time is not None and now < self._last_request_time + self.min_interval:
            raise make_error(ErrorKind.CLIENT_RATE_LIMIT, "Requests are too frequent", http_status=429)
        self._in_flight = True
        self._last_request_time = now

    def try_acquire(self) -> bool:
        try:
            self.acquire()
        except MeowBotError:
            return False
        return True

    def release(self) -> None:
        self._in_flight = False
