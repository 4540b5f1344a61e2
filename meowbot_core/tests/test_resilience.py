import asyncio

import httpx
import pytest

from meowbot_core.domain.exceptions import (
    ApiError,
    ErrorKind,
    MeowBotError,
    NetworkError,
    RateLimitError,
)
from meowbot_core.resilience.classifier import (
    FALLBACK_RESPONSES,
    classify,
    get_fallback_response,
    get_user_message,
    make_error,
)
from meowbot_core.resilience.gate import RequestGate
from meowbot_core.resilience.retry import RetryExecutor


class FakeSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class Clock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


# ---- classifier ----


@pytest.mark.parametrize(
    "error, kind",
    [
        (NetworkError(code="NETWORK_ERROR", message="dns failed"), ErrorKind.NETWORK),
        (httpx.ConnectError("connection refused"), ErrorKind.NETWORK),
        (RuntimeError("Network is down"), ErrorKind.NETWORK),
        (RateLimitError(code="RATE_LIMIT", message="slow down", http_status=429), ErrorKind.UPSTREAM_RATE_LIMIT),
        (RuntimeError("Rate limit exceeded"), ErrorKind.UPSTREAM_RATE_LIMIT),
        (ApiError(code="API_ERROR", message="bad key", http_status=401), ErrorKind.AUTH),
        (ApiError(code="API_ERROR", message="forbidden", http_status=403), ErrorKind.AUTH),
        (ApiError(code="API_ERROR", message="oops", http_status=503), ErrorKind.SERVICE_UNAVAILABLE),
        (ApiError(code="API_ERROR", message="gateway", http_status=502), ErrorKind.SERVICE_UNAVAILABLE),
        (RuntimeError("model unavailable"), ErrorKind.SERVICE_UNAVAILABLE),
        (httpx.ReadTimeout("read timed out"), ErrorKind.TIMEOUT),
        (TimeoutError(), ErrorKind.TIMEOUT),
        (RuntimeError("upstream timeout"), ErrorKind.TIMEOUT),
        (ValueError("boom"), ErrorKind.UNEXPECTED),
    ],
)
def test_classify_kinds(error, kind):
    assert classify(error).kind is kind


def test_classify_first_match_wins():
    assert classify(RuntimeError("network timeout")).kind is ErrorKind.NETWORK
    # 429 优先于消息里的 unavailable
    err = ApiError(code="API_ERROR", message="unavailable", http_status=429)
    assert classify(err).kind is ErrorKind.UPSTREAM_RATE_LIMIT


def test_auth_and_busy_are_terminal():
    for kind in ErrorKind:
        err = make_error(kind, "x")
        assert err.retryable is (kind not in (ErrorKind.AUTH, ErrorKind.BUSY))
    assert classify(ApiError(code="API_ERROR", message="no", http_status=401)).retryable is False


def test_classify_passes_through_classified_errors():
    err = make_error(ErrorKind.TIMEOUT, "late")
    assert classify(err) is err


def test_next_attempt_returns_new_record():
    err = classify(RuntimeError("network"), max_attempts=5)
    bumped = err.next_attempt()
    assert err.attempt == 0
    assert bumped.attempt == 1
    assert bumped.max_attempts == 5
    assert bumped.record is not err.record
    assert bumped.kind is err.kind


def test_user_messages_are_localized():
    assert get_user_message(ErrorKind.NETWORK, "vi").startswith("Lỗi kết nối mạng")
    assert get_user_message(ErrorKind.NETWORK, "en").startswith("Network connection issue")
    # 不支持的语言回退到英文
    assert get_user_message(ErrorKind.TIMEOUT, "fr") == get_user_message(ErrorKind.TIMEOUT, "en")
    assert get_user_message("mystery", "en", default="raw text") == "raw text"
    assert make_error(ErrorKind.AUTH, "x").user_message("vi").startswith("Lỗi xác thực")


def test_fallback_response_is_localized():
    assert get_fallback_response("vi") in FALLBACK_RESPONSES["vi"]
    assert get_fallback_response("ja") in FALLBACK_RESPONSES["en"]


# ---- retry ----


def test_retry_succeeds_on_third_attempt_with_geometric_delay():
    sleep = FakeSleep()
    calls = {"n": 0}

    async def op():
        calls["n"] += 1
        if calls["n"] < 3:
            raise ApiError(code="API_ERROR", message="busy upstream", http_status=503)
        return "ok"

    executor = RetryExecutor(max_retries=3, initial_delay=0.5, sleep=sleep)
    assert asyncio.run(executor.execute(op)) == "ok"
    assert calls["n"] == 3
    assert sleep.delays == [0.5, 1.0]
    assert sum(sleep.delays) == pytest.approx(3 * 0.5)


def test_retry_does_not_retry_auth():
    sleep = FakeSleep()
    calls = {"n": 0}

    async def op():
        calls["n"] += 1
        raise ApiError(code="API_ERROR", message="bad key", http_status=401)

    with pytest.raises(MeowBotError) as ei:
        asyncio.run(RetryExecutor(max_retries=3, initial_delay=1.0, sleep=sleep).execute(op))
    assert ei.value.kind is ErrorKind.AUTH
    assert calls["n"] == 1
    assert sleep.delays == []


def test_retry_gives_up_after_max_retries():
    sleep = FakeSleep()
    calls = {"n": 0}

    async def op():
        calls["n"] += 1
        raise RuntimeError("service unavailable")

    with pytest.raises(MeowBotError) as ei:
        asyncio.run(RetryExecutor(max_retries=2, initial_delay=1.0, sleep=sleep).execute(op))
    assert calls["n"] == 3
    assert sleep.delays == [1.0, 2.0]
    assert ei.value.kind is ErrorKind.SERVICE_UNAVAILABLE
    assert ei.value.attempt == 2
    assert isinstance(ei.value.original, RuntimeError)


# ---- gate ----


def test_gate_rejects_while_in_flight():
    clock = Clock()
    gate = RequestGate(min_interval=1.0, clock=clock)
    gate.acquire()
    assert gate.in_flight

    clock.now += 5
    with pytest.raises(MeowBotError) as ei:
        gate.acquire()
    assert ei.value.kind is ErrorKind.BUSY
    assert ei.value.retryable is False

    gate.release()
    assert not gate.in_flight
    assert gate.try_acquire() is True


def test_gate_rate_limit_does_not_advance_timer():
    clock = Clock(100.0)
    gate = RequestGate(min_interval=1.0, clock=clock)
    gate.acquire()
    gate.release()

    clock.now = 100.5
    with pytest.raises(MeowBotError) as ei:
        gate.acquire()
    assert ei.value.kind is ErrorKind.CLIENT_RATE_LIMIT
    assert ei.value.retryable is True
    assert gate.last_request_time == 100.0
    assert not gate.in_flight

    clock.now = 100.9
    assert gate.try_acquire() is False
    assert gate.last_request_time == 100.0

    clock.now = 101.0
    assert gate.try_acquire() is True
    assert gate.last_request_time == 101.0


def test_retry_does_not_swallow_cancellation():
    sleep = FakeSleep()
    calls = {"n": 0}

    async def op():
        calls["n"] += 1
        raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(RetryExecutor(max_retries=3, initial_delay=1.0, sleep=sleep).execute(op))
    assert calls["n"] == 1
    assert sleep.delays == []


def test_retry_with_zero_retries_raises_after_first_failure():
    sleep = FakeSleep()

    async def op():
        raise RuntimeError("network down")

    with pytest.raises(MeowBotError) as ei:
        asyncio.run(RetryExecutor(max_retries=0, initial_delay=1.0, sleep=sleep).execute(op))
    assert ei.value.kind is ErrorKind.NETWORK
    assert ei.value.attempt == 0
    assert sleep.delays == []
