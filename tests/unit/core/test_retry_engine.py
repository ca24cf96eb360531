"""Тесты Retrier и классификаторов."""

import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from resilient_http.core.context import background
from resilient_http.core.exceptions import (
    CancelledError,
    ConnectionError,
    HTTPError,
    OptionError,
    TimeoutError,
    TransportError,
)
from resilient_http.core.logging import get_log_fields, reset_log_fields, set_log_fields
from resilient_http.core.retry_engine import (
    DefaultRetryClassifier,
    Retrier,
    RetryClassifier,
    RetryDecision,
    RetryState,
    RunStats,
    SingleAttempt,
    StreamResetRetryClassifier,
    constant_backoff,
    exponential_backoff,
    run_cancellable,
)


class Flaky:
    """work(), падающий заданными ошибками, затем возвращающий value."""

    def __init__(self, errors, value="ok"):
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


def temporary(n=1):
    return [ConnectionError(f"connection reset {i}", "https://example.com") for i in range(n)]


# ==================== Classifiers ====================

class TestDefaultRetryClassifier:

    def test_success(self):
        assert DefaultRetryClassifier().classify(None) is RetryDecision.SUCCEED

    @pytest.mark.parametrize("error", [
        TimeoutError("timeout", "https://example.com", 1.0),
        ConnectionError("refused", "https://example.com"),
        TransportError("flaky", temporary=True),
    ])
    def test_temporary_transport_errors_retry(self, error):
        assert DefaultRetryClassifier().classify(error) is RetryDecision.RETRY

    @pytest.mark.parametrize("error", [
        TransportError("ssl error"),
        HTTPError(500, "500 Internal Server Error"),
        OptionError("bad option"),
        ValueError("other"),
        CancelledError(),
    ])
    def test_everything_else_fails(self, error):
        assert DefaultRetryClassifier().classify(error) is RetryDecision.FAIL


class TestStreamResetRetryClassifier:

    @pytest.mark.parametrize("message", [
        "stream error: stream ID 3; PROTOCOL_ERROR",
        "CONNECT_ERROR from peer",
        "http2: STREAM_CLOSED",
    ])
    def test_stream_reset_errors_retry(self, message):
        error = TransportError(message)
        assert DefaultRetryClassifier().classify(error) is RetryDecision.FAIL
        assert StreamResetRetryClassifier().classify(error) is RetryDecision.RETRY

    def test_custom_patterns(self):
        classifier = StreamResetRetryClassifier(patterns=["GOAWAY"])
        assert classifier.classify(TransportError("got GOAWAY")) is RetryDecision.RETRY
        assert classifier.classify(TransportError("PROTOCOL_ERROR")) is RetryDecision.FAIL

    def test_http_error_with_pattern_still_fails(self):
        error = HTTPError(502, "502 PROTOCOL_ERROR")
        assert StreamResetRetryClassifier().classify(error) is RetryDecision.FAIL

    def test_cancelled_never_retried(self):
        error = CancelledError("cancelled")
        assert StreamResetRetryClassifier().classify(error) is RetryDecision.FAIL


# ==================== Backoff helpers ====================

def test_constant_backoff():
    assert constant_backoff(3, 0.5) == (0.5, 0.5, 0.5)
    assert constant_backoff(0, 1) == ()


def test_exponential_backoff():
    assert exponential_backoff(4, 0.1) == pytest.approx((0.1, 0.2, 0.4, 0.8))


# ==================== Retrier ====================

def test_success_first_attempt():
    retrier = Retrier(constant_backoff(3, 0))
    work = Flaky([])
    assert retrier.run(work) == "ok"
    assert work.calls == 1
    assert retrier.last_run.attempts == 1
    assert retrier.last_run.state is RetryState.SUCCEEDED
    assert retrier.last_run.last_error is None


def test_retries_until_success():
    retrier = Retrier(constant_backoff(3, 0))
    work = Flaky(temporary(2))
    assert retrier.run(work) == "ok"
    assert work.calls == 3


@pytest.mark.parametrize("n", [0, 1, 3])
def test_n_backoffs_give_n_plus_one_attempts(n):
    """Задержки кончились - поднимается ошибка последней попытки."""
    errors = temporary(n + 5)
    retrier = Retrier(constant_backoff(n, 0))
    work = Flaky(errors)

    with pytest.raises(ConnectionError) as exc_info:
        retrier.run(work)

    assert work.calls == n + 1
    assert str(exc_info.value).startswith(f"connection reset {n}")
    assert retrier.last_run.state is RetryState.FAILED
    assert retrier.last_run.attempts == n + 1


def test_fail_decision_stops_immediately():
    retrier = Retrier(constant_backoff(3, 0))
    work = Flaky([HTTPError(404, "404 Not Found")])
    with pytest.raises(HTTPError):
        retrier.run(work)
    assert work.calls == 1


def test_single_attempt():
    work = Flaky(temporary(1))
    with pytest.raises(ConnectionError):
        SingleAttempt().run(work)
    assert work.calls == 1


def test_succeed_decision_for_error_is_not_swallowed():
    class AlwaysSucceed(RetryClassifier):
        def classify(self, error):
            return RetryDecision.SUCCEED

    work = Flaky(temporary(1))
    with pytest.raises(ConnectionError):
        Retrier(constant_backoff(2, 0), AlwaysSucceed()).run(work)
    assert work.calls == 1


def test_on_retry_callback():
    seen = []
    retrier = Retrier((0.0, 0.0))
    retrier.run(Flaky(temporary(2)), on_retry=lambda attempt, error, delay: seen.append((attempt, delay)))
    assert seen == [(1, 0.0), (2, 0.0)]


def test_stats_object_is_filled():
    stats = RunStats()
    Retrier((0,)).run(Flaky(temporary(1)), stats=stats)
    assert stats.attempts == 2
    assert stats.state is RetryState.SUCCEEDED


def test_waits_between_attempts():
    retrier = Retrier((0.05, 0.05))
    start = time.monotonic()
    retrier.run(Flaky(temporary(2)))
    assert time.monotonic() - start >= 0.09


def test_jitter_bounds():
    retrier = Retrier((1.0,) * 50, jitter=0.5, rand=random.Random(42))
    delays = [retrier.delay_for(i) for i in range(50)]
    assert all(0.5 <= d <= 1.5 for d in delays)
    assert len(set(delays)) > 1


def test_no_jitter_exact_delay():
    assert Retrier((0.3,)).delay_for(0) == 0.3


def test_cancel_interrupts_backoff_wait():
    ctx, cancel = background().with_cancel()
    retrier = Retrier((10.0,))
    threading.Timer(0.05, cancel).start()

    start = time.monotonic()
    with pytest.raises(CancelledError):
        retrier.run(Flaky(temporary(5)), ctx)
    assert time.monotonic() - start < 5


def test_cancelled_context_prevents_attempt():
    ctx, cancel = background().with_cancel()
    cancel()
    work = Flaky([])
    with pytest.raises(CancelledError):
        Retrier((0,)).run(work, ctx)
    assert work.calls == 0


def test_cancelled_error_from_work_not_retried():
    work = Flaky([CancelledError("cancelled")])
    with pytest.raises(CancelledError):
        Retrier((0, 0)).run(work)
    assert work.calls == 1


@pytest.mark.asyncio
async def test_run_async_retries():
    retrier = Retrier((0, 0))
    calls = []

    async def work():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("reset")
        return "done"

    assert await retrier.run_async(work) == "done"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_run_async_cancel_during_wait():
    ctx, cancel = background().with_cancel()

    async def work():
        raise ConnectionError("reset")

    threading.Timer(0.05, cancel).start()
    start = time.monotonic()
    with pytest.raises(CancelledError):
        await Retrier((10.0,)).run_async(work, ctx)
    assert time.monotonic() - start < 5


def test_result_finished_after_cancel_is_dropped():
    ctx, cancel = background().with_cancel()

    def work():
        cancel()
        return "late"

    retrier = Retrier(())
    with pytest.raises(CancelledError):
        retrier.run(work, ctx)
    assert retrier.last_run.state is RetryState.FAILED


@pytest.mark.asyncio
async def test_run_async_result_after_cancel_is_dropped():
    ctx, cancel = background().with_cancel()

    async def work():
        cancel()
        return "late"

    with pytest.raises(CancelledError):
        await Retrier(()).run_async(work, ctx)


class TestRunCancellable:

    @pytest.fixture
    def executor(self):
        executor = ThreadPoolExecutor(max_workers=2)
        yield executor
        executor.shutdown(wait=False)

    def test_returns_result(self, executor):
        ctx, _ = background().with_cancel()
        assert run_cancellable(ctx, executor, lambda: "done") == "done"

    def test_propagates_error(self, executor):
        ctx, _ = background().with_cancel()

        def work():
            raise ConnectionError("reset")

        with pytest.raises(ConnectionError, match="reset"):
            run_cancellable(ctx, executor, work)

    def test_cancel_returns_before_work_finishes(self, executor):
        ctx, cancel = background().with_cancel()
        release = threading.Event()
        threading.Timer(0.05, cancel).start()

        start = time.monotonic()
        with pytest.raises(CancelledError, match="cancelled"):
            run_cancellable(ctx, executor, lambda: release.wait(5))
        assert time.monotonic() - start < 2
        release.set()

    def test_deadline(self, executor):
        ctx = background().with_timeout(0.05)
        release = threading.Event()

        with pytest.raises(CancelledError, match="deadline exceeded"):
            run_cancellable(ctx, executor, lambda: release.wait(5))
        release.set()

    def test_work_sees_context_variables(self, executor):
        ctx, _ = background().with_cancel()
        token = set_log_fields({"request_id": "r-1"})
        try:
            assert run_cancellable(ctx, executor, get_log_fields) == {"request_id": "r-1"}
        finally:
            reset_log_fields(token)

    def test_cancelled_context_submits_nothing(self, executor):
        ctx, cancel = background().with_cancel()
        cancel()
        calls = []
        with pytest.raises(CancelledError):
            run_cancellable(ctx, executor, lambda: calls.append(1))
        assert calls == []
