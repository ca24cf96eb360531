"""
Retry engine: классификатор ошибок и цикл попыток.

Включает:
- RetryClassifier (стратегия Succeed/Retry/Fail)
- Retrier - явная state machine цикла попыток с последовательностью задержек
- Хелперы для построения последовательностей задержек
- race_cancel / run_cancellable: ожидание попытки, прерываемое отменой
"""

import asyncio
import contextvars
import random
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Executor
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Sequence, Tuple, TypeVar

from .context import Context, background
from .exceptions import CancelledError, TransportError

T = TypeVar("T")

# Фрагменты ошибок сброса HTTP/2 стрима, которые считаются временными
HTTP2_RETRIABLE_ERRORS: Tuple[str, ...] = (
    "CONNECT_ERROR",
    "PROTOCOL_ERROR",
    "STREAM_CLOSED",
)


class RetryDecision(str, Enum):
    """Решение классификатора."""
    SUCCEED = "succeed"
    RETRY = "retry"
    FAIL = "fail"


class RetryState(str, Enum):
    """Состояния цикла попыток."""
    IDLE = "idle"
    ATTEMPTING = "attempting"
    EVALUATING = "evaluating"
    WAITING = "waiting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# CLASSIFIERS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class RetryClassifier(ABC):
    """
    Стратегия классификации результата попытки.

    Examples:
        >>> class RetryOn503(DefaultRetryClassifier):
        ...     def classify(self, error):
        ...         if isinstance(error, HTTPError) and error.status_code == 503:
        ...             return RetryDecision.RETRY
        ...         return super().classify(error)
    """

    @abstractmethod
    def classify(self, error: Optional[BaseException]) -> RetryDecision:
        """
        Args:
            error: Ошибка попытки или None при успехе

        Returns:
            RetryDecision
        """


class DefaultRetryClassifier(RetryClassifier):
    """
    Классификатор по умолчанию.

    - нет ошибки -> SUCCEED
    - TransportError с temporary=True -> RETRY
    - всё остальное (включая HTTPError) -> FAIL
    """

    def classify(self, error: Optional[BaseException]) -> RetryDecision:
        if error is None:
            return RetryDecision.SUCCEED

        if isinstance(error, CancelledError):
            return RetryDecision.FAIL

        if isinstance(error, TransportError) and error.temporary:
            return RetryDecision.RETRY

        return RetryDecision.FAIL


class StreamResetRetryClassifier(DefaultRetryClassifier):
    """
    Расширенный классификатор: дополнительно ретраит транспортные ошибки,
    в тексте которых встречается один из паттернов сброса стрима.

    Args:
        patterns: Подстроки ошибок, считающиеся временными
    """

    def __init__(self, patterns: Sequence[str] = HTTP2_RETRIABLE_ERRORS):
        self.patterns = tuple(patterns)

    def classify(self, error: Optional[BaseException]) -> RetryDecision:
        decision = super().classify(error)
        if decision is not RetryDecision.FAIL:
            return decision

        if isinstance(error, TransportError):
            text = str(error)
            if any(pattern in text for pattern in self.patterns):
                return RetryDecision.RETRY

        return RetryDecision.FAIL


DEFAULT_RETRY_CLASSIFIER = DefaultRetryClassifier()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# BACKOFF
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def constant_backoff(n: int, delay: float) -> Tuple[float, ...]:
    """
    N одинаковых задержек.

    Example:
        >>> constant_backoff(3, 0.5)
        (0.5, 0.5, 0.5)
    """
    return tuple(float(delay) for _ in range(n))


def exponential_backoff(n: int, initial: float) -> Tuple[float, ...]:
    """
    N задержек, каждая вдвое больше предыдущей.

    Example:
        >>> exponential_backoff(4, 0.1)
        (0.1, 0.2, 0.4, 0.8)
    """
    return tuple(float(initial) * (2 ** i) for i in range(n))


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# RETRIER
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass
class RunStats:
    """Статистика одного запуска Retrier.run."""
    attempts: int = 0
    last_error: Optional[BaseException] = None
    state: RetryState = RetryState.IDLE


RetryCallback = Callable[[int, BaseException, float], None]


class Retrier:
    """
    Цикл попыток с классификацией.

    IDLE -> ATTEMPTING -> SUCCEEDED | EVALUATING
    EVALUATING -> FAILED (FAIL или задержки закончились) | WAITING (RETRY)
    WAITING -> ATTEMPTING

    N задержек дают максимум N+1 попыток. Когда задержки закончились,
    возвращается результат последней попытки независимо от решения
    классификатора.

    Examples:
        >>> retrier = Retrier(exponential_backoff(3, 0.1))
        >>> result = retrier.run(lambda: do_attempt())
        >>> retrier.last_run.attempts
        1
    """

    def __init__(
        self,
        backoffs: Sequence[float],
        classifier: Optional[RetryClassifier] = None,
        jitter: float = 0.0,
        rand: Optional[random.Random] = None,
    ):
        """
        Args:
            backoffs: Задержки между попытками (сек)
            classifier: Классификатор (по умолчанию DefaultRetryClassifier)
            jitter: Доля случайного разброса задержки (0..1)
            rand: Источник случайности (для тестов)
        """
        self.backoffs = tuple(backoffs)
        self.classifier = classifier or DEFAULT_RETRY_CLASSIFIER
        self.jitter = jitter
        self._rand = rand or random.Random()
        self.last_run = RunStats()

    def delay_for(self, retry_index: int) -> float:
        """Задержка перед повтором с индексом retry_index (с учетом jitter)."""
        delay = self.backoffs[retry_index]
        if self.jitter:
            delay *= 1 + self.jitter * (self._rand.random() * 2 - 1)
        return max(delay, 0.0)

    def _evaluate(self, stats: RunStats, error: BaseException, retries: int) -> Optional[float]:
        """
        Решить судьбу ошибочной попытки.

        Returns:
            Задержку перед следующей попыткой или None если нужно остановиться
        """
        stats.state = RetryState.EVALUATING
        decision = self.classifier.classify(error)

        if decision is RetryDecision.SUCCEED:
            # Классификатор счел ошибку успехом, но значения нет - отдаем ошибку
            stats.state = RetryState.FAILED
            return None

        if decision is RetryDecision.FAIL or retries >= len(self.backoffs):
            stats.state = RetryState.FAILED
            return None

        stats.state = RetryState.WAITING
        return self.delay_for(retries)

    def run(
        self,
        work: Callable[[], T],
        ctx: Optional[Context] = None,
        on_retry: Optional[RetryCallback] = None,
        stats: Optional[RunStats] = None,
    ) -> T:
        """
        Выполнить work с повторами.

        Args:
            work: Одна попытка; бросает исключение при неудаче
            ctx: Контекст отмены (ожидание прерывается отменой)
            on_retry: Вызывается перед ожиданием: (номер попытки, ошибка, задержка)
            stats: Куда писать статистику запуска (по умолчанию self.last_run)

        Raises:
            Ошибку последней попытки или CancelledError
        """
        ctx = ctx or background()
        stats = stats if stats is not None else RunStats()
        self.last_run = stats
        retries = 0

        while True:
            ctx.raise_if_done()
            stats.state = RetryState.ATTEMPTING
            stats.attempts += 1
            try:
                result = work()
            except CancelledError:
                stats.state = RetryState.FAILED
                raise
            except Exception as e:
                stats.last_error = e
                delay = self._evaluate(stats, e, retries)
                if delay is None:
                    raise
                if on_retry is not None:
                    on_retry(stats.attempts, e, delay)
                ctx.sleep(delay)
                retries += 1
                continue

            # результат, полученный после отмены, не возвращается
            error = ctx.err()
            if error is not None:
                stats.state = RetryState.FAILED
                raise error

            stats.state = RetryState.SUCCEEDED
            stats.last_error = None
            return result

    async def run_async(
        self,
        work: Callable[[], Awaitable[T]],
        ctx: Optional[Context] = None,
        on_retry: Optional[RetryCallback] = None,
        stats: Optional[RunStats] = None,
    ) -> T:
        """Async-версия run: ожидание через asyncio, прерывается отменой контекста."""
        ctx = ctx or background()
        stats = stats if stats is not None else RunStats()
        self.last_run = stats
        retries = 0

        while True:
            ctx.raise_if_done()
            stats.state = RetryState.ATTEMPTING
            stats.attempts += 1
            try:
                result = await work()
            except CancelledError:
                stats.state = RetryState.FAILED
                raise
            except Exception as e:
                stats.last_error = e
                delay = self._evaluate(stats, e, retries)
                if delay is None:
                    raise
                if on_retry is not None:
                    on_retry(stats.attempts, e, delay)
                await async_sleep(ctx, delay)
                retries += 1
                continue

            # результат, полученный после отмены, не возвращается
            error = ctx.err()
            if error is not None:
                stats.state = RetryState.FAILED
                raise error

            stats.state = RetryState.SUCCEEDED
            stats.last_error = None
            return result


class SingleAttempt(Retrier):
    """Retrier без повторов: ровно одна попытка."""

    def __init__(self):
        super().__init__(backoffs=())


async def async_sleep(ctx: Context, seconds: float) -> None:
    """
    Асинхронное ожидание, прерываемое отменой контекста или дедлайном.

    Raises:
        CancelledError: контекст отменен или дедлайн наступил
    """
    ctx.raise_if_done()
    loop = asyncio.get_running_loop()
    cancelled = loop.create_future()

    def wake() -> None:
        loop.call_soon_threadsafe(_resolve, cancelled)

    unregister = ctx.on_cancel(wake)
    try:
        remaining = ctx.remaining()
        wait = seconds if remaining is None else min(seconds, max(remaining, 0))
        try:
            await asyncio.wait_for(asyncio.shield(cancelled), timeout=wait)
        except asyncio.TimeoutError:
            pass
        ctx.raise_if_done()
    finally:
        unregister()
        if not cancelled.done():
            cancelled.cancel()


def _resolve(future: "asyncio.Future") -> None:
    if not future.done():
        future.set_result(None)


async def race_cancel(ctx: Context, awaitable: Awaitable[T]) -> T:
    """
    Дождаться awaitable, но не дольше отмены контекста или его дедлайна.

    Raises:
        CancelledError: контекст отменен или дедлайн наступил (awaitable отменяется)
    """
    ctx.raise_if_done()
    loop = asyncio.get_running_loop()
    task = asyncio.ensure_future(awaitable)
    cancelled = loop.create_future()

    def wake() -> None:
        loop.call_soon_threadsafe(_resolve, cancelled)

    unregister = ctx.on_cancel(wake)
    try:
        remaining = ctx.remaining()
        wait = None if remaining is None else max(remaining, 0)
        done, _ = await asyncio.wait({task, cancelled}, timeout=wait, return_when=asyncio.FIRST_COMPLETED)
        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        ctx.raise_if_done()
        raise CancelledError("deadline exceeded")
    finally:
        unregister()
        if not task.done():
            task.cancel()
        if not cancelled.done():
            cancelled.cancel()


def run_cancellable(ctx: Context, executor: Executor, work: Callable[[], T]) -> T:
    """
    Выполнить блокирующую работу в executor и ждать ее не дольше отмены
    контекста или его дедлайна.

    Работа видит context variables вызывающего потока. Брошенная работа
    доделывается в фоне, ее результат отбрасывается; чтобы она
    остановилась быстрее, work регистрирует свои ctx.on_cancel.

    Raises:
        CancelledError: контекст отменен или дедлайн наступил
    """
    ctx.raise_if_done()
    future = executor.submit(contextvars.copy_context().run, work)
    woken = threading.Event()
    future.add_done_callback(lambda _: woken.set())
    unregister = ctx.on_cancel(woken.set)
    try:
        remaining = ctx.remaining()
        woken.wait(None if remaining is None else max(remaining, 0))
        if future.done():
            return future.result()
        ctx.raise_if_done()
        raise CancelledError("deadline exceeded")
    finally:
        unregister()
