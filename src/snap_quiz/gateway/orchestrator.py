"""Single-lane request orchestration with spacing and bounded retries.

Every remote call goes through :meth:`RequestOrchestrator.submit`. Jobs are
placed on a FIFO ``asyncio.Queue`` that a single worker task drains, so at
most one dispatch is in flight and dispatch order equals submission order.

Before each dispatch, retries included, the worker waits until
``min_interval`` seconds have passed since the previous dispatch. Failures
classified ``SERVER_TRANSIENT`` or ``UNKNOWN`` are retried up to
``max_retries`` times with a doubling backoff; every other category fails the
job at once. A job's outcome never stops the worker from taking the next one.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from .classifier import classify_failure
from .errors import (
    FailureCategory,
    GenerationError,
    UnknownGenerationError,
    error_for_category,
)
from .health import RequestRecord

__all__ = ["RequestOrchestrator"]

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[Any]]
Operation = Callable[[], Awaitable[T]]

DEFAULT_MIN_INTERVAL = 4.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_BACKOFF = 2.0


@dataclass
class _Job(Generic[T]):
    operation: Operation[T]
    future: "asyncio.Future[T]"
    label: str


class RequestOrchestrator:
    """Serialize remote calls through one lane.

    Args:
        record: Shared request record updated around every dispatch.
        min_interval: Minimum seconds between two dispatches.
        max_retries: Retries allowed after the first attempt.
        initial_backoff: Delay before the first retry; doubles afterwards.
        clock: Wall-clock source in seconds.
        sleep: Awaitable sleep used for spacing and backoff.
    """

    def __init__(
        self,
        *,
        record: Optional[RequestRecord] = None,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
        clock: Clock = time.time,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.record = record if record is not None else RequestRecord()
        self.min_interval = min_interval
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self._clock = clock
        self._sleep = sleep
        self._last_dispatch_at: Optional[float] = None
        self._queue: Optional[asyncio.Queue[_Job[Any]]] = None
        self._worker: Optional[asyncio.Task[None]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._closed = False

    @property
    def last_dispatch_at(self) -> Optional[float]:
        return self._last_dispatch_at

    @property
    def pending(self) -> int:
        """Jobs waiting behind the one currently holding the lane."""

        return self._queue.qsize() if self._queue is not None else 0

    async def submit(self, operation: Operation[T], *, label: str = "request") -> T:
        """Queue ``operation`` and wait for its final outcome.

        ``operation`` performs one remote attempt per call and may be invoked
        again by the retry policy. Failures surface as
        :class:`~snap_quiz.gateway.errors.GenerationError` subclasses.
        """

        queue = self._ensure_worker()
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        await queue.put(_Job(operation, future, label))
        logger.debug(
            "Queued request",
            extra={"label": label, "pending": queue.qsize()},
        )
        return await future

    async def aclose(self) -> None:
        """Stop the worker and fail every job it has not finished.

        Waiting callers receive :class:`UnknownGenerationError`; a call that
        already reached the remote service is abandoned, not awaited.
        """

        self._closed = True
        worker, queue = self._worker, self._queue
        self._worker = None
        if queue is not None:
            while not queue.empty():
                _abandon(queue.get_nowait(), "before it was sent")
                queue.task_done()
        if worker is not None and not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass

    def _ensure_worker(self) -> "asyncio.Queue[_Job[Any]]":
        if self._closed:
            raise UnknownGenerationError("The request lane is closed.")
        loop = asyncio.get_running_loop()
        if (
            self._worker is None
            or self._worker.done()
            or self._loop is not loop
            or self._queue is None
        ):
            self._queue = asyncio.Queue()
            self._loop = loop
            self._worker = loop.create_task(self._drain(self._queue))
        return self._queue

    async def _drain(self, queue: "asyncio.Queue[_Job[Any]]") -> None:
        while True:
            job = await queue.get()
            try:
                if job.future.cancelled():
                    logger.debug(
                        "Skipping abandoned request",
                        extra={"label": job.label},
                    )
                    continue
                try:
                    result = await self._run(job)
                except asyncio.CancelledError:
                    _abandon(job, "while it was in flight")
                    raise
                except Exception as exc:
                    if not job.future.done():
                        job.future.set_exception(exc)
                else:
                    if not job.future.done():
                        job.future.set_result(result)
            finally:
                queue.task_done()

    async def _run(self, job: _Job[T]) -> T:
        attempt = 0
        delay = self.initial_backoff
        while True:
            await self._wait_for_slot()
            attempt += 1
            self._mark_dispatch(job, attempt)
            try:
                try:
                    return await job.operation()
                finally:
                    self.record.in_flight = False
            except Exception as exc:
                category = classify_failure(exc)
                if category is FailureCategory.RATE_LIMITED:
                    self.record.record_rate_limited(self._clock())
                if not (category.retryable and attempt <= self.max_retries):
                    logger.error(
                        "Request failed",
                        extra={
                            "label": job.label,
                            "attempt": attempt,
                            "category": category.value,
                            "error": str(exc)[:200],
                        },
                    )
                    if isinstance(exc, GenerationError):
                        raise
                    message = str(exc) or type(exc).__name__
                    raise error_for_category(category, message) from exc
                logger.warning(
                    "Request failed, retrying",
                    extra={
                        "label": job.label,
                        "attempt": attempt,
                        "category": category.value,
                        "backoff_seconds": delay,
                        "error": str(exc)[:200],
                    },
                )
            await self._sleep(delay)
            delay *= 2

    async def _wait_for_slot(self) -> None:
        if self._last_dispatch_at is None:
            return
        wait = self.min_interval - (self._clock() - self._last_dispatch_at)
        if wait > 0:
            logger.debug("Spacing dispatch", extra={"wait_seconds": wait})
            await self._sleep(wait)

    def _mark_dispatch(self, job: _Job[Any], attempt: int) -> None:
        now = self._clock()
        self._last_dispatch_at = now
        self.record.record_dispatch(now)
        self.record.in_flight = True
        logger.info(
            "Dispatching request",
            extra={"label": job.label, "attempt": attempt},
        )


def _abandon(job: _Job[Any], when: str) -> None:
    if not job.future.done():
        message = f"Request '{job.label}' dropped {when}; the lane closed."
        job.future.set_exception(UnknownGenerationError(message))
    logger.info("Dropped request on close", extra={"label": job.label})
