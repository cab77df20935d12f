import asyncio
import logging
import time
from typing import Callable, Set

from pydantic import ValidationError

from silencecut.domain.errors import QueueConnectionError
from silencecut.domain.models import ExecutionOutcome, JobMessage
from silencecut.domain.ports import Delivery, JobQueue
from silencecut.domain.services.job_executor import JobExecutor

logger = logging.getLogger(__name__)


class FixedWindowRateLimiter:
    """Allow at most ``max_starts`` job starts per fixed window of ``window_seconds``."""

    def __init__(self, max_starts: int, window_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        if max_starts < 1 or window_seconds <= 0:
            raise ValueError("rate limit needs max_starts >= 1 and a positive window")
        self._max = max_starts
        self._window = window_seconds
        self._clock = clock
        self._window_start = clock()
        self._count = 0

    def _roll(self) -> None:
        now = self._clock()
        if now - self._window_start >= self._window:
            self._window_start = now
            self._count = 0

    def delay_until_capacity(self) -> float:
        """Seconds until another start is allowed; 0 when one is allowed now."""
        self._roll()
        if self._count < self._max:
            return 0.0
        return max(0.0, self._window_start + self._window - self._clock())

    def record_start(self) -> None:
        self._roll()
        self._count += 1


class QueueConsumer:
    """
    Pull job messages and run them with bounded concurrency and a start-rate
    ceiling.

    A message is only received once both a concurrency slot and rate budget
    are available, so saturated workers leave deliveries in the queue rather
    than buffering them locally.
    """

    def __init__(
        self,
        queue: JobQueue,
        executor: JobExecutor,
        *,
        concurrency: int = 2,
        rate_limit_max: int = 10,
        rate_limit_window_seconds: float = 60.0,
        max_attempts: int = 3,
        retry_backoff_seconds: float = 5.0,
        poll_interval_seconds: float = 1.0,
        reconnect_backoff_initial_seconds: float = 1.0,
        reconnect_backoff_max_seconds: float = 60.0,
        shutdown_grace_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._queue = queue
        self._executor = executor
        self._concurrency = concurrency
        self._limiter = FixedWindowRateLimiter(rate_limit_max, rate_limit_window_seconds, clock=clock)
        self._max_attempts = max_attempts
        self._retry_backoff = retry_backoff_seconds
        self._poll_interval = poll_interval_seconds
        self._reconnect_initial = reconnect_backoff_initial_seconds
        self._reconnect_max = reconnect_backoff_max_seconds
        self._shutdown_grace = shutdown_grace_seconds
        self._stopping = asyncio.Event()
        self._in_flight: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def stop(self) -> None:
        if not self._stopping.is_set():
            logger.info("Shutdown requested; no new jobs will be pulled")
        self._stopping.set()

    async def _pause(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def run(self) -> None:
        logger.info(
            "Consumer started (concurrency=%d, max_attempts=%d)", self._concurrency, self._max_attempts
        )
        stop_waiter = asyncio.create_task(self._stopping.wait())
        reconnect_delay = self._reconnect_initial
        try:
            while not self._stopping.is_set():
                if len(self._in_flight) >= self._concurrency:
                    await asyncio.wait({*self._in_flight, stop_waiter}, return_when=asyncio.FIRST_COMPLETED)
                    continue

                delay = self._limiter.delay_until_capacity()
                if delay > 0:
                    await self._pause(delay)
                    continue

                try:
                    delivery = await self._queue.receive()
                except QueueConnectionError as exc:
                    logger.warning("Queue connection lost (%s); reconnecting in %.1fs", exc, reconnect_delay)
                    await self._pause(reconnect_delay)
                    reconnect_delay = min(reconnect_delay * 2, self._reconnect_max)
                    try:
                        await self._queue.reconnect()
                    except Exception:  # noqa: BLE001 - next receive retries
                        logger.warning("Queue reconnect failed", exc_info=True)
                    continue
                reconnect_delay = self._reconnect_initial

                if delivery is None:
                    await self._pause(self._poll_interval)
                    continue

                self._limiter.record_start()
                task = asyncio.create_task(self._handle(delivery), name=f"job-{delivery.job_id}")
                self._in_flight.add(task)
                task.add_done_callback(self._in_flight.discard)
        finally:
            stop_waiter.cancel()
            await self._drain()

    async def _drain(self) -> None:
        if not self._in_flight:
            logger.info("Consumer stopped")
            return
        logger.info("Waiting up to %.0fs for %d in-flight jobs", self._shutdown_grace, len(self._in_flight))
        _, pending = await asyncio.wait(set(self._in_flight), timeout=self._shutdown_grace)
        if pending:
            logger.warning(
                "%d jobs still running after the grace period; cancelling them after their current step",
                len(pending),
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Consumer stopped")

    async def _handle(self, delivery: Delivery) -> None:
        try:
            message = JobMessage.model_validate(delivery.payload)
        except ValidationError as exc:
            logger.error("Rejecting malformed message for job %s: %s", delivery.job_id, exc)
            await self._settle(self._queue.reject(delivery, f"invalid payload: {exc}"), delivery)
            return
        if message.job_id != delivery.job_id:
            logger.error("Rejecting message keyed %s carrying job %s", delivery.job_id, message.job_id)
            await self._settle(self._queue.reject(delivery, "job id does not match message key"), delivery)
            return

        final_attempt = delivery.attempt >= self._max_attempts
        try:
            report = await self._executor.execute(message, final_attempt=final_attempt)
        except Exception as exc:  # noqa: BLE001 - top-level guard
            logger.exception("Executor crashed on job %s", delivery.job_id)
            outcome, error = ExecutionOutcome.RETRY, str(exc)
        else:
            outcome, error = report.outcome, report.error

        if outcome is not ExecutionOutcome.RETRY:
            await self._settle(self._queue.ack(delivery), delivery)
        elif final_attempt:
            logger.error("Job %s exhausted %d attempts: %s", delivery.job_id, delivery.attempt, error)
            await self._settle(self._queue.reject(delivery, f"attempts exhausted: {error}"), delivery)
        else:
            backoff = self._retry_backoff * 2 ** (delivery.attempt - 1)
            logger.info("Job %s will be redelivered in %.0fs", delivery.job_id, backoff)
            await self._settle(self._queue.retry(delivery, backoff, error or "transient failure"), delivery)

    async def _settle(self, operation, delivery: Delivery) -> None:
        try:
            await operation
        except Exception:  # noqa: BLE001 - the lease lapses and the queue redelivers
            logger.warning("Could not settle delivery of job %s", delivery.job_id, exc_info=True)
