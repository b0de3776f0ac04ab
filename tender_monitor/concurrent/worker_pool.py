"""
Bounded-concurrency worker pool with per-task timeout and fixed-delay retry.
"""

import queue
import threading
import time
from concurrent.futures import Future, TimeoutError as FuturesTimeoutError
from typing import Any, Callable, Iterable, List, Optional, Dict

from tender_monitor.utils.logging import get_business_logger
from tender_monitor.utils.errors import TaskTimeoutError, TaskCancelledError
from .cancellation import CancellationToken
from .models import WorkerPoolConfig, WorkItem, TaskOutcome, TaskStatus
from .thread_safe import ThreadSafeCounter, HighWaterMark


logger = get_business_logger('worker_pool')

SLOT_POLL_SECONDS = 0.05

ProgressCallback = Callable[[int, int, TaskOutcome], None]


class _ProgressTracker:
    """Collects final outcomes and reports them once each, in completion order."""

    def __init__(self, total: int, on_progress: Optional[ProgressCallback]):
        self.total = total
        self.results: List[Any] = [None] * total
        self.outcomes: List[Optional[TaskOutcome]] = [None] * total
        self._on_progress = on_progress
        self._completed = 0
        self._lock = threading.Lock()

    def record(self, outcome: TaskOutcome) -> None:
        with self._lock:
            self.outcomes[outcome.index] = outcome
            if outcome.success:
                self.results[outcome.index] = outcome.data
            self._completed += 1

            if self._on_progress is None:
                return
            try:
                self._on_progress(self._completed, self.total, outcome)
            except Exception as e:
                logger.error(f"Progress callback raised for item {outcome.index}: {e}")


class PoolWorker(threading.Thread):
    """Worker thread draining the shared FIFO queue of one batch."""

    def __init__(
        self,
        worker_id: str,
        pool: "WorkerPool",
        work_queue: "queue.Queue[WorkItem]",
        executor: Callable[..., Any],
        tracker: _ProgressTracker,
        cancel_token: Optional[CancellationToken],
        pass_token: bool = False
    ):
        super().__init__(name=f"PoolWorker-{worker_id}", daemon=True)
        self.worker_id = worker_id
        self.pool = pool
        self.work_queue = work_queue
        self.executor = executor
        self.tracker = tracker
        self.cancel_token = cancel_token
        self.pass_token = pass_token
        self.processed = 0

    def run(self) -> None:
        while True:
            try:
                item = self.work_queue.get_nowait()
            except queue.Empty:
                break

            self.pool._queued.decrement()
            try:
                outcome = self.pool._execute_with_retry(item, self.executor, self.cancel_token, self.pass_token)
            except Exception as e:
                # Never lose an item: report unexpected pool errors as failures
                logger.error(f"Worker {self.worker_id} crashed on item {item.index}: {e}")
                outcome = TaskOutcome(index=item.index, success=False, error=e, attempts=item.attempts)

            if outcome.success:
                self.pool._completed.increment()
            else:
                self.pool._failed.increment()

            self.tracker.record(outcome)
            self.processed += 1
            self.work_queue.task_done()

        logger.debug(f"Worker {self.worker_id} finished after {self.processed} items")


class WorkerPool:
    """
    Runs a batch of work items with bounded concurrency.

    At most ``max_concurrent`` executor calls run at once. Each attempt races
    ``task_timeout``; a failed attempt is retried up to ``retry_attempts``
    times with a fixed ``retry_delay``. Results come back in input order, and
    a failing item never aborts the batch.

    A timed-out attempt keeps its concurrency slot until the underlying call
    returns, so a retry or the next item waits for it. With ``pass_token``
    the executor also receives a per-attempt cancellation token, which is
    cancelled on timeout so the abandoned call can unwind.
    """

    def __init__(self, config: Optional[WorkerPoolConfig] = None):
        """
        Initialize worker pool.

        Args:
            config: Pool configuration, defaults to CPU-count concurrency
        """
        self.config = config or WorkerPoolConfig()
        self._max_concurrent = self.config.max_concurrent
        self._queued = ThreadSafeCounter()
        self._completed = ThreadSafeCounter()
        self._failed = ThreadSafeCounter()
        self._in_flight = HighWaterMark()
        self._run_counter = ThreadSafeCounter()
        self._slots = threading.BoundedSemaphore(self._max_concurrent)

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    def set_max_concurrent(self, value: int) -> None:
        """Change the concurrency limit for subsequent batches (minimum 1)."""
        self._max_concurrent = max(1, int(value))
        self._slots = threading.BoundedSemaphore(self._max_concurrent)
        logger.info(f"Worker pool concurrency set to {self._max_concurrent}")

    def run_parallel(
        self,
        items: Iterable[Any],
        executor: Callable[..., Any],
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
        pass_token: bool = False
    ) -> List[Any]:
        """
        Execute ``executor`` over every item.

        Args:
            items: Input payloads
            executor: Callable invoked with one payload; raising means failure
            on_progress: Called once per item as (completed, total, outcome)
            cancel_token: When cancelled, queued items and pending retries are skipped
            pass_token: Call ``executor(payload, attempt_token)`` instead of ``executor(payload)``

        Returns:
            Results in input order; ``None`` where the item finally failed
        """
        payloads = list(items)
        total = len(payloads)
        if total == 0:
            return []

        run_id = self._run_counter.increment()
        tracker = _ProgressTracker(total, on_progress)
        work_queue: "queue.Queue[WorkItem]" = queue.Queue()
        for index, payload in enumerate(payloads):
            work_queue.put(WorkItem(index=index, payload=payload))
        self._queued.increment(total)

        worker_count = min(self._max_concurrent, total)
        logger.debug(f"Run {run_id}: {total} items across {worker_count} workers")

        workers = [
            PoolWorker(f"{run_id}-{i}", self, work_queue, executor, tracker, cancel_token, pass_token)
            for i in range(worker_count)
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        failed = sum(1 for outcome in tracker.outcomes if outcome is not None and not outcome.success)
        logger.info(f"Run {run_id} finished: {total - failed}/{total} succeeded")
        return tracker.results

    def run_in_batches(
        self,
        items: Iterable[Any],
        batch_size: int,
        executor: Callable[[Any], Any],
        on_batch_complete: Optional[Callable[[int, List[Any]], None]] = None,
        cancel_token: Optional[CancellationToken] = None
    ) -> List[Any]:
        """
        Run items in consecutive batches with a pause between batches.

        Args:
            items: Input payloads
            batch_size: Number of items per batch (minimum 1)
            executor: Callable invoked with one payload
            on_batch_complete: Called with (batch_index, batch_results)
            cancel_token: Stops scheduling further batches once cancelled

        Returns:
            Results of all executed batches, in input order
        """
        payloads = list(items)
        batch_size = max(1, batch_size)
        results: List[Any] = []

        for batch_index, start in enumerate(range(0, len(payloads), batch_size)):
            if cancel_token is not None and cancel_token.is_cancelled():
                logger.info(f"Batch run cancelled before batch {batch_index}")
                break

            batch = payloads[start:start + batch_size]
            batch_results = self.run_parallel(batch, executor, cancel_token=cancel_token)
            results.extend(batch_results)

            if on_batch_complete is not None:
                on_batch_complete(batch_index, batch_results)

            if start + batch_size < len(payloads) and self.config.batch_delay > 0:
                time.sleep(self.config.batch_delay)

        return results

    def get_stats(self) -> Dict[str, int]:
        """Get pool statistics."""
        return {
            "max_concurrent": self._max_concurrent,
            "active_count": self._in_flight.current,
            "peak_active": self._in_flight.peak,
            "queued_tasks": self._queued.get_value(),
            "completed_tasks": self._completed.get_value(),
            "failed_tasks": self._failed.get_value(),
        }

    def _execute_with_retry(
        self,
        item: WorkItem,
        executor: Callable[..., Any],
        cancel_token: Optional[CancellationToken],
        pass_token: bool = False
    ) -> TaskOutcome:
        start_time = time.monotonic()
        max_attempts = self.config.retry_attempts + 1
        last_error: Optional[BaseException] = None

        for attempt in range(1, max_attempts + 1):
            if cancel_token is not None and cancel_token.is_cancelled():
                last_error = last_error or TaskCancelledError(
                    "Run cancelled before item was attempted", {"index": item.index}
                )
                break

            item.attempts = attempt
            item.status = TaskStatus.RUNNING
            try:
                data = self._call_with_timeout(executor, item.payload, cancel_token, pass_token)
            except TaskCancelledError as e:
                last_error = e
                break
            except Exception as e:
                last_error = e
                logger.warning(f"Item {item.index} attempt {attempt}/{max_attempts} failed: {e}")
            else:
                item.status = TaskStatus.COMPLETED
                return TaskOutcome(
                    index=item.index,
                    success=True,
                    data=data,
                    attempts=attempt,
                    execution_time=time.monotonic() - start_time
                )

            if attempt < max_attempts:
                item.status = TaskStatus.RETRYING
                if cancel_token is not None:
                    if cancel_token.wait(self.config.retry_delay):
                        break
                elif self.config.retry_delay > 0:
                    time.sleep(self.config.retry_delay)

        item.status = TaskStatus.FAILED
        return TaskOutcome(
            index=item.index,
            success=False,
            error=last_error,
            attempts=item.attempts,
            execution_time=time.monotonic() - start_time
        )

    def _acquire_slot(self, cancel_token: Optional[CancellationToken]) -> threading.BoundedSemaphore:
        """
        Wait for a free concurrency slot.

        Raises:
            TaskCancelledError: If the run is cancelled while waiting
        """
        slots = self._slots
        while not slots.acquire(timeout=SLOT_POLL_SECONDS):
            if cancel_token is not None and cancel_token.is_cancelled():
                raise TaskCancelledError("Run cancelled while waiting for a worker slot")
        return slots

    def _call_with_timeout(
        self,
        executor: Callable[..., Any],
        payload: Any,
        cancel_token: Optional[CancellationToken] = None,
        pass_token: bool = False
    ) -> Any:
        """Run one attempt on a helper thread and wait at most ``task_timeout``."""
        future: Future = Future()
        attempt_token = cancel_token.child() if cancel_token is not None else CancellationToken()
        slots = self._acquire_slot(cancel_token)

        def target():
            # The slot is held until the call returns, even after a timeout
            self._in_flight.enter()
            try:
                if pass_token:
                    result = executor(payload, attempt_token)
                else:
                    result = executor(payload)
            except Exception as e:
                future.set_exception(e)
            else:
                future.set_result(result)
            finally:
                self._in_flight.leave()
                slots.release()

        future.set_running_or_notify_cancel()
        try:
            threading.Thread(target=target, name="PoolTask", daemon=True).start()
        except RuntimeError:
            slots.release()
            raise

        try:
            return future.result(timeout=self.config.task_timeout)
        except FuturesTimeoutError:
            if future.done():
                raise
            attempt_token.cancel("attempt timed out")
            raise TaskTimeoutError(
                f"Task exceeded {self.config.task_timeout}s timeout",
                {"timeout": self.config.task_timeout}
            )
