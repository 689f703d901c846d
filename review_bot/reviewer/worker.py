"""Queue worker for review jobs.

Runs a fixed number of consumer tasks over the pull request queue. Each
execution is bounded by a timeout; failed executions are retried with
exponential backoff until the retry budget is spent.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Protocol

from ..github.api import GitHubAPIError
from .queue import JobHandle, JobIdentity, PullRequestQueue
from .runner import JobOutcome

logger = logging.getLogger(__name__)


class JobRunnerProtocol(Protocol):
    """Protocol for job execution implementations."""

    async def run(self, identity: JobIdentity) -> JobOutcome:
        """
        Execute one job.

        Raises:
            Exception: If the execution fails before producing an outcome.
        """
        ...


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 3
    initial_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0
    backoff_multiplier: float = 2.0

    def get_delay(self, attempt: int) -> float:
        """
        Calculate the delay for a given retry attempt.

        Uses exponential backoff with a maximum delay cap.

        Args:
            attempt: The retry attempt number (0-indexed).

        Returns:
            The delay in seconds before the next retry.
        """
        delay = self.initial_delay_seconds * (self.backoff_multiplier**attempt)
        return min(delay, self.max_delay_seconds)


def is_transient_error(error: Exception) -> bool:
    """
    Whether a failed attempt is worth retrying.

    GitHub client errors other than rate limiting (404 for an issue that is
    not a pull request, 401, 403, 422) give the same answer on every attempt.
    Everything else, including network errors and 5xx responses, is retried.
    """
    if isinstance(error, GitHubAPIError) and error.status_code is not None:
        return not (400 <= error.status_code < 500) or error.status_code == 429
    return True


class QueueWorker:
    """
    Background worker that processes review jobs from the queue.

    The queue hands out at most one handle per identity at a time, so
    executions for one pull request never overlap while different pull
    requests run in parallel up to ``concurrency``.
    """

    def __init__(
        self,
        queue: PullRequestQueue,
        runner: JobRunnerProtocol,
        retry_config: RetryConfig | None = None,
        concurrency: int = 4,
        job_timeout_seconds: float = 300.0,
    ) -> None:
        """
        Initialize the queue worker.

        Args:
            queue: The pull request queue to consume from.
            runner: Executes a single job.
            retry_config: Configuration for retry behavior.
            concurrency: Number of jobs processed in parallel.
            job_timeout_seconds: Upper bound on a single execution.
        """
        if concurrency < 1:
            raise ValueError("Worker concurrency must be at least 1")

        self._queue = queue
        self._runner = runner
        self._retry_config = retry_config or RetryConfig()
        self._concurrency = concurrency
        self._job_timeout = job_timeout_seconds
        self._running = False
        self._tasks: list[asyncio.Task[None]] = []
        self._retry_timers: set[asyncio.Task[None]] = set()

    @property
    def is_running(self) -> bool:
        """Check if the worker is currently running."""
        return self._running

    async def start(self) -> None:
        """Start the consumer tasks."""
        if self._running:
            logger.warning("Worker is already running")
            return

        self._running = True
        self._tasks = [
            asyncio.create_task(self._run_loop(), name=f"review-worker-{i}")
            for i in range(self._concurrency)
        ]
        logger.info(f"Queue worker started with {self._concurrency} consumer(s)")

    async def stop(self) -> None:
        """Stop the consumer tasks and drop any scheduled retries."""
        if not self._running:
            return

        self._running = False

        for task in [*self._tasks, *self._retry_timers]:
            task.cancel()
        for task in [*self._tasks, *self._retry_timers]:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        self._tasks = []
        self._retry_timers.clear()
        logger.info("Queue worker stopped")

    async def _run_loop(self) -> None:
        """Consume handles until stopped."""
        while self._running:
            handle = await self._queue.dequeue()
            await self.process_job(handle)

    async def process_job(self, handle: JobHandle) -> None:
        """
        Run one attempt of a job and route it to success, retry or failure.

        Args:
            handle: The dequeued job handle.
        """
        self._queue.mark_running(handle)
        logger.info(f"Processing job {handle.job_id} (attempt {handle.attempts})")

        error_message: str | None = None
        retryable = True
        try:
            outcome = await asyncio.wait_for(
                self._runner.run(handle.identity), timeout=self._job_timeout
            )
        except asyncio.CancelledError:
            # Release the identity so its follow-up runs after a restart
            self._queue.mark_failed(handle, "Worker stopped during execution")
            logger.warning(f"Job {handle.job_id} cancelled by worker shutdown")
            raise
        except asyncio.TimeoutError:
            error_message = f"Timed out after {self._job_timeout:.0f}s"
        except Exception as e:
            logger.exception(f"Job {handle.job_id} raised")
            error_message = f"{type(e).__name__}: {e}"
            retryable = is_transient_error(e)
        else:
            if outcome.failed:
                error_message = "; ".join(outcome.errors)

        if error_message is None:
            self._queue.mark_succeeded(handle)
            logger.info(f"Job {handle.job_id} completed successfully")
            return

        if not retryable:
            self._queue.mark_failed(handle, error_message)
            logger.error(f"Job {handle.job_id} failed with non-transient error: {error_message}")
            return

        self._handle_failure(handle, error_message)

    def _handle_failure(self, handle: JobHandle, error_message: str) -> None:
        retry_index = handle.attempts - 1

        if retry_index < self._retry_config.max_retries:
            delay = self._retry_config.get_delay(retry_index)
            self._queue.mark_retry_pending(handle, error_message)
            logger.warning(
                f"Job {handle.job_id} failed (attempt {handle.attempts}/"
                f"{self._retry_config.max_retries + 1}): {error_message}. "
                f"Retrying in {delay:.1f}s"
            )
            timer = asyncio.create_task(self._requeue_after(handle, delay))
            self._retry_timers.add(timer)
            timer.add_done_callback(self._retry_timers.discard)
            return

        self._queue.mark_failed(handle, error_message)
        logger.error(
            f"Job {handle.job_id} failed permanently after {handle.attempts} "
            f"attempt(s): {error_message}"
        )

    async def _requeue_after(self, handle: JobHandle, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        finally:
            # A stopped worker leaves the handle queued for the next start
            self._queue.requeue(handle)
