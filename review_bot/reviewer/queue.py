"""Pull request job queue.

Jobs are keyed by identity: one pull request, or a whole-repository scan.
At most one handle per identity is active (queued, running or waiting for a
retry). A request that arrives while that identity is running gets a single
follow-up handle which is queued as soon as the running execution finishes,
so at least one execution after the request sees fresh pull request data.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from .processors import ReviewerFactory

logger = logging.getLogger(__name__)

# Legacy pull request number meaning "every open pull request in the repository"
ALL_PULL_REQUESTS = -1

FINISHED_HISTORY_SIZE = 200


class JobKind(Enum):
    """What a job reviews."""

    PULL_REQUEST = "pull_request"
    REPO_SCAN = "repo_scan"


class JobStatus(Enum):
    """Status of a job in the queue."""

    QUEUED = "queued"
    RUNNING = "running"
    RETRY_PENDING = "retry-pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


ACTIVE_STATUSES = (JobStatus.QUEUED, JobStatus.RUNNING, JobStatus.RETRY_PENDING)


@dataclass(frozen=True)
class JobIdentity:
    """The unit of serialization: no two executions of one identity overlap."""

    owner: str
    repo: str
    kind: JobKind
    number: int | None = None

    def __post_init__(self) -> None:
        if (self.kind is JobKind.PULL_REQUEST) != (self.number is not None):
            raise ValueError(
                f"{self.kind.value} job for {self.owner}/{self.repo} has number {self.number!r}"
            )

    @classmethod
    def pull_request(cls, owner: str, repo: str, number: int) -> "JobIdentity":
        return cls(owner, repo, JobKind.PULL_REQUEST, number)

    @classmethod
    def repo_scan(cls, owner: str, repo: str) -> "JobIdentity":
        return cls(owner, repo, JobKind.REPO_SCAN)

    @property
    def job_id(self) -> str:
        if self.kind is JobKind.REPO_SCAN:
            return f"{self.owner}/{self.repo}#*"
        return f"{self.owner}/{self.repo}#{self.number}"


@dataclass
class JobHandle:
    """A scheduled execution of one job identity."""

    identity: JobIdentity
    status: JobStatus = JobStatus.QUEUED
    attempts: int = 0
    coalesced: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None

    @property
    def job_id(self) -> str:
        return self.identity.job_id

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class PullRequestQueue:
    """
    In-process review job queue with per-identity coalescing.

    Reviewer factories are registered at startup and frozen by the first
    enqueue. Workers consume handles with ``dequeue`` and report back with
    the ``mark_*`` methods.
    """

    def __init__(self) -> None:
        self._pending: asyncio.Queue[JobHandle] = asyncio.Queue()
        self._active: dict[JobIdentity, JobHandle] = {}
        self._followups: dict[JobIdentity, JobHandle] = {}
        self._finished: deque[JobHandle] = deque(maxlen=FINISHED_HISTORY_SIZE)
        self._factories: list[ReviewerFactory] = []
        self._frozen = False
        self._idle = asyncio.Event()
        self._idle.set()

    # === Reviewer registration ===

    def add_reviewer_factory(self, factory: ReviewerFactory) -> None:
        """Register a factory. Factories run in registration order."""
        if self._frozen:
            raise RuntimeError(
                "Reviewer factories must be registered before jobs are enqueued"
            )
        self._factories.append(factory)

    @property
    def reviewer_factories(self) -> tuple[ReviewerFactory, ...]:
        return tuple(self._factories)

    # === Enqueueing ===

    def enqueue_pull_request(self, owner: str, repo: str, number: int) -> JobHandle:
        """
        Request a review of one pull request.

        ``number == ALL_PULL_REQUESTS`` requests a scan of every open pull
        request in the repository instead.

        Returns:
            The handle of the execution that will serve this request.
        """
        if number == ALL_PULL_REQUESTS:
            return self.enqueue_repo_scan(owner, repo)
        if number < 1:
            raise ValueError(f"Invalid pull request number: {number}")
        return self.enqueue(JobIdentity.pull_request(owner, repo, number))

    def enqueue_repo_scan(self, owner: str, repo: str) -> JobHandle:
        """Request a review of every open pull request in a repository."""
        return self.enqueue(JobIdentity.repo_scan(owner, repo))

    def enqueue(self, identity: JobIdentity) -> JobHandle:
        """Schedule ``identity``, coalescing with any active execution."""
        self._frozen = True

        active = self._active.get(identity)

        if active is None:
            handle = JobHandle(identity=identity)
            self._active[identity] = handle
            self._idle.clear()
            self._pending.put_nowait(handle)
            logger.info(f"Enqueued job {handle.job_id}")
            return handle

        if active.status in (JobStatus.QUEUED, JobStatus.RETRY_PENDING):
            # The pending run fetches fresh data when it starts
            active.coalesced += 1
            logger.debug(f"Coalesced request into pending job {active.job_id}")
            return active

        followup = self._followups.get(identity)
        if followup is None:
            followup = JobHandle(identity=identity)
            self._followups[identity] = followup
            logger.info(f"Scheduled follow-up for running job {followup.job_id}")
        else:
            followup.coalesced += 1
            logger.debug(f"Coalesced request into follow-up for {followup.job_id}")
        return followup

    # === Worker side ===

    async def dequeue(self) -> JobHandle:
        """Wait for the next queued handle."""
        return await self._pending.get()

    def mark_running(self, handle: JobHandle) -> None:
        handle.status = JobStatus.RUNNING
        handle.attempts += 1
        handle.started_at = datetime.now(timezone.utc)
        handle.error_message = None

    def mark_retry_pending(self, handle: JobHandle, error_message: str) -> None:
        handle.status = JobStatus.RETRY_PENDING
        handle.error_message = error_message

    def requeue(self, handle: JobHandle) -> None:
        """Put a retry-pending handle back on the queue after its backoff."""
        if handle.status is not JobStatus.RETRY_PENDING:
            return
        handle.status = JobStatus.QUEUED
        self._pending.put_nowait(handle)
        logger.info(f"Requeued job {handle.job_id} for attempt {handle.attempts + 1}")

    def mark_succeeded(self, handle: JobHandle) -> None:
        handle.status = JobStatus.SUCCEEDED
        self._finish(handle)

    def mark_failed(self, handle: JobHandle, error_message: str) -> None:
        handle.status = JobStatus.FAILED
        handle.error_message = error_message
        self._finish(handle)

    def _finish(self, handle: JobHandle) -> None:
        handle.completed_at = datetime.now(timezone.utc)
        self._finished.append(handle)

        identity = handle.identity
        if self._active.get(identity) is handle:
            del self._active[identity]

        followup = self._followups.pop(identity, None)
        if followup is not None:
            self._active[identity] = followup
            self._pending.put_nowait(followup)
            logger.info(f"Queued follow-up job {followup.job_id}")

        if not self._active:
            self._idle.set()

    # === Monitoring ===

    def get_job(self, identity: JobIdentity) -> JobHandle | None:
        """Get the active handle for an identity, if any."""
        return self._active.get(identity)

    def get_all_jobs(self) -> list[JobHandle]:
        """Active, follow-up and recently finished handles."""
        return [
            *self._active.values(),
            *self._followups.values(),
            *self._finished,
        ]

    def queue_size(self) -> int:
        """Number of handles waiting for a worker."""
        return self._pending.qsize()

    def active_count(self) -> int:
        return len(self._active)

    async def wait_idle(self) -> None:
        """Wait until no identity has an active or follow-up execution."""
        await self._idle.wait()
