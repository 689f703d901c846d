"""Executes one job: fetch the pull request, run the reviewers in order."""

import logging
from dataclasses import dataclass, field
from typing import Protocol

from ..github.api import PullRequestData
from .context import PullRequestSource, ReviewerContext
from .processors import ReviewVerdict, VerdictStatus
from .queue import JobHandle, JobIdentity, JobKind, PullRequestQueue

logger = logging.getLogger(__name__)


class PullRequestFetcher(PullRequestSource, Protocol):
    """The source-control calls a job execution needs."""

    async def get_pull_request(
        self, owner: str, repo: str, number: int
    ) -> PullRequestData: ...

    async def list_open_pull_requests(
        self, owner: str, repo: str
    ) -> list[PullRequestData]: ...


@dataclass
class JobOutcome:
    """Result of one execution."""

    identity: JobIdentity
    verdicts: dict[str, ReviewVerdict] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    sub_jobs: list[JobHandle] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return bool(self.errors)


class ReviewRunner:
    """Runs the registered reviewer pipeline for a job identity."""

    def __init__(self, queue: PullRequestQueue, github: PullRequestFetcher) -> None:
        self._queue = queue
        self._github = github

    async def run(self, identity: JobIdentity) -> JobOutcome:
        """
        Execute one job.

        Pull request jobs fetch fresh data and run every reviewer. Repository
        scans enqueue one pull request job per currently open pull request.

        Raises:
            Exception: If fetching from the source-control API fails.
        """
        if identity.kind is JobKind.REPO_SCAN:
            return await self._scan_repository(identity)
        return await self._review_pull_request(identity)

    async def _scan_repository(self, identity: JobIdentity) -> JobOutcome:
        pull_requests = await self._github.list_open_pull_requests(
            identity.owner, identity.repo
        )
        outcome = JobOutcome(identity=identity)
        for pr in pull_requests:
            outcome.sub_jobs.append(
                self._queue.enqueue_pull_request(identity.owner, identity.repo, pr.number)
            )

        logger.info(
            f"Scanned {identity.owner}/{identity.repo}: "
            f"{len(outcome.sub_jobs)} open pull request(s)"
        )
        return outcome

    async def _review_pull_request(self, identity: JobIdentity) -> JobOutcome:
        if identity.number is None:
            raise ValueError(f"Pull request job {identity.job_id} has no number")

        pull_request = await self._github.get_pull_request(
            identity.owner, identity.repo, identity.number
        )
        context = ReviewerContext(pull_request, self._github)
        outcome = JobOutcome(identity=identity)

        for factory in self._queue.reviewer_factories:
            name = getattr(factory, "__name__", repr(factory))
            try:
                processor = factory(context)
                name = processor.name
                verdict = await processor.evaluate(context)
            except Exception as e:
                logger.exception(f"Reviewer '{name}' failed on {identity.job_id}")
                verdict = ReviewVerdict(VerdictStatus.ERROR, f"{type(e).__name__}: {e}")

            if verdict.is_error:
                outcome.errors.append(f"{name}: {verdict.message}")
            context.record_verdict(name, verdict)
            outcome.verdicts[name] = verdict

        logger.info(
            f"Reviewed {identity.job_id} ({pull_request.lifecycle_state}): "
            + ", ".join(f"{n}={v.status.value}" for n, v in outcome.verdicts.items())
        )
        return outcome
