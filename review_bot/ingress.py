"""Maps GitHub webhooks and the full crawl onto queue requests."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Protocol

from .github.api import Repository, Team
from .reviewer.queue import PullRequestQueue
from .store import StateStoreProtocol

logger = logging.getLogger(__name__)

REVIEWING = "Reviewing"
HANDLING_PULL_REQUEST = "Handling pull request"

# pull_request actions that change what the dashboard should show
PULL_REQUEST_ACTIONS = ("opened", "reopened", "closed")


def _repository_of(payload: dict[str, Any]) -> tuple[str, str]:
    repository = payload["repository"]
    return repository["owner"]["login"], repository["name"]


def handle_github_event(event_type: str | None, payload: Any, queue: PullRequestQueue) -> str:
    """
    Enqueue the review work implied by a webhook delivery.

    Args:
        event_type: The X-GitHub-Event header value.
        payload: The decoded webhook body.
        queue: The queue to enqueue into.

    Returns:
        A short plaintext acknowledgement for the webhook response.
    """
    if event_type not in ("status", "push", "issue_comment", "pull_request"):
        return f"Unknown event: {json.dumps(payload)}"

    try:
        if event_type in ("status", "push"):
            owner, repo = _repository_of(payload)
            queue.enqueue_repo_scan(owner, repo)
            return REVIEWING

        if event_type == "issue_comment":
            owner, repo = _repository_of(payload)
            queue.enqueue_pull_request(owner, repo, int(payload["issue"]["number"]))
            return REVIEWING

        action = payload.get("action")
        if action in PULL_REQUEST_ACTIONS:
            pr = payload["pull_request"]
            base_repo = pr["base"]["repo"]
            queue.enqueue_pull_request(
                base_repo["owner"]["login"], base_repo["name"], int(pr["number"])
            )
        else:
            logger.debug(f"Ignoring pull_request action '{action}'")
        return HANDLING_PULL_REQUEST

    except (KeyError, TypeError, ValueError, AttributeError) as e:
        logger.warning(f"Malformed {event_type} event: {type(e).__name__}: {e}")
        return f"Ignoring malformed {event_type} event"


class TeamSource(Protocol):
    """The source-control calls the crawl needs."""

    async def list_user_teams(self) -> list[Team]: ...

    async def list_team_repositories(self, team: Team) -> list[Repository]: ...


class CrawlAlreadyRunningError(Exception):
    """Raised when a crawl is requested while another one is in progress."""

    pass


class Crawler:
    """
    Enqueues a repository scan for every repository of every team.

    Catches up on pull requests that never produced a webhook. One crawl
    runs at a time per process.
    """

    def __init__(
        self,
        github: TeamSource,
        queue: PullRequestQueue,
        store: StateStoreProtocol,
    ) -> None:
        self._github = github
        self._queue = queue
        self._store = store
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run(self) -> int:
        """
        Enumerate teams and repositories and enqueue a scan for each repository.

        Returns:
            The number of repository scans requested.

        Raises:
            CrawlAlreadyRunningError: If a crawl is already in progress.
            Exception: If the team listing or a crawl state write fails.
        """
        if self._lock.locked():
            raise CrawlAlreadyRunningError("A crawl is already running")

        async with self._lock:
            await self._store.set_crawl_running(True)
            finished = False
            try:
                teams = await self._github.list_user_teams()
                results = await asyncio.gather(
                    *(self._enqueue_team(team) for team in teams)
                )
                await self._store.finish_crawl(datetime.now(timezone.utc))
                finished = True
            finally:
                if not finished:
                    await self._store.set_crawl_running(False)

        enqueued = sum(results)
        logger.info(f"Crawl enqueued {enqueued} repository scan(s) across {len(teams)} team(s)")
        return enqueued

    async def _enqueue_team(self, team: Team) -> int:
        try:
            repositories = await self._github.list_team_repositories(team)
        except Exception:
            logger.exception(f"Failed to list repositories for team '{team.name}'")
            return 0

        for repository in repositories:
            self._queue.enqueue_repo_scan(repository.owner, repository.name)
        return len(repositories)
