"""Shared fakes and fixtures for the review bot tests."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import replace

import pytest

from review_bot.github.api import (
    GitHubAPIError,
    IssueComment,
    PullRequestData,
    PullRequestReview,
    Repository,
    Team,
)
from review_bot.reviewer.queue import PullRequestQueue
from review_bot.reviewer.runner import ReviewRunner
from review_bot.reviewer.worker import QueueWorker, RetryConfig
from review_bot.store import InMemoryStateStore
from review_bot.tracker import TrackerStory

# ============================================================================
# Mock Implementations
# ============================================================================


class FakeGitHub:
    """In-memory stand-in for GitHubAPI.

    Implements the source-control calls used by the runner, the reviewer
    context and the crawler.
    """

    def __init__(self) -> None:
        self.pull_requests: dict[tuple[str, str, int], PullRequestData] = {}
        self.comments: dict[tuple[str, str, int], list[IssueComment]] = {}
        self.reviews: dict[tuple[str, str, int], list[PullRequestReview]] = {}
        self.teams: list[Team] = []
        self.team_repos: dict[int, list[Repository] | Exception] = {}
        self.teams_error: Exception | None = None

        # Call logs
        self.fetches: list[tuple[str, str, int]] = []
        self.comment_fetches = 0

        # Failure and blocking controls
        self.fetch_failures = 0
        self._fetch_gates: list[tuple[asyncio.Event, asyncio.Event]] = []
        self.on_list_team_repositories: Callable[[Team], Awaitable[None]] | None = None
        self.teams_gate: asyncio.Event | None = None

        self._concurrent: dict[tuple[str, str, int], int] = {}
        self.max_concurrent_fetches = 0
        self._next_id = 1000

    def add_pull_request(
        self,
        owner: str,
        repo: str,
        number: int,
        *,
        title: str = "A change",
        body: str = "",
        author: str = "alice",
        state: str = "open",
        merged: bool = False,
        head_ref: str = "feature",
    ) -> PullRequestData:
        key = (owner, repo, number)
        existing = self.pull_requests.get(key)
        if existing is None:
            self._next_id += 1
            pr_id = self._next_id
        else:
            pr_id = existing.id

        pr = PullRequestData(
            id=pr_id,
            number=number,
            owner=owner,
            repo=repo,
            title=title,
            body=body,
            author=author,
            state=state,
            merged=merged,
            head_ref=head_ref,
            base_ref="master",
            head_sha=f"sha-{number}",
            html_url=f"https://github.com/{owner}/{repo}/pull/{number}",
        )
        self.pull_requests[key] = pr
        return pr

    def add_comment(self, owner: str, repo: str, number: int, author: str, body: str) -> None:
        self.comments.setdefault((owner, repo, number), []).append(
            IssueComment(author=author, body=body)
        )

    def add_review(self, owner: str, repo: str, number: int, author: str, state: str) -> None:
        self.reviews.setdefault((owner, repo, number), []).append(
            PullRequestReview(author=author, state=state)
        )

    def block_next_fetch(self) -> tuple[asyncio.Event, asyncio.Event]:
        """Make the next get_pull_request wait. Returns (started, release)."""
        gate = (asyncio.Event(), asyncio.Event())
        self._fetch_gates.append(gate)
        return gate

    async def get_pull_request(self, owner: str, repo: str, number: int) -> PullRequestData:
        key = (owner, repo, number)
        self.fetches.append(key)
        self._concurrent[key] = self._concurrent.get(key, 0) + 1
        self.max_concurrent_fetches = max(self.max_concurrent_fetches, self._concurrent[key])
        try:
            if self._fetch_gates:
                started, release = self._fetch_gates.pop(0)
                started.set()
                await release.wait()

            if self.fetch_failures > 0:
                self.fetch_failures -= 1
                raise GitHubAPIError("GitHub is having a bad day", status_code=502)

            if key not in self.pull_requests:
                raise GitHubAPIError(f"No pull request {key}", status_code=404)
            return replace(self.pull_requests[key])
        finally:
            self._concurrent[key] -= 1

    async def list_open_pull_requests(self, owner: str, repo: str) -> list[PullRequestData]:
        return [
            replace(pr)
            for (o, r, _), pr in sorted(self.pull_requests.items())
            if o == owner and r == repo and pr.state == "open"
        ]

    async def list_issue_comments(self, owner: str, repo: str, number: int) -> list[IssueComment]:
        self.comment_fetches += 1
        return list(self.comments.get((owner, repo, number), []))

    async def list_reviews(self, owner: str, repo: str, number: int) -> list[PullRequestReview]:
        return list(self.reviews.get((owner, repo, number), []))

    async def list_user_teams(self) -> list[Team]:
        if self.teams_gate is not None:
            await self.teams_gate.wait()
        if self.teams_error is not None:
            raise self.teams_error
        return list(self.teams)

    async def list_team_repositories(self, team: Team) -> list[Repository]:
        if self.on_list_team_repositories is not None:
            await self.on_list_team_repositories(team)
        repos = self.team_repos.get(team.id, [])
        if isinstance(repos, Exception):
            raise repos
        return list(repos)


class FakeTracker:
    """In-memory story lookup."""

    def __init__(self) -> None:
        self.stories: dict[int, TrackerStory] = {}
        self.lookups: list[int] = []

    def add_story(self, story_id: int, state: str) -> TrackerStory:
        story = TrackerStory(
            id=story_id,
            name=f"Story {story_id}",
            current_state=state,
            url=f"https://www.pivotaltracker.com/story/show/{story_id}",
        )
        self.stories[story_id] = story
        return story

    async def get_story(self, story_id: int) -> TrackerStory | None:
        self.lookups.append(story_id)
        return self.stories.get(story_id)


async def run_until_idle(
    queue: PullRequestQueue,
    github: FakeGitHub,
    *,
    retry_config: RetryConfig | None = None,
    job_timeout_seconds: float = 5.0,
    timeout: float = 5.0,
) -> None:
    """Run a worker until the queue has no active jobs left."""
    worker = QueueWorker(
        queue=queue,
        runner=ReviewRunner(queue, github),
        retry_config=retry_config or RetryConfig(max_retries=0, initial_delay_seconds=0.0),
        concurrency=4,
        job_timeout_seconds=job_timeout_seconds,
    )
    await worker.start()
    try:
        await asyncio.wait_for(queue.wait_idle(), timeout=timeout)
    finally:
        await worker.stop()


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def tracker() -> FakeTracker:
    return FakeTracker()


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def queue() -> PullRequestQueue:
    return PullRequestQueue()


@pytest.fixture
def drain():
    """Returns ``run_until_idle`` for tests that need to process the queue."""
    return run_until_idle
