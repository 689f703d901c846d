"""Tests for webhook event mapping and the full crawl."""

import asyncio

import pytest

from review_bot.github.api import GitHubAPIError, Repository, Team
from review_bot.ingress import (
    HANDLING_PULL_REQUEST,
    REVIEWING,
    CrawlAlreadyRunningError,
    Crawler,
    handle_github_event,
)
from review_bot.reviewer.queue import JobIdentity
from review_bot.store import InMemoryStateStore


def repository_payload(owner: str = "codius", name: str = "foo") -> dict:
    return {"name": name, "owner": {"login": owner}}


def pull_request_payload(action: str, number: int = 42) -> dict:
    return {
        "action": action,
        "number": number,
        "pull_request": {
            "number": number,
            "base": {"repo": repository_payload()},
        },
        "repository": repository_payload(),
    }


class TestHandleGitHubEvent:
    """Tests for handle_github_event."""

    @pytest.mark.parametrize("event_type", ["status", "push"])
    def test_repository_events_scan_the_repository(self, queue, event_type: str) -> None:
        reply = handle_github_event(event_type, {"repository": repository_payload()}, queue)

        assert reply == REVIEWING
        assert queue.get_job(JobIdentity.repo_scan("codius", "foo")) is not None

    def test_issue_comment_reviews_the_pull_request(self, queue) -> None:
        payload = {"issue": {"number": 42}, "repository": repository_payload()}

        assert handle_github_event("issue_comment", payload, queue) == REVIEWING
        assert queue.get_job(JobIdentity.pull_request("codius", "foo", 42)) is not None

    @pytest.mark.parametrize("action", ["opened", "reopened", "closed"])
    def test_pull_request_lifecycle_actions(self, queue, action: str) -> None:
        reply = handle_github_event("pull_request", pull_request_payload(action), queue)

        assert reply == HANDLING_PULL_REQUEST
        assert queue.get_job(JobIdentity.pull_request("codius", "foo", 42)) is not None

    @pytest.mark.parametrize("action", ["synchronize", "labeled", None])
    def test_other_pull_request_actions_are_acknowledged_only(
        self, queue, action: str | None
    ) -> None:
        reply = handle_github_event("pull_request", pull_request_payload(action), queue)

        assert reply == HANDLING_PULL_REQUEST
        assert queue.queue_size() == 0

    def test_unknown_event_echoes_payload(self, queue) -> None:
        reply = handle_github_event("ping", {"zen": "Keep it simple"}, queue)

        assert reply == 'Unknown event: {"zen": "Keep it simple"}'
        assert queue.queue_size() == 0

    def test_missing_event_header(self, queue) -> None:
        assert handle_github_event(None, {}, queue).startswith("Unknown event:")

    @pytest.mark.parametrize(
        "event_type,payload",
        [
            ("push", {}),
            ("status", {"repository": {"name": "foo"}}),
            ("issue_comment", {"issue": {"number": "abc"}, "repository": repository_payload()}),
            ("issue_comment", {"repository": repository_payload()}),
            ("pull_request", {"action": "opened"}),
            ("pull_request", "not an object"),
        ],
    )
    def test_malformed_payload_is_ignored(self, queue, event_type: str, payload) -> None:
        reply = handle_github_event(event_type, payload, queue)

        assert reply == f"Ignoring malformed {event_type} event"
        assert queue.queue_size() == 0


class TestCrawler:
    """Tests for the full crawl."""

    @pytest.mark.asyncio
    async def test_enqueues_every_team_repository(self, github, queue, store) -> None:
        github.teams = [Team(1, "core", ""), Team(2, "web", "")]
        github.team_repos = {
            1: [Repository("codius", "foo"), Repository("codius", "bar")],
            2: [Repository("codius", "baz")],
        }
        observed: list[bool] = []

        async def observe(team: Team) -> None:
            observed.append((await store.get_crawl_state()).running)

        github.on_list_team_repositories = observe

        enqueued = await Crawler(github, queue, store).run()

        assert enqueued == 3
        assert observed == [True, True]
        for name in ("foo", "bar", "baz"):
            assert queue.get_job(JobIdentity.repo_scan("codius", name)) is not None
        state = await store.get_crawl_state()
        assert state.running is False
        assert state.last_run is not None

    @pytest.mark.asyncio
    async def test_shared_repository_is_coalesced(self, github, queue, store) -> None:
        github.teams = [Team(1, "core", ""), Team(2, "web", "")]
        github.team_repos = {1: [Repository("codius", "foo")], 2: [Repository("codius", "foo")]}

        await Crawler(github, queue, store).run()

        assert queue.queue_size() == 1
        assert queue.get_job(JobIdentity.repo_scan("codius", "foo")).coalesced == 1

    @pytest.mark.asyncio
    async def test_one_team_failing_does_not_stop_the_others(
        self, github, queue, store
    ) -> None:
        github.teams = [Team(1, "broken", ""), Team(2, "web", "")]
        github.team_repos = {
            1: GitHubAPIError("Forbidden", status_code=403),
            2: [Repository("codius", "baz")],
        }

        enqueued = await Crawler(github, queue, store).run()

        assert enqueued == 1
        assert queue.get_job(JobIdentity.repo_scan("codius", "baz")) is not None
        assert (await store.get_crawl_state()).last_run is not None

    @pytest.mark.asyncio
    async def test_team_listing_failure_clears_running(self, github, queue, store) -> None:
        github.teams_error = GitHubAPIError("Bad credentials", status_code=401)
        crawler = Crawler(github, queue, store)

        with pytest.raises(GitHubAPIError):
            await crawler.run()

        state = await store.get_crawl_state()
        assert state.running is False
        assert state.last_run is None
        assert crawler.is_running is False

    @pytest.mark.asyncio
    async def test_concurrent_crawl_is_rejected(self, github, queue, store) -> None:
        github.teams_gate = asyncio.Event()
        crawler = Crawler(github, queue, store)

        first = asyncio.create_task(crawler.run())
        await asyncio.sleep(0)
        assert crawler.is_running is True

        with pytest.raises(CrawlAlreadyRunningError):
            await crawler.run()

        github.teams_gate.set()
        assert await first == 0
        assert crawler.is_running is False

    @pytest.mark.asyncio
    async def test_cancelled_crawl_clears_running(self, github, queue, store) -> None:
        github.teams_gate = asyncio.Event()
        crawler = Crawler(github, queue, store)

        task = asyncio.create_task(crawler.run())
        await asyncio.sleep(0)
        assert (await store.get_crawl_state()).running is True

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert (await store.get_crawl_state()).running is False
        assert crawler.is_running is False

    @pytest.mark.asyncio
    async def test_failed_completion_write_clears_running(self, github, queue) -> None:
        class FailingFinishStore(InMemoryStateStore):
            async def finish_crawl(self, last_run) -> None:
                raise ConnectionError("store unavailable")

        store = FailingFinishStore()
        github.teams = [Team(1, "core", "")]
        github.team_repos = {1: [Repository("codius", "foo")]}

        with pytest.raises(ConnectionError):
            await Crawler(github, queue, store).run()

        state = await store.get_crawl_state()
        assert state.running is False
        assert state.last_run is None
