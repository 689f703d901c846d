"""Shared state store for the review dashboard.

Holds the set of known pull request ids, one record per pull request, and the
crawl metadata. Two backends implement the same protocol: an in-memory one for
tests and single-process development, and a Redis one for production.

Redis layout:
  pull-requests  set of pull request ids
  pr:<id>        hash with the record fields (``reviews`` is JSON encoded)
  crawl-state    hash with ``last-run`` (ISO-8601) and ``running`` (true/false)
"""

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Protocol

logger = logging.getLogger(__name__)

PULL_REQUESTS_KEY = "pull-requests"
CRAWL_STATE_KEY = "crawl-state"

LIFECYCLE_STATES = ("open", "merged", "closed")


def record_key(pr_id: int) -> str:
    return f"pr:{pr_id}"


class StoreError(Exception):
    """Raised when a stored record cannot be decoded."""

    pass


@dataclass
class PullRequestRecord:
    """The aggregated, dashboard-facing view of one pull request."""

    id: int
    owner: str
    repo: str
    number: int
    title: str
    url: str
    author: str
    state: str
    updated_at: datetime
    reviews: dict[str, dict[str, Any]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.state not in LIFECYCLE_STATES:
            raise ValueError(f"Invalid pull request state: {self.state!r}")

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.repo}#{self.number}"

    def to_mapping(self) -> dict[str, str]:
        """Flatten into string fields for a hash."""
        return {
            "id": str(self.id),
            "owner": self.owner,
            "repo": self.repo,
            "number": str(self.number),
            "title": self.title,
            "url": self.url,
            "author": self.author,
            "state": self.state,
            "updated_at": self.updated_at.isoformat(),
            "reviews": json.dumps(self.reviews, sort_keys=True),
        }

    @classmethod
    def from_mapping(cls, data: dict[str, str]) -> "PullRequestRecord":
        try:
            return cls(
                id=int(data["id"]),
                owner=data["owner"],
                repo=data["repo"],
                number=int(data["number"]),
                title=data.get("title", ""),
                url=data.get("url", ""),
                author=data.get("author", ""),
                state=data["state"],
                updated_at=datetime.fromisoformat(data["updated_at"]),
                reviews=json.loads(data.get("reviews") or "{}"),
            )
        except (KeyError, ValueError) as e:
            raise StoreError(f"Malformed pull request record: {e}") from e


@dataclass
class CrawlState:
    """Metadata about the most recent full crawl."""

    last_run: datetime | None = None
    running: bool = False


class StateStoreProtocol(Protocol):
    """Protocol for shared state store implementations."""

    async def save_pull_request(self, record: PullRequestRecord) -> None:
        """Replace the record for ``record.id`` atomically and register the id."""
        ...

    async def get_pull_request(self, pr_id: int) -> PullRequestRecord | None:
        """Get a record by pull request id."""
        ...

    async def list_pull_request_ids(self) -> list[int]:
        """Get every known pull request id."""
        ...

    async def list_pull_requests(self) -> list[PullRequestRecord]:
        """Get every known record."""
        ...

    async def get_crawl_state(self) -> CrawlState:
        """Get the crawl metadata."""
        ...

    async def set_crawl_running(self, running: bool) -> None:
        """Set the crawl running flag."""
        ...

    async def finish_crawl(self, last_run: datetime) -> None:
        """Clear the running flag and record the completion time together."""
        ...

    async def close(self) -> None:
        """Release connections."""
        ...


class InMemoryStateStore:
    """
    In-memory implementation of the state store.

    Records are replaced whole, so readers never see a partial write.
    Note: Data is lost on restart.
    """

    def __init__(self) -> None:
        self._records: dict[int, PullRequestRecord] = {}
        self._crawl_state = CrawlState()

    async def save_pull_request(self, record: PullRequestRecord) -> None:
        # Store a copy so later mutation by the caller cannot leak in
        self._records[record.id] = replace(record, reviews=dict(record.reviews))

    async def get_pull_request(self, pr_id: int) -> PullRequestRecord | None:
        return self._records.get(pr_id)

    async def list_pull_request_ids(self) -> list[int]:
        return sorted(self._records)

    async def list_pull_requests(self) -> list[PullRequestRecord]:
        return [self._records[pr_id] for pr_id in sorted(self._records)]

    async def get_crawl_state(self) -> CrawlState:
        return replace(self._crawl_state)

    async def set_crawl_running(self, running: bool) -> None:
        self._crawl_state.running = running

    async def finish_crawl(self, last_run: datetime) -> None:
        self._crawl_state = CrawlState(last_run=last_run, running=False)

    async def close(self) -> None:
        pass


def _parse_last_run(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.warning(f"Ignoring unparseable crawl last-run value {value!r}")
        return None


class RedisStateStore:
    """
    Redis implementation of the state store.

    Takes a ``redis.asyncio.Redis`` client created with ``decode_responses=True``.
    Record writes go through a MULTI/EXEC pipeline so a record is either fully
    replaced or untouched.
    """

    def __init__(self, redis_client: Any) -> None:
        self._redis = redis_client

    @classmethod
    def from_url(cls, url: str) -> "RedisStateStore":
        import redis.asyncio as redis

        return cls(redis.from_url(url, decode_responses=True))

    async def save_pull_request(self, record: PullRequestRecord) -> None:
        key = record_key(record.id)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.delete(key)
            pipe.hset(key, mapping=record.to_mapping())
            pipe.sadd(PULL_REQUESTS_KEY, str(record.id))
            await pipe.execute()
        logger.debug(f"Saved record {key} ({record.slug}, state={record.state})")

    async def get_pull_request(self, pr_id: int) -> PullRequestRecord | None:
        data = await self._redis.hgetall(record_key(pr_id))
        if not data:
            return None
        return PullRequestRecord.from_mapping(data)

    async def list_pull_request_ids(self) -> list[int]:
        members = await self._redis.smembers(PULL_REQUESTS_KEY)
        ids = []
        for member in members:
            try:
                ids.append(int(member))
            except ValueError:
                logger.warning(f"Ignoring non-numeric pull request id {member!r}")
        return sorted(ids)

    async def list_pull_requests(self) -> list[PullRequestRecord]:
        ids = await self.list_pull_request_ids()
        if not ids:
            return []

        async with self._redis.pipeline(transaction=False) as pipe:
            for pr_id in ids:
                pipe.hgetall(record_key(pr_id))
            results = await pipe.execute()

        records = []
        for pr_id, data in zip(ids, results):
            if not data:
                # Id registered but record missing: skip rather than show a blank row
                logger.warning(f"Pull request {pr_id} is listed but has no record")
                continue
            try:
                records.append(PullRequestRecord.from_mapping(data))
            except StoreError as e:
                logger.warning(f"Skipping undecodable record for pull request {pr_id}: {e}")
        return records

    async def get_crawl_state(self) -> CrawlState:
        data = await self._redis.hgetall(CRAWL_STATE_KEY)
        return CrawlState(
            last_run=_parse_last_run(data.get("last-run")),
            running=data.get("running") == "true",
        )

    async def set_crawl_running(self, running: bool) -> None:
        await self._redis.hset(CRAWL_STATE_KEY, "running", "true" if running else "false")

    async def finish_crawl(self, last_run: datetime) -> None:
        await self._redis.hset(
            CRAWL_STATE_KEY,
            mapping={"running": "false", "last-run": last_run.isoformat()},
        )

    async def close(self) -> None:
        await self._redis.aclose()
