"""Application wiring.

``build_review_bot`` constructs every long-lived component once at startup
and registers the reviewer factories. The resulting ReviewBot is handed to
the HTTP layer and is not mutated afterwards.
"""

import logging
from dataclasses import dataclass
from typing import Any

from .circleci import CircleCIAPI
from .config import AppConfig
from .github.api import GitHubAPI
from .ingress import Crawler
from .reviewer.processors import (
    ApprovalThresholdProcessor,
    DashboardProjectionProcessor,
    StoryLookup,
    TrackerLinkageProcessor,
)
from .reviewer.queue import PullRequestQueue
from .reviewer.runner import ReviewRunner
from .reviewer.worker import QueueWorker, RetryConfig
from .store import InMemoryStateStore, RedisStateStore, StateStoreProtocol
from .tracker import TrackerAPI

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewBot:
    """The process-wide components, constructed once."""

    config: AppConfig
    queue: PullRequestQueue
    github: Any
    store: StateStoreProtocol
    worker: QueueWorker
    crawler: Crawler
    circleci: CircleCIAPI | None = None


def build_review_bot(
    config: AppConfig,
    *,
    github: Any = None,
    store: StateStoreProtocol | None = None,
    tracker: StoryLookup | None = None,
    circleci: CircleCIAPI | None = None,
    retry_config: RetryConfig | None = None,
) -> ReviewBot:
    """
    Build the review bot from configuration.

    Collaborators can be passed in to replace the ones the configuration
    would create (tests use in-memory fakes).
    """
    github = github or GitHubAPI(config.github_token)

    if store is None:
        if config.redis_url:
            store = RedisStateStore.from_url(config.redis_url)
        else:
            logger.warning("REDIS_URL not set - using in-memory state store")
            store = InMemoryStateStore()

    if tracker is None and config.tracker_enabled:
        tracker = TrackerAPI(config.tracker_token, config.tracker_project_id)

    if circleci is None and config.circleci_token:
        circleci = CircleCIAPI(config.circleci_token)

    queue = PullRequestQueue()

    threshold = config.reviewers.lgtm_threshold
    queue.add_reviewer_factory(lambda context: ApprovalThresholdProcessor(threshold))
    if tracker is not None:
        story_lookup = tracker
        queue.add_reviewer_factory(lambda context: TrackerLinkageProcessor(story_lookup))
    else:
        logger.info("Tracker not configured - tracker linkage reviewer disabled")
    # Projection reads every earlier verdict, so it is always registered last
    queue.add_reviewer_factory(lambda context: DashboardProjectionProcessor(store))

    worker = QueueWorker(
        queue=queue,
        runner=ReviewRunner(queue, github),
        retry_config=retry_config or RetryConfig(max_retries=config.max_retries),
        concurrency=config.worker_concurrency,
        job_timeout_seconds=config.job_timeout_seconds,
    )

    return ReviewBot(
        config=config,
        queue=queue,
        github=github,
        store=store,
        worker=worker,
        crawler=Crawler(github, queue, store),
        circleci=circleci,
    )
