"""Reviewer processors.

Each processor implements one review rule. A factory builds a fresh processor
for every job execution; the runner calls ``evaluate`` and stores the returned
verdict in the processor's own slot on the context.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol

from ..store import PullRequestRecord, StateStoreProtocol
from ..tracker import TrackerStory
from .context import ReviewerContext

logger = logging.getLogger(__name__)


class VerdictStatus(Enum):
    """Outcome of one reviewer processor."""

    PASS = "pass"
    FAIL = "fail"
    NEUTRAL = "neutral"
    ERROR = "error"


@dataclass
class ReviewVerdict:
    """A processor's classification of a pull request."""

    status: VerdictStatus
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return self.status is VerdictStatus.ERROR

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "message": self.message,
            "details": dict(self.details),
        }


class ReviewerProcessor(Protocol):
    """Protocol for reviewer processors."""

    name: str

    async def evaluate(self, context: ReviewerContext) -> ReviewVerdict:
        """Evaluate the pull request in ``context``."""
        ...


ReviewerFactory = Callable[[ReviewerContext], ReviewerProcessor]


# === Approval threshold ===

APPROVAL_MARKERS = ("LGTM", ":+1:")


def is_approval_comment(body: str) -> bool:
    """True if any line of the comment carries an approval marker."""
    return any(
        marker in line for line in body.splitlines() for marker in APPROVAL_MARKERS
    )


class ApprovalThresholdProcessor:
    """Passes once enough distinct people have approved the pull request."""

    name = "lgtm"

    def __init__(self, threshold: int) -> None:
        if threshold < 1:
            raise ValueError("Approval threshold must be at least 1")
        self.threshold = threshold

    async def evaluate(self, context: ReviewerContext) -> ReviewVerdict:
        author = context.pull_request.author
        approvers: set[str] = set()

        for comment in await context.comments():
            if comment.author and is_approval_comment(comment.body):
                approvers.add(comment.author)

        for review in await context.reviews():
            if review.author and review.state == "APPROVED":
                approvers.add(review.author)

        approvers.discard(author)
        count = len(approvers)
        details = {
            "lgtm_count": count,
            "threshold": self.threshold,
            "approvers": sorted(approvers),
        }

        if count >= self.threshold:
            return ReviewVerdict(
                VerdictStatus.PASS, f"{count}/{self.threshold} approvals", details
            )
        return ReviewVerdict(
            VerdictStatus.FAIL,
            f"Needs {self.threshold - count} more approval(s) "
            f"({count}/{self.threshold})",
            details,
        )


# === Tracker linkage ===

_STORY_URL_RE = re.compile(
    r"pivotaltracker\.com/(?:n/projects/\d+/)?(?:story/show|stories)/(\d+)"
)
_STORY_TAG_RE = re.compile(r"(?<![\w/])\[?#(\d{6,})\]?")
_BRANCH_STORY_RE = re.compile(r"(?:^|/)(\d{6,})(?=$|[-_/])")

# Story states a pull request in a given lifecycle state is expected to have
COMPATIBLE_STORY_STATES: dict[str, frozenset[str]] = {
    "open": frozenset({"started", "finished", "delivered", "rejected"}),
    "merged": frozenset({"started", "finished", "delivered", "accepted"}),
}


def extract_story_id(body: str, title: str, branch: str) -> int | None:
    """
    Find a linked tracker story id.

    The description is searched first, then the title, then the head branch.
    """
    for text in (body, title):
        for pattern in (_STORY_URL_RE, _STORY_TAG_RE):
            match = pattern.search(text)
            if match:
                return int(match.group(1))

    match = _BRANCH_STORY_RE.search(branch)
    if match:
        return int(match.group(1))
    return None


class StoryLookup(Protocol):
    """The tracker call the linkage processor needs."""

    async def get_story(self, story_id: int) -> TrackerStory | None: ...


class TrackerLinkageProcessor:
    """Checks that the linked tracker story agrees with the pull request state."""

    name = "tracker"

    def __init__(self, tracker: StoryLookup) -> None:
        self.tracker = tracker

    async def evaluate(self, context: ReviewerContext) -> ReviewVerdict:
        pr = context.pull_request
        story_id = extract_story_id(pr.body, pr.title, pr.head_ref)

        if story_id is None:
            return ReviewVerdict(VerdictStatus.NEUTRAL, "No tracker story linked")

        story = await self.tracker.get_story(story_id)
        if story is None:
            return ReviewVerdict(
                VerdictStatus.FAIL,
                f"Linked story #{story_id} not found in tracker",
                {"story_id": story_id},
            )

        details = {
            "story_id": story.id,
            "story_state": story.current_state,
            "story_url": story.url,
        }
        expected = COMPATIBLE_STORY_STATES.get(pr.lifecycle_state)

        if expected is None:
            return ReviewVerdict(
                VerdictStatus.NEUTRAL,
                f"Pull request is {pr.lifecycle_state}; story is {story.current_state}",
                details,
            )

        if story.current_state in expected:
            return ReviewVerdict(
                VerdictStatus.PASS,
                f"Story #{story.id} is {story.current_state}",
                details,
            )
        return ReviewVerdict(
            VerdictStatus.FAIL,
            f"Story #{story.id} is {story.current_state}, expected one of "
            f"{', '.join(sorted(expected))} for a {pr.lifecycle_state} pull request",
            details,
        )


# === Dashboard projection ===


class DashboardProjectionProcessor:
    """
    Projects the pull request and the verdicts before it into the state store.

    Must be registered last. If any earlier processor errored, nothing is
    written so the dashboard keeps showing the last complete aggregation.
    """

    name = "dashboard"

    def __init__(self, store: StateStoreProtocol) -> None:
        self.store = store

    async def evaluate(self, context: ReviewerContext) -> ReviewVerdict:
        if context.has_errors():
            failed = [n for n, v in context.verdicts.items() if v.is_error]
            return ReviewVerdict(
                VerdictStatus.NEUTRAL,
                f"Not projected: {', '.join(failed)} failed",
            )

        pr = context.pull_request
        record = PullRequestRecord(
            id=pr.id,
            owner=pr.owner,
            repo=pr.repo,
            number=pr.number,
            title=pr.title,
            url=pr.html_url,
            author=pr.author,
            state=pr.lifecycle_state,
            updated_at=datetime.now(timezone.utc),
            reviews={
                name: verdict.to_dict() for name, verdict in context.verdicts.items()
            },
        )
        await self.store.save_pull_request(record)
        logger.info(f"Projected {record.slug} as {record.state}")
        return ReviewVerdict(VerdictStatus.PASS, f"Recorded as {record.state}")
