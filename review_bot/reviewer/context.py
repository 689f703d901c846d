"""Per-execution reviewer context.

A ReviewerContext is built once per job execution and thrown away when the
execution ends. Processors read the pull request through it and the runner
records each processor's verdict into its own slot.
"""

from typing import TYPE_CHECKING, Protocol

from ..github.api import IssueComment, PullRequestData, PullRequestReview

if TYPE_CHECKING:
    from .processors import ReviewVerdict


class PullRequestSource(Protocol):
    """The source-control calls a reviewer context needs."""

    async def list_issue_comments(
        self, owner: str, repo: str, number: int
    ) -> list[IssueComment]: ...

    async def list_reviews(
        self, owner: str, repo: str, number: int
    ) -> list[PullRequestReview]: ...


class ReviewerContext:
    """The pull request under review plus the verdicts recorded so far."""

    def __init__(self, pull_request: PullRequestData, source: PullRequestSource) -> None:
        self.pull_request = pull_request
        self._source = source
        self._comments: list[IssueComment] | None = None
        self._reviews: list[PullRequestReview] | None = None
        self._verdicts: dict[str, "ReviewVerdict"] = {}

    @property
    def owner(self) -> str:
        return self.pull_request.owner

    @property
    def repo(self) -> str:
        return self.pull_request.repo

    @property
    def number(self) -> int:
        return self.pull_request.number

    async def comments(self) -> list[IssueComment]:
        """Conversation comments, fetched on first use."""
        if self._comments is None:
            self._comments = await self._source.list_issue_comments(
                self.owner, self.repo, self.number
            )
        return self._comments

    async def reviews(self) -> list[PullRequestReview]:
        """Submitted reviews, fetched on first use."""
        if self._reviews is None:
            self._reviews = await self._source.list_reviews(
                self.owner, self.repo, self.number
            )
        return self._reviews

    @property
    def verdicts(self) -> dict[str, "ReviewVerdict"]:
        """Verdicts recorded so far, in execution order. Read-only copy."""
        return dict(self._verdicts)

    def record_verdict(self, name: str, verdict: "ReviewVerdict") -> None:
        """Fill the slot for ``name``. Each slot can be filled once."""
        if name in self._verdicts:
            raise ValueError(f"Verdict for reviewer '{name}' already recorded")
        self._verdicts[name] = verdict

    def has_errors(self) -> bool:
        return any(v.is_error for v in self._verdicts.values())
