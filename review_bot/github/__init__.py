"""GitHub integration for the review bot."""

from .api import (
    GitHubAPI,
    GitHubAPIError,
    IssueComment,
    PullRequestData,
    PullRequestReview,
    Repository,
    Team,
)

__all__ = [
    "GitHubAPI",
    "GitHubAPIError",
    "IssueComment",
    "PullRequestData",
    "PullRequestReview",
    "Repository",
    "Team",
]
