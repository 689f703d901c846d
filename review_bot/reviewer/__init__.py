"""Reviewer pipeline: job queue, processors and worker."""

from .context import ReviewerContext
from .processors import (
    ApprovalThresholdProcessor,
    DashboardProjectionProcessor,
    ReviewerFactory,
    ReviewerProcessor,
    ReviewVerdict,
    TrackerLinkageProcessor,
    VerdictStatus,
)
from .queue import (
    ALL_PULL_REQUESTS,
    JobHandle,
    JobIdentity,
    JobKind,
    JobStatus,
    PullRequestQueue,
)
from .runner import JobOutcome, ReviewRunner
from .worker import QueueWorker, RetryConfig, is_transient_error

__all__ = [
    "ALL_PULL_REQUESTS",
    "ApprovalThresholdProcessor",
    "DashboardProjectionProcessor",
    "JobHandle",
    "JobIdentity",
    "JobKind",
    "JobOutcome",
    "JobStatus",
    "PullRequestQueue",
    "QueueWorker",
    "RetryConfig",
    "ReviewRunner",
    "ReviewVerdict",
    "ReviewerContext",
    "ReviewerFactory",
    "ReviewerProcessor",
    "TrackerLinkageProcessor",
    "VerdictStatus",
    "is_transient_error",
]
