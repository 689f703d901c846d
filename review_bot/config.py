"""Configuration for the review bot.

Process settings come from environment variables. Reviewer tuning (thresholds)
lives in an optional YAML file so it can be changed without redeploying secrets.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

DEFAULT_LGTM_THRESHOLD = 2


class ConfigParseError(Exception):
    """Raised when the reviewer settings file cannot be parsed."""

    pass


@dataclass
class ReviewerSettings:
    """Tuning for the reviewer processors."""

    lgtm_threshold: int = DEFAULT_LGTM_THRESHOLD


def parse_reviewer_settings(yaml_content: str) -> ReviewerSettings:
    """
    Parse YAML content into ReviewerSettings.

    Expected YAML format:
        reviewers:
          lgtm:
            threshold: 2

    Args:
        yaml_content: The raw YAML string to parse.

    Returns:
        ReviewerSettings with defaults for anything not specified.

    Raises:
        ConfigParseError: If the YAML is invalid or a value has the wrong type.
    """
    try:
        data = yaml.safe_load(yaml_content)
    except yaml.YAMLError as e:
        raise ConfigParseError(f"Invalid YAML: {e}") from e

    if data is None:
        return ReviewerSettings()

    if not isinstance(data, dict):
        raise ConfigParseError("Reviewer settings must be a mapping")

    reviewers = data.get("reviewers") or {}
    if not isinstance(reviewers, dict):
        raise ConfigParseError("'reviewers' must be a mapping")

    lgtm = reviewers.get("lgtm") or {}
    if not isinstance(lgtm, dict):
        raise ConfigParseError("'reviewers.lgtm' must be a mapping")

    threshold = lgtm.get("threshold", DEFAULT_LGTM_THRESHOLD)
    if isinstance(threshold, bool) or not isinstance(threshold, int) or threshold < 1:
        raise ConfigParseError(
            f"'reviewers.lgtm.threshold' must be a positive integer, got {threshold!r}"
        )

    return ReviewerSettings(lgtm_threshold=threshold)


def load_reviewer_settings(path: str | Path) -> ReviewerSettings:
    """Load reviewer settings from a file, falling back to defaults if it is missing."""
    settings_file = Path(path)
    if not settings_file.exists():
        return ReviewerSettings()
    return parse_reviewer_settings(settings_file.read_text())


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


@dataclass
class AppConfig:
    """Application configuration loaded from environment variables."""

    github_token: str
    github_webhook_secret: str = ""
    redis_url: str = ""
    tracker_token: str = ""
    tracker_project_id: str = ""
    circleci_token: str = ""
    dashboard_org: str = "codius"
    worker_concurrency: int = 4
    job_timeout_seconds: float = 300.0
    max_retries: int = 3
    host: str = "0.0.0.0"
    port: int = 5000
    reviewers: ReviewerSettings = field(default_factory=ReviewerSettings)

    @property
    def tracker_enabled(self) -> bool:
        return bool(self.tracker_token and self.tracker_project_id)

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Load configuration from environment variables."""
        github_token = os.environ.get("GITHUB_TOKEN", "")
        if not github_token:
            raise ValueError("GITHUB_TOKEN environment variable is required")

        settings_path = os.environ.get("REVIEW_BOT_CONFIG", "review-bot.yml")
        try:
            reviewers = load_reviewer_settings(settings_path)
        except ConfigParseError as e:
            raise ValueError(f"Invalid reviewer settings in {settings_path}: {e}") from e

        return cls(
            github_token=github_token,
            github_webhook_secret=os.environ.get("GITHUB_WEBHOOK_SECRET", ""),
            redis_url=os.environ.get("REDIS_URL", ""),
            tracker_token=os.environ.get("TRACKER_TOKEN", ""),
            tracker_project_id=os.environ.get("TRACKER_PROJECT_ID", ""),
            circleci_token=os.environ.get("CIRCLECI_TOKEN", ""),
            dashboard_org=os.environ.get("DASHBOARD_ORG", "codius"),
            worker_concurrency=_int_env("WORKER_CONCURRENCY", 4),
            job_timeout_seconds=float(_int_env("JOB_TIMEOUT_SECONDS", 300)),
            max_retries=_int_env("MAX_RETRIES", 3),
            host=os.environ.get("HOST", "0.0.0.0"),
            port=_int_env("PORT", 5000),
            reviewers=reviewers,
        )
