"""GitHub REST API client."""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
PER_PAGE = 100


class GitHubAPIError(Exception):
    """Raised when a GitHub API request fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


@dataclass
class PullRequestData:
    """The parts of a GitHub pull request the reviewers look at."""

    id: int
    number: int
    owner: str
    repo: str
    title: str
    body: str
    author: str
    state: str  # "open" or "closed", as GitHub reports it
    merged: bool
    head_ref: str
    base_ref: str
    head_sha: str
    html_url: str

    @property
    def lifecycle_state(self) -> str:
        """open, merged or closed."""
        if self.merged:
            return "merged"
        return self.state

    @classmethod
    def from_api(cls, owner: str, repo: str, data: dict[str, Any]) -> "PullRequestData":
        return cls(
            id=data["id"],
            number=data["number"],
            owner=owner,
            repo=repo,
            title=data.get("title") or "",
            body=data.get("body") or "",
            author=(data.get("user") or {}).get("login", ""),
            state=data["state"],
            # The list endpoint omits "merged" but always carries "merged_at"
            merged=bool(data.get("merged") or data.get("merged_at")),
            head_ref=data.get("head", {}).get("ref", ""),
            base_ref=data.get("base", {}).get("ref", ""),
            head_sha=data.get("head", {}).get("sha", ""),
            html_url=data.get("html_url", ""),
        )


@dataclass
class IssueComment:
    """A conversation comment on a pull request."""

    author: str
    body: str


@dataclass
class PullRequestReview:
    """A submitted pull request review."""

    author: str
    state: str  # APPROVED, CHANGES_REQUESTED, COMMENTED, ...


@dataclass
class Team:
    """A team the authenticated user belongs to."""

    id: int
    name: str
    repositories_url: str


@dataclass
class Repository:
    """A repository reachable through a team."""

    owner: str
    name: str


class GitHubAPI:
    """GitHub REST API client authenticated with a user access token."""

    def __init__(
        self,
        token: str,
        base_url: str = GITHUB_API_URL,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize with access token."""
        self.token = token
        self.base_url = base_url.rstrip("/")
        self._http_client = http_client

    def _headers(self) -> dict[str, str]:
        """Get request headers."""
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def _url(self, path_or_url: str) -> str:
        if path_or_url.startswith("http"):
            return path_or_url
        return f"{self.base_url}{path_or_url}"

    async def _get(
        self, client: httpx.AsyncClient, url: str, params: dict[str, Any] | None = None
    ) -> httpx.Response:
        response = await client.get(url, headers=self._headers(), params=params)
        if response.is_error:
            raise GitHubAPIError(
                f"GET {url} failed with status {response.status_code}",
                status_code=response.status_code,
            )
        return response

    async def _get_json(self, path: str) -> Any:
        if self._http_client is not None:
            return (await self._get(self._http_client, self._url(path))).json()
        async with httpx.AsyncClient() as client:
            return (await self._get(client, self._url(path))).json()

    async def _get_paginated(
        self, path: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Follow Link headers until every page has been read."""
        if self._http_client is not None:
            return await self._collect_pages(self._http_client, path, params)
        async with httpx.AsyncClient() as client:
            return await self._collect_pages(client, path, params)

    async def _collect_pages(
        self,
        client: httpx.AsyncClient,
        path: str,
        params: dict[str, Any] | None,
    ) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        url: str | None = self._url(path)
        page_params: dict[str, Any] | None = {"per_page": PER_PAGE, **(params or {})}

        while url:
            response = await self._get(client, url, params=page_params)
            items.extend(response.json())
            url = response.links.get("next", {}).get("url")
            # The next link already carries the query string
            page_params = None

        return items

    async def get_pull_request(
        self, owner: str, repo: str, number: int
    ) -> PullRequestData:
        """Get pull request details."""
        data = await self._get_json(f"/repos/{owner}/{repo}/pulls/{number}")
        return PullRequestData.from_api(owner, repo, data)

    async def list_open_pull_requests(
        self, owner: str, repo: str
    ) -> list[PullRequestData]:
        """List every open pull request in a repository."""
        items = await self._get_paginated(
            f"/repos/{owner}/{repo}/pulls", params={"state": "open"}
        )
        return [PullRequestData.from_api(owner, repo, item) for item in items]

    async def list_issue_comments(
        self, owner: str, repo: str, number: int
    ) -> list[IssueComment]:
        """List the conversation comments on a pull request."""
        items = await self._get_paginated(f"/repos/{owner}/{repo}/issues/{number}/comments")
        return [
            IssueComment(
                author=(item.get("user") or {}).get("login", ""),
                body=item.get("body") or "",
            )
            for item in items
        ]

    async def list_reviews(
        self, owner: str, repo: str, number: int
    ) -> list[PullRequestReview]:
        """List the submitted reviews on a pull request."""
        items = await self._get_paginated(f"/repos/{owner}/{repo}/pulls/{number}/reviews")
        return [
            PullRequestReview(
                author=(item.get("user") or {}).get("login", ""),
                state=item.get("state", ""),
            )
            for item in items
        ]

    async def list_user_teams(self) -> list[Team]:
        """List the teams the authenticated user belongs to."""
        items = await self._get_paginated("/user/teams")
        return [
            Team(
                id=item["id"],
                name=item.get("name", ""),
                repositories_url=item.get("repositories_url")
                or f"{self.base_url}/teams/{item['id']}/repos",
            )
            for item in items
        ]

    async def list_team_repositories(self, team: Team) -> list[Repository]:
        """List the repositories a team has access to."""
        items = await self._get_paginated(team.repositories_url)
        return [
            Repository(owner=item["owner"]["login"], name=item["name"])
            for item in items
        ]
