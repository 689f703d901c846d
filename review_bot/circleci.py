"""CircleCI client for the dashboard's build status panel."""

from typing import Any

import httpx

CIRCLECI_API_URL = "https://circleci.com/api/v1.1"


class CircleCIError(Exception):
    """Raised when the CircleCI API request fails."""

    pass


class CircleCIAPI:
    """Lists followed CircleCI projects with their recent builds per branch."""

    def __init__(
        self,
        token: str,
        base_url: str = CIRCLECI_API_URL,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.token = token
        self.base_url = base_url.rstrip("/")
        self._http_client = http_client

    async def get_projects(self) -> list[dict[str, Any]]:
        """Return the raw project list, including ``branches.<name>.recent_builds``."""
        should_close_client = self._http_client is None
        client = self._http_client or httpx.AsyncClient()

        try:
            response = await client.get(
                f"{self.base_url}/projects",
                headers={"Circle-Token": self.token, "Accept": "application/json"},
            )
            if response.is_error:
                raise CircleCIError(
                    f"Project listing failed with status {response.status_code}"
                )
            return response.json()
        finally:
            if should_close_client:
                await client.aclose()
