"""Pivotal Tracker client used by the tracker linkage reviewer."""

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

TRACKER_API_URL = "https://www.pivotaltracker.com/services/v5"


class TrackerAPIError(Exception):
    """Raised when the tracker API returns an unexpected response."""

    pass


@dataclass
class TrackerStory:
    """A tracker story and its workflow state."""

    id: int
    name: str
    current_state: str  # unscheduled, unstarted, started, finished, delivered, ...
    url: str


class TrackerAPI:
    """Read-only access to the stories of one tracker project."""

    def __init__(
        self,
        token: str,
        project_id: str,
        base_url: str = TRACKER_API_URL,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.token = token
        self.project_id = project_id
        self.base_url = base_url.rstrip("/")
        self._http_client = http_client

    async def get_story(self, story_id: int) -> TrackerStory | None:
        """
        Look up a story in the project.

        Returns:
            The story, or None if the project has no story with that id.

        Raises:
            TrackerAPIError: If the tracker responds with any other error.
        """
        url = f"{self.base_url}/projects/{self.project_id}/stories/{story_id}"
        should_close_client = self._http_client is None
        client = self._http_client or httpx.AsyncClient()

        try:
            response = await client.get(url, headers={"X-TrackerToken": self.token})

            if response.status_code == 404:
                return None

            if response.is_error:
                raise TrackerAPIError(
                    f"Story {story_id} lookup failed with status {response.status_code}"
                )

            data = response.json()
            return TrackerStory(
                id=data["id"],
                name=data.get("name", ""),
                current_state=data.get("current_state", ""),
                url=data.get("url", ""),
            )
        finally:
            if should_close_client:
                await client.aclose()
