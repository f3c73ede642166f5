"""GitLab REST API v4 client (OAuth bearer token)."""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

_API_SUFFIX = "/api/v4"


class GitLabAPIError(RuntimeError):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"GitLab API error {status_code}: {message}")
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        """Server errors and rate limiting are worth retrying; other 4xx are not."""
        return self.status_code == 429 or self.status_code >= 500 or self.status_code == 0


class GitLabClient:
    """Post notes and read the current user on behalf of an authorized user."""

    def __init__(self, base_url: str, access_token: str) -> None:
        self._api_url = base_url.rstrip("/") + _API_SUFFIX
        self._headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }
        self._client = httpx.AsyncClient(timeout=15.0)

    async def _request(self, method: str, path: str, payload: dict | None = None) -> dict:
        try:
            resp = await self._client.request(
                method, f"{self._api_url}{path}", json=payload, headers=self._headers
            )
        except httpx.HTTPError as exc:
            raise GitLabAPIError(0, str(exc)) from exc
        if resp.is_error:
            raise GitLabAPIError(resp.status_code, resp.text[:500])
        return resp.json()

    async def create_issue_note(self, project_id: int, issue_iid: int, body: str) -> dict:
        note = await self._request(
            "POST", f"/projects/{project_id}/issues/{issue_iid}/notes", {"body": body}
        )
        logger.info("GitLab note %s added to issue %d/%d", note.get("id"), project_id, issue_iid)
        return note

    async def create_merge_request_note(self, project_id: int, mr_iid: int, body: str) -> dict:
        note = await self._request(
            "POST", f"/projects/{project_id}/merge_requests/{mr_iid}/notes", {"body": body}
        )
        logger.info("GitLab note %s added to merge request %d/%d", note.get("id"), project_id, mr_iid)
        return note

    async def create_snippet_note(self, project_id: int, snippet_id: int, body: str) -> dict:
        note = await self._request(
            "POST", f"/projects/{project_id}/snippets/{snippet_id}/notes", {"body": body}
        )
        logger.info("GitLab note %s added to snippet %d/%d", note.get("id"), project_id, snippet_id)
        return note

    async def create_commit_comment(self, project_id: int, sha: str, note: str) -> dict:
        """Comment on a commit. The response carries no id, only ``created_at``."""
        comment = await self._request(
            "POST",
            f"/projects/{project_id}/repository/commits/{quote(sha, safe='')}/comments",
            {"note": note},
        )
        logger.info("GitLab comment added to commit %d/%s", project_id, sha[:10])
        return comment

    async def current_user(self) -> dict:
        return await self._request("GET", "/user")

    async def close(self) -> None:
        await self._client.aclose()
