"""
HTTP client for the project store REST API, used by the client session.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from codecollab import config
from codecollab.errors import ProjectStoreError, UnauthorizedError

logger = logging.getLogger(__name__)


class ProjectStoreClient:
    """
    Thin async wrapper over the ``/api/projects`` and ``/api/users`` endpoints.

    A 401 from the server raises ``UnauthorizedError`` so the session can force
    a logout; every other non-2xx response raises ``ProjectStoreError`` with the
    server's ``detail`` message.
    """

    def __init__(self, token: str, base_url: Optional[str] = None,
                 client: Optional[httpx.AsyncClient] = None, timeout_s: float = 30.0) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=base_url or config.API_BASE_URL,
            timeout=timeout_s,
        )
        self._headers = {"Authorization": f"Bearer {token}"}

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            resp = await self._client.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as e:
            raise ProjectStoreError(f"{method} {url} failed: {e}") from e

        if resp.status_code == 401:
            raise UnauthorizedError()
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail", resp.text)
            except ValueError:
                detail = resp.text
            raise ProjectStoreError(str(detail), status_code=resp.status_code)
        return resp.json()

    async def get_project(self, project_id: str) -> Dict[str, Any]:
        data = await self._request("GET", f"/api/projects/{project_id}")
        return data["project"]

    async def list_projects(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/api/projects")
        return data["projects"]

    async def create_project(self, name: str) -> Dict[str, Any]:
        data = await self._request("POST", "/api/projects", json={"name": name})
        return data["project"]

    async def update_file_tree(self, project_id: str, file_tree: Dict[str, Any]) -> None:
        await self._request(
            "PUT",
            "/api/projects/update-file-tree",
            json={"projectId": project_id, "fileTree": file_tree},
        )

    async def add_users(self, project_id: str, user_ids: List[str]) -> Dict[str, Any]:
        data = await self._request(
            "PUT",
            "/api/projects/add-user",
            json={"projectId": project_id, "users": list(user_ids)},
        )
        return data["project"]

    async def list_users(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/api/users/all")
        return data["users"]

    async def delete_project(self, project_id: str) -> Dict[str, Any]:
        return await self._request("DELETE", f"/api/projects/{project_id}")
