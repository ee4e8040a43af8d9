"""Archive store client — catalog listing and archive downloads.

The remote store exposes two endpoints:

    GET /projects/                          -> [{"id": ..., "files": [...]}, ...]
    GET /projects/{id}/download/{fileName}  -> raw zip bytes
"""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx

from projecthub.config import Settings
from projecthub.errors import ArchiveNotFound, CatalogUnavailable, NetworkError
from projecthub.models import Project

logger = logging.getLogger(__name__)


class ArchiveStoreClient:
    """Read-only client for the remote archive store. Never touches the filesystem."""

    def __init__(
        self,
        base_url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = dict(headers or {})
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> ArchiveStoreClient:
        return cls(
            settings.store_url,
            headers=settings.store_headers,
            timeout=settings.request_timeout,
            **kwargs,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=self.headers,
            timeout=self.timeout,
            transport=self._transport,
            follow_redirects=True,
        )

    def archive_url(self, project_id: str, file_name: str) -> str:
        return (
            f"{self.base_url}/projects/{quote(project_id, safe='')}"
            f"/download/{quote(file_name, safe='')}"
        )

    async def list_projects(self) -> list[Project]:
        """Fetch the catalog, preserving the order the store returns."""
        url = f"{self.base_url}/projects/"
        try:
            async with self._client() as client:
                resp = await client.get(url)
        except httpx.HTTPError as e:
            raise CatalogUnavailable(f"Could not reach archive store: {e}") from e

        if not resp.is_success:
            raise CatalogUnavailable(f"Error fetching projects ({resp.status_code})")

        try:
            payload = resp.json()
            if not isinstance(payload, list):
                raise ValueError("catalog is not a list")
            projects = [Project.from_dict(item) for item in payload]
        except ValueError as e:
            raise CatalogUnavailable(f"Malformed catalog response: {e}") from e

        logger.info("Catalog returned %d project(s)", len(projects))
        return projects

    async def fetch_archive(self, project_id: str, file_name: str) -> bytes:
        """Download one archive file of a project and return its raw bytes."""
        url = self.archive_url(project_id, file_name)
        logger.info("Downloading %s", url)
        try:
            async with self._client() as client:
                async with client.stream("GET", url) as resp:
                    if not resp.is_success:
                        raise ArchiveNotFound(
                            f"Error downloading '{file_name}' for '{project_id}' "
                            f"({resp.status_code})"
                        )
                    chunks = [chunk async for chunk in resp.aiter_bytes()]
        except httpx.HTTPError as e:
            raise NetworkError(f"Download of '{file_name}' failed: {e}") from e

        data = b"".join(chunks)
        logger.info("Downloaded %s (%d bytes)", file_name, len(data))
        return data
