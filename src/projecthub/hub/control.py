"""Client for the local control service (install / run / stop triggers)."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from projecthub import errors
from projecthub.config import Settings

logger = logging.getLogger(__name__)

# Errors the service reports by name that take a plain message.
_ERRORS_BY_NAME: dict[str, type[errors.ProjectHubError]] = {
    cls.__name__: cls
    for cls in (
        errors.CatalogUnavailable,
        errors.ArchiveNotFound,
        errors.NetworkError,
        errors.CorruptArchive,
        errors.DiskWriteError,
        errors.RunFailed,
        errors.InvalidProjectId,
    )
}


def _error_from_response(
    resp: httpx.Response, default: type[errors.ProjectHubError]
) -> errors.ProjectHubError:
    try:
        data = resp.json()
    except ValueError:
        data = {}
    if not isinstance(data, dict):
        data = {}
    message = data.get("error") or data.get("detail") or f"HTTP {resp.status_code}"
    kind = data.get("errorType")
    if kind == "InstallFailed":
        return errors.InstallFailed(int(data.get("exitCode", 1)), message)
    if kind == "AcquisitionCancelled":
        return errors.AcquisitionCancelled(data.get("projectId", ""))
    return _ERRORS_BY_NAME.get(kind, default)(message)


class LocalControlClient:
    def __init__(
        self,
        control_url: str,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.control_url = control_url.rstrip("/")
        # Installs can run for minutes, so no read timeout by default.
        self.timeout = httpx.Timeout(timeout, connect=10.0)
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> LocalControlClient:
        return cls(settings.control_url, **kwargs)

    async def _post(
        self, path: str, payload: dict[str, Any], default: type[errors.ProjectHubError]
    ) -> dict[str, Any]:
        url = f"{self.control_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise errors.NetworkError(f"Local control service unreachable: {e}") from e
        if not resp.is_success:
            raise _error_from_response(resp, default)
        try:
            return resp.json()
        except ValueError:
            return {}

    async def download_zip(self, project_id: str, zip_url: str) -> str:
        """Ask the service to acquire a project; returns the installed directory."""
        logger.info("Requesting acquisition of %s from %s", project_id, zip_url)
        data = await self._post(
            "/download-zip", {"projectId": project_id, "zipUrl": zip_url}, errors.NetworkError
        )
        return str(data.get("path", ""))

    async def run_project(self, project_id: str) -> dict[str, Any]:
        return await self._post("/run-project", {"projectId": project_id}, errors.RunFailed)

    async def stop_project(self, project_id: str) -> dict[str, Any]:
        return await self._post("/stop-project", {"projectId": project_id}, errors.RunFailed)

    async def cancel(self, project_id: str) -> bool:
        data = await self._post(f"/cancel/{quote(project_id, safe='')}", {}, errors.NetworkError)
        return bool(data.get("cancelled"))
