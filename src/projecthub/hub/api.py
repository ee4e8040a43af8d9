"""Local control service — FastAPI router.

Provides the endpoints the launcher front end talks to:
  /project-status[/{id}]   — readiness (single or batched)
  /download-zip            — run the acquisition pipeline
  /run-project             — start the preview server
  /stop-project            — stop the preview server
  /cancel/{id}             — cancel an in-flight acquisition
  /project-logs/{id}       — install log ring + preview log tail
"""

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote, urlparse

from fastapi import APIRouter, HTTPException, Request

from projecthub.config import Settings
from projecthub.errors import AcquisitionCancelled, InstallFailed, ProjectHubError, RunFailed
from projecthub.hub.pipeline import AcquisitionPipeline
from projecthub.hub.preview import PreviewRunner
from projecthub.hub.status import ReadinessMarkers
from projecthub.models import Project, validate_project_id

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Project Hub"])

_PREVIEW_LOG_LINES = 200


@dataclass
class HubServices:
    settings: Settings
    markers: ReadinessMarkers
    pipeline: AcquisitionPipeline
    preview: PreviewRunner

    @classmethod
    def from_settings(cls, settings: Settings) -> "HubServices":
        pipeline = AcquisitionPipeline.from_settings(settings)
        return cls(
            settings=settings,
            markers=pipeline.markers,
            pipeline=pipeline,
            preview=PreviewRunner.from_settings(settings, markers=pipeline.markers),
        )


def _services(request: Request) -> HubServices:
    return request.app.state.hub


def error_body(exc: ProjectHubError) -> dict[str, Any]:
    body: dict[str, Any] = {"error": exc.message, "errorType": type(exc).__name__}
    if isinstance(exc, InstallFailed):
        body["exitCode"] = exc.exit_code
    if isinstance(exc, AcquisitionCancelled):
        body["projectId"] = exc.project_id
    return body


async def _json_body(request: Request) -> dict:
    try:
        data = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be JSON") from None
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return data


def _project_id_from(data: dict) -> str:
    project_id = data.get("projectId")
    if not isinstance(project_id, str) or not project_id.strip():
        raise HTTPException(status_code=400, detail="'projectId' must be a non-empty string")
    return validate_project_id(project_id.strip())


def _archive_name_from_url(settings: Settings, project_id: str, zip_url: str) -> str:
    """Check zipUrl points at our archive store and return its file name."""
    store = urlparse(settings.store_url.rstrip("/"))
    url = urlparse(zip_url)
    prefix = f"{store.path}/projects/"
    if (url.scheme, url.netloc) != (store.scheme, store.netloc) or not url.path.startswith(prefix):
        raise HTTPException(
            status_code=400, detail="zipUrl must point at the configured archive store"
        )
    parts = [unquote(p) for p in url.path[len(prefix):].split("/")]
    if len(parts) != 3 or parts[0] != project_id or parts[1] != "download" or not parts[2]:
        raise HTTPException(
            status_code=400,
            detail=f"zipUrl must look like {settings.store_url}/projects/{project_id}/download/<file>",
        )
    return parts[2]


# ─── Health / status ─────────────────────────────────────────────────────


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/project-status")
async def get_statuses(request: Request, ids: str = ""):
    """Batched readiness: /project-status?ids=a,b,c."""
    markers = _services(request).markers
    wanted = [pid.strip() for pid in ids.split(",") if pid.strip()]
    return {"statuses": {pid: markers.is_ready(pid) for pid in wanted}}


@router.get("/project-status/{project_id}")
async def get_status(request: Request, project_id: str):
    hub = _services(request)
    status = hub.pipeline.status(validate_project_id(project_id))
    status["previewRunning"] = hub.preview.is_running(project_id)
    return status


# ─── Acquisition ─────────────────────────────────────────────────────────


@router.post("/download-zip")
async def download_zip(request: Request):
    """Download, extract and install a project; responds once it is ready."""
    hub = _services(request)
    data = await _json_body(request)
    project_id = _project_id_from(data)

    zip_url = str(data.get("zipUrl", "")).strip()
    files = [_archive_name_from_url(hub.settings, project_id, zip_url)] if zip_url else []

    result = await hub.pipeline.acquire(Project(id=project_id, files=files))
    return {"path": str(result.path), "projectId": project_id}


@router.post("/cancel/{project_id}")
async def cancel_download(request: Request, project_id: str):
    cancelled = await _services(request).pipeline.cancel(validate_project_id(project_id))
    return {"cancelled": cancelled, "projectId": project_id}


# ─── Preview ─────────────────────────────────────────────────────────────


@router.post("/run-project")
async def run_project(request: Request):
    hub = _services(request)
    project_id = _project_id_from(await _json_body(request))
    if hub.pipeline.is_running(project_id):
        raise RunFailed(f"'{project_id}' is still being installed")
    return await hub.preview.start(project_id)


@router.post("/stop-project")
async def stop_project(request: Request):
    hub = _services(request)
    project_id = _project_id_from(await _json_body(request))
    return await hub.preview.stop(project_id)


@router.get("/project-logs/{project_id}")
async def get_project_logs(request: Request, project_id: str):
    """Recent install log lines plus the tail of the preview server log."""
    hub = _services(request)
    project_id = validate_project_id(project_id)

    preview_lines: list[str] = []
    log_path = hub.preview.log_path(project_id)
    if log_path.exists():
        try:
            text = log_path.read_text(encoding="utf-8", errors="replace")
            preview_lines = text.strip().splitlines()[-_PREVIEW_LOG_LINES:]
        except OSError:
            pass

    return {
        "projectId": project_id,
        "logs": hub.pipeline.logs(project_id),
        "preview": preview_lines,
    }
