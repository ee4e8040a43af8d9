"""Acquisition pipeline — download -> extract -> install -> ready.

Per project id::

    IDLE -> DOWNLOADING -> EXTRACTING -> INSTALLING -> READY
                 |             |             |
                 v             v             v
               FAILED        FAILED        FAILED      (CANCELLED on cancel())

Stages never overlap and nothing is retried.  The readiness marker is
cleared when a run starts and written only after the install exits 0, so a
partially acquired project is never reported ready.

At most one run per project id is in flight.  A second ``acquire()`` for the
same id joins the running one instead of starting another download and
install into the same directory.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from functools import partial
from pathlib import Path
from typing import Any

from projecthub.config import Settings
from projecthub.errors import AcquisitionCancelled, DiskWriteError
from projecthub.hub import extractor
from projecthub.hub.installer import DependencyInstaller
from projecthub.hub.status import LogBuffer, ReadinessMarkers
from projecthub.hub.store import ArchiveStoreClient
from projecthub.models import AcquisitionResult, PipelineStage, Project, validate_project_id

logger = logging.getLogger(__name__)


class AcquisitionPipeline:
    """Turns a catalog entry into an installed, runnable project directory."""

    def __init__(
        self,
        store: ArchiveStoreClient,
        installer: DependencyInstaller,
        projects_dir: Path,
        *,
        markers: ReadinessMarkers | None = None,
        required_files: list[str] | None = None,
        log_size: int = 200,
    ) -> None:
        self.store = store
        self.installer = installer
        self.projects_dir = Path(projects_dir)
        self.markers = markers or ReadinessMarkers(self.projects_dir)
        self.required_files = list(required_files or [])
        self._log_size = log_size
        self._inflight: dict[str, asyncio.Task[AcquisitionResult]] = {}
        self._stages: dict[str, PipelineStage] = {}
        self._errors: dict[str, str] = {}
        self._logs: dict[str, LogBuffer] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> AcquisitionPipeline:
        return cls(
            ArchiveStoreClient.from_settings(settings),
            DependencyInstaller.from_settings(settings),
            settings.projects_dir,
            required_files=settings.required_files,
        )

    # ─── Introspection ───────────────────────────────────────────────────

    def project_dir(self, project_id: str) -> Path:
        return self.projects_dir / validate_project_id(project_id)

    def is_running(self, project_id: str) -> bool:
        task = self._inflight.get(project_id)
        return task is not None and not task.done()

    def state(self, project_id: str) -> PipelineStage:
        stage = self._stages.get(project_id)
        if stage is not None:
            return stage
        return PipelineStage.READY if self.markers.is_ready(project_id) else PipelineStage.IDLE

    def logs(self, project_id: str) -> list[str]:
        buf = self._logs.get(project_id)
        return buf.lines() if buf else []

    def status(self, project_id: str) -> dict[str, Any]:
        return {
            "projectId": project_id,
            "stage": self.state(project_id).value,
            "running": self.is_running(project_id),
            "readyToRun": self.markers.is_ready(project_id),
            "error": self._errors.get(project_id),
        }

    # ─── Run control ─────────────────────────────────────────────────────

    async def acquire(self, project: Project) -> AcquisitionResult:
        """Run (or join) the acquisition of ``project`` and return its directory."""
        project_id = validate_project_id(project.id)
        task = self._inflight.get(project_id)
        if task is None or task.done():
            task = asyncio.create_task(
                self._run(project_id, project.archive_name), name=f"acquire:{project_id}"
            )
            self._inflight[project_id] = task
            task.add_done_callback(partial(self._forget, project_id))
        else:
            logger.info("Acquisition of '%s' already in flight, joining it", project_id)

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                raise AcquisitionCancelled(project_id) from None
            raise

    async def cancel(self, project_id: str) -> bool:
        """Cancel the in-flight run for project_id. Returns False if none was running."""
        task = self._inflight.get(project_id)
        if task is None or task.done():
            return False
        logger.info("Cancelling acquisition of '%s'", project_id)
        task.cancel()
        await asyncio.wait({task})
        return True

    def _forget(self, project_id: str, task: asyncio.Task) -> None:
        if self._inflight.get(project_id) is task:
            del self._inflight[project_id]
        if not task.cancelled():
            task.exception()  # mark retrieved; awaiters re-raise it themselves

    def _set_stage(self, project_id: str, stage: PipelineStage, log: LogBuffer) -> None:
        self._stages[project_id] = stage
        log.add(f"Stage: {stage.value}")
        logger.info("Project '%s' -> %s", project_id, stage.value)

    async def _run(self, project_id: str, archive_name: str) -> AcquisitionResult:
        log = LogBuffer(self._log_size)
        self._logs[project_id] = log
        self._errors.pop(project_id, None)
        target = self.project_dir(project_id)
        extraction: asyncio.Future | None = None

        try:
            self.markers.clear(project_id)

            self._set_stage(project_id, PipelineStage.DOWNLOADING, log)
            raw = await self.store.fetch_archive(project_id, archive_name)
            log.add(f"Downloaded {archive_name} ({len(raw)} bytes)")

            self._set_stage(project_id, PipelineStage.EXTRACTING, log)
            extraction = asyncio.ensure_future(
                asyncio.to_thread(extractor.extract_to_disk, raw, target)
            )
            await asyncio.shield(extraction)
            if self.required_files:
                names = await asyncio.to_thread(extractor.member_names, raw)
                for missing in extractor.warn_missing_required(names, self.required_files):
                    log.add(f"Warning: required file not found: {missing}")

            self._set_stage(project_id, PipelineStage.INSTALLING, log)
            await self.installer.install(target, on_output=log.add)

            try:
                self.markers.mark_ready(project_id)
            except OSError as e:
                raise DiskWriteError(f"Cannot record readiness for '{project_id}': {e}") from e
            self._set_stage(project_id, PipelineStage.READY, log)
            log.add(f"Installation successful at: {target}")
            return AcquisitionResult(project_id=project_id, path=target, archive_name=archive_name)

        except asyncio.CancelledError:
            self._stages[project_id] = PipelineStage.CANCELLED
            log.add("Acquisition cancelled")
            if extraction is not None and not extraction.done():
                # Let the extraction thread finish before its output is removed.
                await asyncio.wait({extraction})
            await asyncio.to_thread(shutil.rmtree, target, True)
            raise
        except Exception as e:
            self._stages[project_id] = PipelineStage.FAILED
            self._errors[project_id] = str(e)
            log.add(f"Error: {e}")
            logger.warning("Acquisition of '%s' failed: %s", project_id, e)
            raise
