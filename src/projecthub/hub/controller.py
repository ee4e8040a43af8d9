"""Launcher controller — the application state behind the project browser.

One ``LauncherController`` owns one ``AppState``.  Each operation mirrors a
user action (load catalog, select, install, run, send prompt) and leaves the
outcome in the state plus a line in the console log ring.  Errors are turned
into state; none of these operations raise ``ProjectHubError``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from projecthub.config import Settings
from projecthub.errors import ProjectHubError
from projecthub.hub.control import LocalControlClient
from projecthub.hub.extractor import extract, warn_missing_required
from projecthub.hub.prompts import PromptSync
from projecthub.hub.status import LogBuffer, StatusTracker
from projecthub.hub.store import ArchiveStoreClient
from projecthub.models import Project, VirtualFile

logger = logging.getLogger(__name__)

VIEW_MODES = ("files", "preview", "prompt")

CONNECTION_FAILED = "Connection failed. Make sure local server is running."


@dataclass
class AppState:
    projects: list[Project] = field(default_factory=list)
    active_project_id: str | None = None
    files: dict[str, VirtualFile] = field(default_factory=dict)
    loading: bool = False
    error: str | None = None
    ready_to_run: bool = False
    view_mode: str = "files"
    logs: LogBuffer = field(default_factory=LogBuffer)
    prompt_status: str = "idle"
    search: str = ""


class LauncherController:
    def __init__(
        self,
        store: ArchiveStoreClient,
        tracker: StatusTracker,
        control: LocalControlClient,
        prompts: PromptSync,
        *,
        required_files: list[str] | None = None,
        log_size: int = 50,
    ) -> None:
        self.store = store
        self.tracker = tracker
        self.control = control
        self.prompts = prompts
        self.required_files = list(required_files or [])
        self.state = AppState(logs=LogBuffer(log_size))
        self.log("System initialized...")
        self.log("Ready for project selection.")

    @classmethod
    def from_settings(cls, settings: Settings) -> LauncherController:
        return cls(
            ArchiveStoreClient.from_settings(settings),
            StatusTracker.from_settings(settings),
            LocalControlClient.from_settings(settings),
            PromptSync.from_settings(settings),
            required_files=settings.required_files,
            log_size=settings.log_ring_size,
        )

    def log(self, message: str) -> None:
        self.state.logs.add(message)
        logger.info(message)

    @property
    def active_project(self) -> Project | None:
        for project in self.state.projects:
            if project.id == self.state.active_project_id:
                return project
        return None

    # ─── Catalog ─────────────────────────────────────────────────────────

    async def load_projects(self) -> list[Project]:
        """Fetch the catalog and annotate each project with its readiness."""
        self.state.loading = True
        try:
            projects = await self.store.list_projects()
            ready = await self.tracker.ready_map(p.id for p in projects)
            for project in projects:
                project.ready_to_run = ready.get(project.id, False)
            self.state.projects = projects
            self.log(f"Loaded {len(projects)} projects from API.")
        except ProjectHubError as e:
            self.state.projects = []
            self.state.error = CONNECTION_FAILED
            self.log(f"Error: {e.message}")
        finally:
            self.state.loading = False
        return self.state.projects

    def visible_projects(self) -> list[Project]:
        needle = self.state.search.strip().lower()
        if not needle:
            return list(self.state.projects)
        return [p for p in self.state.projects if needle in p.id.lower()]

    # ─── Selection ───────────────────────────────────────────────────────

    async def _fetch_files(self, project: Project) -> dict[str, VirtualFile]:
        raw = await self.store.fetch_archive(project.id, project.archive_name)
        files = await asyncio.to_thread(extract, raw)
        for missing in warn_missing_required(files.keys(), self.required_files):
            self.log(f"Warning: archive has no {missing}")
        return files

    async def select_project(self, project_id: str) -> None:
        state = self.state
        state.active_project_id = project_id
        state.files = {}
        state.loading = True
        state.error = None
        state.ready_to_run = False
        state.view_mode = "files"
        self.log(f"Selecting project: {project_id}")

        project = self.active_project
        try:
            if project is not None and project.ready_to_run:
                state.ready_to_run = True
                self.log(f"Project {project_id} is already cached and ready.")
                files = await self._fetch_files(project)
                if state.active_project_id == project_id:
                    state.files = files
            else:
                self.log(f"Project {project_id} needs to be downloaded...")
        except ProjectHubError as e:
            logger.warning("File list for %s unavailable: %s", project_id, e)
            self.log("Warning: Could not fetch file list immediately.")
        finally:
            state.loading = False

    # ─── Install / run ───────────────────────────────────────────────────

    async def download_and_install(self) -> bool:
        project = self.active_project
        if project is None:
            return False

        state = self.state
        state.loading = True
        self.log(f"Starting download and npm install for {project.id}...")
        try:
            zip_url = self.store.archive_url(project.id, project.archive_name)
            path = await self.control.download_zip(project.id, zip_url)
            self.log(f"Installation successful at: {path}")
            if state.active_project_id == project.id:
                state.ready_to_run = True
                files = await self._fetch_files(project)
                # Selection can change while the archive downloads.
                if state.active_project_id == project.id:
                    state.files = files
        except ProjectHubError as e:
            state.error = e.message
            self.log(f"Fatal Error: {e.message}")
            return False
        finally:
            state.loading = False

        await self.load_projects()
        return True

    async def run_project(self) -> bool:
        project_id = self.state.active_project_id
        if not project_id:
            return False
        self.log(f"Launching preview for {project_id}...")
        try:
            await self.control.run_project(project_id)
        except ProjectHubError as e:
            self.state.error = e.message
            self.log(f"Error: {e.message}")
            return False
        self.log("Project running! Port assigned. Switching to preview.")
        self.state.view_mode = "preview"
        return True

    # ─── Prompt ──────────────────────────────────────────────────────────

    async def submit_prompt(self, text: str) -> bool:
        if not text.strip():
            return False
        self.state.prompt_status = "loading"
        self.log("Syncing prompt to the datastore...")
        try:
            await self.prompts.submit_prompt(text, self.state.active_project_id)
        except ProjectHubError as e:
            self.state.prompt_status = "error"
            self.log(f"Sync error: {e.message}")
            return False
        self.state.prompt_status = "success"
        self.log("Prompt synced to the datastore.")
        return True

    def reset_prompt_status(self) -> None:
        self.state.prompt_status = "idle"

    def set_view(self, mode: str) -> None:
        if mode not in VIEW_MODES:
            raise ValueError(f"Unknown view mode: {mode!r}")
        self.state.view_mode = mode
