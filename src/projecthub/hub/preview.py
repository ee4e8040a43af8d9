"""Preview runner — starts the project's dev server for the preview pane.

One preview at a time: every project previews on the same configured port,
so starting a second project stops the first.

    projects/
      demo/
        .projecthub-ready          <- written by the acquisition pipeline
        .projecthub-preview.pid    <- PID of the dev server (managed)
        .projecthub-preview.log    <- dev server output (managed)
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from projecthub.config import Settings
from projecthub.errors import RunFailed
from projecthub.hub.processes import (
    clear_pid,
    is_pid_alive,
    is_port_listening,
    read_pid,
    terminate_pid,
    terminate_process,
    write_pid,
)
from projecthub.hub.status import ReadinessMarkers
from projecthub.models import validate_project_id

logger = logging.getLogger(__name__)

_PID_FILENAME = ".projecthub-preview.pid"
_LOG_FILENAME = ".projecthub-preview.log"


class PreviewRunner:
    def __init__(
        self,
        projects_dir: Path,
        command: Sequence[str],
        *,
        host: str = "localhost",
        port: int = 3001,
        startup_timeout: float = 45.0,
        markers: ReadinessMarkers | None = None,
    ) -> None:
        self.projects_dir = Path(projects_dir)
        self.command = list(command)
        self.host = host
        self.port = port
        self.startup_timeout = startup_timeout
        self.markers = markers or ReadinessMarkers(self.projects_dir)
        self._proc: asyncio.subprocess.Process | None = None
        self._project_id: str | None = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls, settings: Settings, markers: ReadinessMarkers | None = None
    ) -> PreviewRunner:
        return cls(
            settings.projects_dir,
            settings.preview_command,
            host=settings.preview_host,
            port=settings.preview_port,
            startup_timeout=settings.preview_startup_timeout,
            markers=markers,
        )

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}/"

    @property
    def active_project(self) -> str | None:
        return self._project_id if self._proc_alive() else None

    def _proc_alive(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    def _pid_path(self, project_id: str) -> Path:
        return self.projects_dir / project_id / _PID_FILENAME

    def log_path(self, project_id: str) -> Path:
        return self.projects_dir / project_id / _LOG_FILENAME

    def _resolved_command(self) -> list[str]:
        cmd = [part.format(host=self.host, port=self.port) for part in self.command]
        if sys.platform == "win32":
            return ["cmd.exe", "/c", *cmd]
        return cmd

    def is_running(self, project_id: str) -> bool:
        """In-memory process first, then the PID file left by an earlier server."""
        if self._project_id == project_id and self._proc_alive():
            return True
        pid_path = self._pid_path(project_id)
        pid = read_pid(pid_path)
        if pid is not None and is_pid_alive(pid):
            return True
        if pid is not None:
            clear_pid(pid_path)
        return False

    # ─── Start ───────────────────────────────────────────────────────────

    async def start(self, project_id: str) -> dict[str, Any]:
        """Launch the preview server for a ready project and wait until it listens."""
        validate_project_id(project_id)
        async with self._lock:
            if not self.markers.is_ready(project_id):
                raise RunFailed(f"Project '{project_id}' is not installed yet")

            if self.is_running(project_id):
                return {
                    "status": "already_running",
                    "message": f"Preview for '{project_id}' is already running",
                    "url": self.url,
                }

            if self._project_id and self._project_id != project_id:
                await self._stop_locked(self._project_id)

            if is_port_listening(self.host, self.port):
                raise RunFailed(f"Preview port {self.port} is already in use")

            project_dir = self.projects_dir / project_id
            cmd = self._resolved_command()
            logger.info("Launching preview for '%s': %s", project_id, " ".join(cmd))

            log_path = self.log_path(project_id)
            try:
                with log_path.open("ab") as log_file:
                    proc = await asyncio.create_subprocess_exec(
                        *cmd,
                        cwd=str(project_dir),
                        stdin=asyncio.subprocess.DEVNULL,
                        stdout=log_file,
                        stderr=asyncio.subprocess.STDOUT,
                        start_new_session=sys.platform != "win32",
                    )
            except OSError as e:
                raise RunFailed(f"Could not start preview server: {e}") from e

            self._proc = proc
            self._project_id = project_id
            write_pid(self._pid_path(project_id), proc.pid)

            try:
                await self._wait_until_listening(proc, log_path)
            except RunFailed:
                await self._stop_locked(project_id)
                raise

            return {
                "status": "ok",
                "message": f"Preview for '{project_id}' running on port {self.port}",
                "url": self.url,
                "pid": proc.pid,
                "port": self.port,
            }

    async def _wait_until_listening(self, proc: asyncio.subprocess.Process, log_path: Path) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.startup_timeout
        while loop.time() < deadline:
            if proc.returncode is not None:
                raise RunFailed(
                    f"Preview server exited with code {proc.returncode}. See {log_path} for details."
                )
            if is_port_listening(self.host, self.port):
                return
            await asyncio.sleep(0.25)
        raise RunFailed(
            f"Preview server did not start listening on port {self.port} "
            f"within {self.startup_timeout:g}s. See {log_path} for details."
        )

    # ─── Stop ────────────────────────────────────────────────────────────

    async def stop(self, project_id: str) -> dict[str, Any]:
        validate_project_id(project_id)
        async with self._lock:
            stopped = await self._stop_locked(project_id)
        if not stopped:
            return {"status": "ok", "message": f"Preview for '{project_id}' was not running"}
        return {"status": "ok", "message": f"Preview for '{project_id}' stopped"}

    async def stop_all(self) -> None:
        if self._project_id:
            await self.stop(self._project_id)

    async def _stop_locked(self, project_id: str) -> bool:
        pid_path = self._pid_path(project_id)
        stopped = False
        if self._project_id == project_id and self._proc is not None:
            if self._proc.returncode is None:
                await terminate_process(self._proc)
                stopped = True
            self._proc = None
            self._project_id = None
        else:
            pid = read_pid(pid_path)
            if pid is not None and is_pid_alive(pid):
                await terminate_pid(pid)
                stopped = True
        clear_pid(pid_path)
        if stopped:
            logger.info("Stopped preview for '%s'", project_id)
        return stopped
