"""Dependency installer runner.

Runs the package manager (``npm install`` by default) inside a project
directory and forwards stdout/stderr to a sink line by line while the
process is still running, so progress is visible before it exits.

The child runs in its own process group; on timeout or cancellation the
whole group is terminated, then killed after a grace period.
"""

import asyncio
import logging
import os
import sys
from collections.abc import Callable, Sequence
from pathlib import Path

from projecthub.config import Settings
from projecthub.errors import InstallFailed
from projecthub.hub.processes import terminate_process

logger = logging.getLogger(__name__)

OutputSink = Callable[[str], None]

_STREAM_LIMIT = 1024 * 1024


def _resolve_cmd(cmd: list[str]) -> list[str]:
    """Wrap npm-style ``.cmd`` shims on Windows, which exec cannot run directly."""
    if sys.platform == "win32":
        return ["cmd.exe", "/c", *cmd]
    return cmd


class DependencyInstaller:
    """Install a project's dependencies with an external package manager."""

    def __init__(
        self,
        command: Sequence[str] = ("npm", "install"),
        *,
        timeout: float | None = 600.0,
        extra_env: dict[str, str] | None = None,
    ) -> None:
        if not command:
            raise ValueError("Install command must not be empty")
        self.command = list(command)
        self.timeout = timeout or None
        self.extra_env = dict(extra_env or {})

    @classmethod
    def from_settings(cls, settings: Settings) -> "DependencyInstaller":
        return cls(settings.install_command, timeout=settings.install_timeout)

    async def install(self, project_dir: Path, on_output: OutputSink | None = None) -> int:
        """Run the install command in project_dir and return its (zero) exit code.

        Raises InstallFailed for a non-zero exit, a timeout (exit code -1) or
        a missing executable (exit code 127).
        """
        cmd = _resolve_cmd(self.command)
        logger.info("Running %s in %s", " ".join(self.command), project_dir)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(project_dir),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **self.extra_env},
                limit=_STREAM_LIMIT,
                start_new_session=sys.platform != "win32",
            )
        except FileNotFoundError as e:
            raise InstallFailed(127, f"Package manager not found: {self.command[0]}") from e
        except OSError as e:
            raise InstallFailed(126, f"Could not start {self.command[0]}: {e}") from e

        try:
            await asyncio.wait_for(self._communicate(proc, on_output), timeout=self.timeout)
        except TimeoutError:
            await terminate_process(proc)
            raise InstallFailed(
                -1, f"{' '.join(self.command)} timed out after {self.timeout:g}s"
            ) from None
        except ValueError as e:
            # StreamReader refuses a line longer than its limit.
            await terminate_process(proc)
            raise InstallFailed(
                -1, f"{' '.join(self.command)} wrote an output line over {_STREAM_LIMIT} bytes"
            ) from e
        except asyncio.CancelledError:
            logger.info("Install in %s cancelled, terminating pid %s", project_dir, proc.pid)
            await terminate_process(proc)
            raise

        code = proc.returncode
        if code != 0:
            logger.warning("%s exited with code %s", " ".join(self.command), code)
            raise InstallFailed(code)
        logger.info("%s finished successfully", " ".join(self.command))
        return 0

    async def _communicate(
        self, proc: asyncio.subprocess.Process, on_output: OutputSink | None
    ) -> None:
        await asyncio.gather(
            self._pump(proc.stdout, on_output),
            self._pump(proc.stderr, on_output, is_stderr=True),
        )
        await proc.wait()

    async def _pump(
        self,
        stream: asyncio.StreamReader | None,
        on_output: OutputSink | None,
        is_stderr: bool = False,
    ) -> None:
        if stream is None:
            return
        async for raw_line in stream:
            line = raw_line.decode("utf-8", errors="replace").rstrip()
            if not line:
                continue
            logger.log(logging.WARNING if is_stderr else logging.INFO, "install: %s", line)
            if on_output is not None:
                on_output(line)
