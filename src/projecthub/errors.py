# Error taxonomy shared by the hub modules and the control service.

from __future__ import annotations


class ProjectHubError(Exception):
    """Base class for every recoverable Project Hub failure."""

    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)

    @property
    def message(self) -> str:
        return str(self)


class CatalogUnavailable(ProjectHubError):
    status_code = 502


class ArchiveNotFound(ProjectHubError):
    status_code = 404


class NetworkError(ProjectHubError):
    status_code = 502


class CorruptArchive(ProjectHubError):
    status_code = 422


class DiskWriteError(ProjectHubError):
    status_code = 500


class InstallFailed(ProjectHubError):
    """The package manager exited non-zero (or could not be run at all)."""

    status_code = 500

    def __init__(self, exit_code: int, message: str = "") -> None:
        self.exit_code = exit_code
        super().__init__(message or f"Dependency install failed with exit code {exit_code}")


class RunFailed(ProjectHubError):
    status_code = 409


class SyncFailed(ProjectHubError):
    status_code = 502


class InvalidProjectId(ProjectHubError):
    status_code = 400


class AcquisitionCancelled(ProjectHubError):
    status_code = 409

    def __init__(self, project_id: str) -> None:
        self.project_id = project_id
        super().__init__(f"Acquisition of '{project_id}' was cancelled")
