# Project Hub data models.

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from projecthub.config import DEFAULT_ARCHIVE_NAME
from projecthub.errors import InvalidProjectId


@dataclass
class Project:
    """A catalog entry: one remotely hosted project and its archive files."""

    id: str
    files: list[str] = field(default_factory=list)
    ready_to_run: bool = False

    @property
    def archive_name(self) -> str:
        """The archive to acquire: the first published file, else ``project.zip``."""
        return self.files[0] if self.files else DEFAULT_ARCHIVE_NAME

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Project:
        if not isinstance(data, dict):
            raise ValueError(f"Catalog entry is not an object: {data!r}")
        project_id = data.get("id")
        files = data.get("files") or []
        if not isinstance(project_id, str) or not project_id:
            raise ValueError(f"Catalog entry has no id: {data!r}")
        if not isinstance(files, list):
            raise ValueError(f"Catalog entry '{project_id}' has a non-list 'files'")
        return cls(id=project_id, files=[str(f) for f in files])

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "files": list(self.files), "readyToRun": self.ready_to_run}


@dataclass
class VirtualFile:
    path: str
    content: str
    is_binary: bool = False


@dataclass(frozen=True)
class AcquisitionResult:
    project_id: str
    path: Path
    archive_name: str


class PipelineStage(str, Enum):
    IDLE = "idle"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    INSTALLING = "installing"
    READY = "ready"
    FAILED = "failed"
    CANCELLED = "cancelled"


def validate_project_id(project_id: str) -> str:
    """Reject ids that could not be used as a single directory name."""
    if (
        not project_id
        or project_id in (".", "..")
        or ".." in project_id
        or "/" in project_id
        or "\\" in project_id
        or "\x00" in project_id
    ):
        raise InvalidProjectId(f"Invalid project id: {project_id!r}")
    return project_id
