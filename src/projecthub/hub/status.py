"""Readiness tracking and the console log ring.

Client side, ``StatusTracker`` asks the local control service whether a
project is ready to run.  Any failure counts as "not ready": the operator is
offered an install instead of being shown stale content.

Server side, ``ReadinessMarkers`` is what the control service answers from:
a marker file inside the project directory that only a fully successful
acquisition writes.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from urllib.parse import quote

import httpx

from projecthub.config import Settings
from projecthub.errors import InvalidProjectId
from projecthub.models import validate_project_id

logger = logging.getLogger(__name__)

READY_MARKER = ".projecthub-ready"


# ─── Log ring ────────────────────────────────────────────────────────────


class LogBuffer:
    """Fixed-size ring of timestamped console lines (oldest dropped first)."""

    def __init__(self, maxlen: int = 50) -> None:
        self._lines: deque[str] = deque(maxlen=maxlen)

    def add(self, message: str) -> str:
        line = f"[{datetime.now().strftime('%H:%M:%S')}] {message}"
        self._lines.append(line)
        return line

    __call__ = add

    def lines(self) -> list[str]:
        return list(self._lines)

    def clear(self) -> None:
        self._lines.clear()

    def __len__(self) -> int:
        return len(self._lines)


# ─── Server side ─────────────────────────────────────────────────────────


class ReadinessMarkers:
    """Readiness flags stored as marker files under each project directory."""

    def __init__(self, projects_dir: Path) -> None:
        self.projects_dir = Path(projects_dir)

    def _marker(self, project_id: str) -> Path:
        return self.projects_dir / validate_project_id(project_id) / READY_MARKER

    def is_ready(self, project_id: str) -> bool:
        try:
            return self._marker(project_id).is_file()
        except (OSError, InvalidProjectId):
            return False

    def mark_ready(self, project_id: str) -> None:
        marker = self._marker(project_id)
        marker.parent.mkdir(parents=True, exist_ok=True)
        marker.write_text(datetime.now().isoformat(), encoding="utf-8")

    def clear(self, project_id: str) -> None:
        self._marker(project_id).unlink(missing_ok=True)


# ─── Client side ─────────────────────────────────────────────────────────


def _ready_flag(payload: object) -> bool:
    return isinstance(payload, dict) and payload.get("readyToRun") is True


class StatusTracker:
    """Query the local control service for cached project readiness."""

    def __init__(
        self,
        control_url: str,
        *,
        timeout: float = 3.0,
        concurrency: int = 4,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.control_url = control_url.rstrip("/")
        self.timeout = timeout
        self.concurrency = max(1, concurrency)
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> StatusTracker:
        return cls(
            settings.control_url,
            timeout=settings.status_timeout,
            concurrency=settings.status_concurrency,
            **kwargs,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def is_ready(self, project_id: str) -> bool:
        async with self._client() as client:
            return await self._query_one(client, project_id)

    async def _query_one(self, client: httpx.AsyncClient, project_id: str) -> bool:
        url = f"{self.control_url}/project-status/{quote(project_id, safe='')}"
        try:
            resp = await client.get(url)
            if not resp.is_success:
                logger.debug("Status query for %s returned %s", project_id, resp.status_code)
                return False
            return _ready_flag(resp.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("Status query for %s failed: %s", project_id, e)
            return False

    async def ready_map(self, project_ids: Iterable[str]) -> dict[str, bool]:
        """Readiness of many projects: one batched call, else bounded per-id calls."""
        ids = list(project_ids)
        if not ids:
            return {}
        async with self._client() as client:
            batched = await self._query_batch(client, ids)
            if batched is not None:
                return batched

            sem = asyncio.Semaphore(self.concurrency)

            async def _one(pid: str) -> bool:
                async with sem:
                    return await self._query_one(client, pid)

            flags = await asyncio.gather(*(_one(pid) for pid in ids))
        return dict(zip(ids, flags))

    async def _query_batch(
        self, client: httpx.AsyncClient, ids: list[str]
    ) -> dict[str, bool] | None:
        try:
            resp = await client.get(
                f"{self.control_url}/project-status", params={"ids": ",".join(ids)}
            )
            if not resp.is_success:
                return None
            statuses = resp.json().get("statuses")
        except (httpx.HTTPError, ValueError, AttributeError):
            return None
        if not isinstance(statuses, dict):
            return None
        return {pid: statuses.get(pid) is True for pid in ids}
