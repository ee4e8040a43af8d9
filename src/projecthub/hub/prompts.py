# Prompt sync: persist free-text prompts to the remote Supabase table.
#
# Talks to Supabase's PostgREST endpoint directly:
#   POST {supabase_url}/rest/v1/{table}   [{content, project_id, created_at}]
# Independent of the acquisition pipeline; a failure here never touches it.

from __future__ import annotations

import logging
from datetime import UTC, datetime

import httpx

from projecthub.config import Settings
from projecthub.errors import SyncFailed

logger = logging.getLogger(__name__)


class PromptSync:
    """Insert prompts into a Supabase table."""

    def __init__(
        self,
        supabase_url: str | None,
        api_key: str | None,
        *,
        table: str = "prompts",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.supabase_url = (supabase_url or "").rstrip("/")
        self.api_key = api_key or ""
        self.table = table
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> PromptSync:
        return cls(
            settings.supabase_url,
            settings.supabase_key,
            table=settings.prompts_table,
            timeout=settings.request_timeout,
            **kwargs,
        )

    @property
    def configured(self) -> bool:
        return bool(self.supabase_url and self.api_key)

    async def submit_prompt(self, text: str, project_id: str | None) -> None:
        if not text or not text.strip():
            raise SyncFailed("Prompt is empty")
        if not self.configured:
            raise SyncFailed("Supabase is not configured (set PROJECTHUB_SUPABASE_URL/KEY)")

        row = {
            "content": text,
            "project_id": project_id,
            "created_at": datetime.now(UTC).isoformat(),
        }
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Prefer": "return=minimal",
        }
        url = f"{self.supabase_url}/rest/v1/{self.table}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(url, json=[row], headers=headers)
        except httpx.HTTPError as e:
            raise SyncFailed(f"Could not reach Supabase: {e}") from e

        if not resp.is_success:
            try:
                detail = resp.json().get("message") or resp.text[:200]
            except (ValueError, AttributeError):
                detail = resp.text[:200]
            raise SyncFailed(f"Supabase insert failed (HTTP {resp.status_code}): {detail}")

        logger.info("Prompt synced for project %s", project_id)
