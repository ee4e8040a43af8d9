"""Configuration management for Project Hub.

Settings come from (lowest to highest priority) field defaults,
``~/.projecthub/config.json`` and ``PROJECTHUB_*`` environment variables
(or a ``.env`` file in the working directory).
"""

import json
import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import dotenv_values
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_ARCHIVE_NAME = "project.zip"
ENV_FILE = ".env"


def _chmod_safe(path: Path, mode: int) -> None:
    """Set file permissions, ignoring errors on Windows."""
    try:
        path.chmod(mode)
    except OSError:
        pass


def get_config_dir() -> Path:
    """Get the config directory, creating if needed."""
    config_dir = Path.home() / ".projecthub"
    config_dir.mkdir(exist_ok=True)
    _chmod_safe(config_dir, 0o700)
    return config_dir


def get_config_path() -> Path:
    """Get the config file path."""
    return get_config_dir() / "config.json"


def _env_has(field_name: str) -> bool:
    """True when the process env or the .env file sets this field."""
    key = f"PROJECTHUB_{field_name}".upper()
    names = {k.upper() for k in os.environ}
    names.update(k.upper() for k in dotenv_values(ENV_FILE))
    return key in names


class Settings(BaseSettings):
    """Project Hub settings with env and file support."""

    model_config = SettingsConfigDict(env_prefix="PROJECTHUB_", env_file=ENV_FILE, extra="ignore")

    # Remote archive store
    store_url: str = Field(
        default="http://localhost:8000", description="Base URL of the remote archive store"
    )
    store_headers: dict[str, str] = Field(
        default_factory=lambda: {"ngrok-skip-browser-warning": "true"},
        description="Extra headers sent with every archive store request",
    )

    # Local control service
    control_host: str = Field(default="127.0.0.1", description="Control service bind host")
    control_port: int = Field(default=4000, description="Control service port")
    control_url: str = Field(
        default="http://localhost:4000", description="Base URL clients use to reach the control service"
    )
    projects_dir: Path = Field(
        default_factory=lambda: Path.cwd() / "projects",
        description="Root directory that acquired projects are extracted into",
    )

    # Dependency install
    install_command: list[str] = Field(
        default_factory=lambda: ["npm", "install"],
        description="Package manager command run inside the project directory",
    )
    install_timeout: float = Field(
        default=600.0, description="Seconds before a running install is killed (0 disables)"
    )

    # Preview
    preview_command: list[str] = Field(
        default_factory=lambda: [
            "npm",
            "run",
            "dev",
            "--",
            "--host",
            "{host}",
            "--port",
            "{port}",
            "--strictPort",
        ],
        description="Dev server command; {host} and {port} are substituted",
    )
    preview_host: str = Field(default="localhost", description="Preview server host")
    preview_port: int = Field(default=3001, description="Preview server port")
    preview_startup_timeout: float = Field(
        default=45.0, description="Seconds to wait for the preview port to open"
    )

    # HTTP
    request_timeout: float = Field(default=30.0, description="Per-request HTTP timeout")
    status_timeout: float = Field(default=3.0, description="Timeout for readiness queries")
    status_concurrency: int = Field(
        default=4, description="Max parallel readiness queries when no batch endpoint exists"
    )

    # Presentation
    log_ring_size: int = Field(default=50, description="Lines kept in the console log ring")
    required_files: list[str] = Field(
        default_factory=lambda: ["index.html", "package.json", "vite.config.ts"],
        description="Files every project archive is expected to contain",
    )

    # Prompt datastore (Supabase REST)
    supabase_url: str | None = Field(default=None, description="Supabase project URL")
    supabase_key: str | None = Field(default=None, description="Supabase anon/service key")
    prompts_table: str = Field(default="prompts", description="Table that prompts are inserted into")

    debug: bool = Field(default=False, description="Enable debug logging")

    @property
    def preview_url(self) -> str:
        return f"http://{self.preview_host}:{self.preview_port}/"

    def save(self) -> None:
        """Save settings to the config file (the Supabase key is never written)."""
        config_path = get_config_path()
        data = json.loads(self.model_dump_json(exclude={"supabase_key"}))
        config_path.write_text(json.dumps(data, indent=2))
        _chmod_safe(config_path, 0o600)

    @classmethod
    def load(cls) -> "Settings":
        """Load settings from the config file, letting env vars override it."""
        config_path = get_config_path()
        data: dict = {}
        if config_path.exists():
            try:
                data = json.loads(config_path.read_text())
            except (json.JSONDecodeError, OSError) as e:
                logger.warning("Ignoring unreadable config at %s: %s", config_path, e)

        if data:
            # Init kwargs beat env vars in pydantic-settings, so drop the
            # file values that the environment already sets.
            env_keys = {name for name in cls.model_fields if _env_has(name)}
            data = {k: v for k, v in data.items() if k not in env_keys}
            try:
                return cls(**data)
            except ValueError as e:
                logger.warning("Invalid config at %s, using defaults: %s", config_path, e)
        return cls()


@lru_cache
def get_settings(force_reload: bool = False) -> Settings:
    """Get cached settings instance."""
    if force_reload:
        get_settings.cache_clear()
    return Settings.load()
