"""Command line front end.

  projecthub serve                  run the local control service
  projecthub list                   catalog with readiness
  projecthub files <id>             paths inside a project's archive
  projecthub install <id>           download, extract and install via the service
  projecthub run <id>               start the preview server
  projecthub stop <id>              stop the preview server
  projecthub prompt <id> <text>     sync a prompt to the datastore
"""

import argparse
import asyncio
import json
import logging
import sys

from projecthub import __version__
from projecthub.config import Settings, get_settings
from projecthub.errors import CatalogUnavailable, ProjectHubError
from projecthub.hub.control import LocalControlClient
from projecthub.hub.extractor import extract, warn_missing_required
from projecthub.hub.prompts import PromptSync
from projecthub.hub.status import StatusTracker
from projecthub.hub.store import ArchiveStoreClient
from projecthub.logging_setup import setup_logging
from projecthub.models import Project, validate_project_id

logger = logging.getLogger(__name__)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2))


async def _resolve_project(store: ArchiveStoreClient, project_id: str, file_name: str | None) -> Project:
    """Catalog entry for project_id; the explicit file name wins when given."""
    validate_project_id(project_id)
    if file_name:
        return Project(id=project_id, files=[file_name])
    try:
        for project in await store.list_projects():
            if project.id == project_id:
                return project
    except CatalogUnavailable as e:
        logger.warning("Catalog unavailable, using default archive name: %s", e)
    return Project(id=project_id)


# ─── Commands ────────────────────────────────────────────────────────────


def cmd_serve(settings: Settings, args: argparse.Namespace) -> int:
    import uvicorn

    from projecthub.server import create_app

    host = args.host or settings.control_host
    port = args.port or settings.control_port
    uvicorn.run(create_app(settings), host=host, port=port, log_level="debug" if settings.debug else "info")
    return 0


async def cmd_list(settings: Settings, args: argparse.Namespace) -> int:
    store = ArchiveStoreClient.from_settings(settings)
    projects = await store.list_projects()
    ready = await StatusTracker.from_settings(settings).ready_map(p.id for p in projects)
    for project in projects:
        project.ready_to_run = ready.get(project.id, False)
    _print_json([p.to_dict() for p in projects])
    return 0


async def cmd_files(settings: Settings, args: argparse.Namespace) -> int:
    store = ArchiveStoreClient.from_settings(settings)
    project = await _resolve_project(store, args.project_id, args.file)
    files = await asyncio.to_thread(extract, await store.fetch_archive(project.id, project.archive_name))
    warn_missing_required(files.keys(), settings.required_files)
    _print_json([{"path": f.path, "binary": f.is_binary} for f in files.values()])
    return 0


async def cmd_install(settings: Settings, args: argparse.Namespace) -> int:
    store = ArchiveStoreClient.from_settings(settings)
    project = await _resolve_project(store, args.project_id, args.file)
    zip_url = store.archive_url(project.id, project.archive_name)
    path = await LocalControlClient.from_settings(settings).download_zip(project.id, zip_url)
    _print_json({"status": "ok", "projectId": project.id, "path": path})
    return 0


async def cmd_run(settings: Settings, args: argparse.Namespace) -> int:
    result = await LocalControlClient.from_settings(settings).run_project(
        validate_project_id(args.project_id)
    )
    _print_json(result)
    return 0


async def cmd_stop(settings: Settings, args: argparse.Namespace) -> int:
    result = await LocalControlClient.from_settings(settings).stop_project(
        validate_project_id(args.project_id)
    )
    _print_json(result)
    return 0


async def cmd_prompt(settings: Settings, args: argparse.Namespace) -> int:
    await PromptSync.from_settings(settings).submit_prompt(args.text, args.project_id)
    _print_json({"status": "ok", "projectId": args.project_id})
    return 0


_ASYNC_COMMANDS = {
    "list": cmd_list,
    "files": cmd_files,
    "install": cmd_install,
    "run": cmd_run,
    "stop": cmd_stop,
    "prompt": cmd_prompt,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="projecthub", description="Browse, install and preview remotely hosted projects"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the local control service")
    serve.add_argument("--host", default=None, help="Bind address (default from settings)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (default from settings)")

    sub.add_parser("list", help="List catalog projects with readiness")

    for name, help_text in (
        ("files", "List the files inside a project's archive"),
        ("install", "Download, extract and install a project"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("project_id")
        p.add_argument("--file", default=None, help="Archive file name (default from catalog)")

    for name, help_text in (
        ("run", "Start the preview server"),
        ("stop", "Stop the preview server"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("project_id")

    prompt = sub.add_parser("prompt", help="Sync a prompt to the datastore")
    prompt.add_argument("project_id")
    prompt.add_argument("text")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(debug=args.debug or settings.debug)

    try:
        if args.command == "serve":
            return cmd_serve(settings, args)
        return asyncio.run(_ASYNC_COMMANDS[args.command](settings, args))
    except ProjectHubError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
