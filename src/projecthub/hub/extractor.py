"""Archive extractor — zip bytes to an in-memory file map or to disk.

Two materialisations of the same archive:

  extract()          -> {relative_path: VirtualFile}  (file browser view)
  extract_to_disk()  -> files under target_dir          (install / run flow)

Disk extraction streams each member separately so a large project is never
fully decompressed in memory.
"""

import base64
import io
import logging
import shutil
import zipfile
import zlib
from collections.abc import Iterable
from pathlib import Path, PurePosixPath

from projecthub.errors import CorruptArchive, DiskWriteError
from projecthub.models import VirtualFile

logger = logging.getLogger(__name__)

_COPY_CHUNK = 64 * 1024

# Raised by zipfile while inflating a damaged member.
_MEMBER_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError)


def _open_archive(raw: bytes) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(io.BytesIO(raw), "r")
    except (zipfile.BadZipFile, ValueError) as e:
        raise CorruptArchive("That doesn't look like a valid zip archive.") from e


def _member_path(name: str) -> PurePosixPath:
    """Normalise a member name and refuse anything that escapes the target."""
    rel = PurePosixPath(name.replace("\\", "/"))
    if rel.is_absolute() or ".." in rel.parts or (rel.parts and ":" in rel.parts[0]):
        raise CorruptArchive(f"Archive entry escapes the project directory: {name!r}")
    return rel


def _decode(data: bytes) -> tuple[str, bool]:
    """Return (content, is_binary). Binary content is carried as base64 text."""
    if b"\x00" not in data:
        try:
            return data.decode("utf-8"), False
        except UnicodeDecodeError:
            pass
    return base64.b64encode(data).decode("ascii"), True


def file_bytes(vfile: VirtualFile) -> bytes:
    """Raw bytes of a virtual file, undoing the base64 wrapping of binary entries."""
    if vfile.is_binary:
        return base64.b64decode(vfile.content)
    return vfile.content.encode("utf-8")


# ─── In-memory ───────────────────────────────────────────────────────────


def extract(raw: bytes) -> dict[str, VirtualFile]:
    """Unpack every non-directory entry into a VirtualFile keyed by its path."""
    files: dict[str, VirtualFile] = {}
    with _open_archive(raw) as zf:
        for info in zf.infolist():
            if info.is_dir():
                continue
            try:
                data = zf.read(info)
            except _MEMBER_ERRORS as e:
                raise CorruptArchive(f"Could not read '{info.filename}': {e}") from e
            content, is_binary = _decode(data)
            files[info.filename] = VirtualFile(
                path=info.filename, content=content, is_binary=is_binary
            )
    return files


def member_names(raw: bytes) -> list[str]:
    """Paths of the non-directory entries, in central-directory order."""
    with _open_archive(raw) as zf:
        return [info.filename for info in zf.infolist() if not info.is_dir()]


def missing_required_files(paths: Iterable[str], required: Iterable[str]) -> list[str]:
    """Required files that no path matches, either exactly or by suffix."""
    paths = list(paths)
    return [
        name
        for name in required
        if name not in paths and not any(p.endswith(name) for p in paths)
    ]


def warn_missing_required(paths: Iterable[str], required: Iterable[str]) -> list[str]:
    missing = missing_required_files(paths, required)
    for name in missing:
        logger.warning("Required file not found in archive: %s", name)
    return missing


# ─── On disk ─────────────────────────────────────────────────────────────


def extract_to_disk(raw: bytes, target_dir: Path) -> Path:
    """Write every non-directory entry under target_dir, overwriting silently.

    No rollback: when a write fails, entries already written stay on disk.
    """
    target_dir = Path(target_dir)
    written = 0
    with _open_archive(raw) as zf:
        members = [(info, _member_path(info.filename)) for info in zf.infolist()]
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DiskWriteError(f"Cannot create {target_dir}: {e}") from e

        for info, rel in members:
            if info.is_dir() or not rel.parts:
                continue
            dest = target_dir.joinpath(*rel.parts)
            try:
                dest.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(info) as src, dest.open("wb") as out:
                    shutil.copyfileobj(src, out, _COPY_CHUNK)
            except _MEMBER_ERRORS as e:
                raise CorruptArchive(f"Could not read '{info.filename}': {e}") from e
            except OSError as e:
                raise DiskWriteError(f"Cannot write {dest}: {e}") from e
            written += 1

    logger.info("Extracted %d file(s) into %s", written, target_dir)
    return target_dir
