"""
Local side of notice attachments.

Uploads go through four stages:

  1. stage       written under <root>/tmp/<batch>/
  2. relocate    moved into <root>/<academy>/<lecture>/<num>/
  3. mirror      copied to object storage under public/notice/<academy>/<lecture>/<num>/
  4. reclaim     the scoped local directory is removed

Nothing is rolled back after stage 2. A scoped directory still present
on disk is an orphan whose mirror failed; reconcile_orphans() retries it.
"""

import logging
import os
import shutil
import uuid
from pathlib import Path
from typing import BinaryIO, Iterable, List, Tuple

from academypro.errors import BadRequestError, StorageError

log = logging.getLogger(__name__)

# ─── Config ───────────────────────────────────────────────────────────────────

NOTICE_ROOT = Path(os.getenv("NOTICE_ROOT", "public/notice"))
NOTICE_KEY_PREFIX = "public/notice"
MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
STAGING_DIR = "tmp"

_CHUNK = 1024 * 1024


# ─── Identifiers ──────────────────────────────────────────────────────────────

def format_notice_id(academy_id: str, lecture_id: int, notice_num: int) -> str:
    return f"{academy_id}_{lecture_id}_{notice_num}"


def parse_notice_id(notice_id: str) -> Tuple[str, int, int]:
    """Split from the right so academy ids may themselves contain '_'."""
    parts = (notice_id or "").rsplit("_", 2)
    if len(parts) != 3 or not parts[0]:
        raise BadRequestError(f"Malformed notice id: {notice_id!r}", error_code="INVALID_NOTICE_ID")
    try:
        return parts[0], int(parts[1]), int(parts[2])
    except ValueError:
        raise BadRequestError(f"Malformed notice id: {notice_id!r}", error_code="INVALID_NOTICE_ID")


def notice_key_prefix(academy_id: str, lecture_id: int, notice_num: int) -> str:
    return f"{NOTICE_KEY_PREFIX}/{academy_id}/{lecture_id}/{notice_num}"


def scoped_dir(root: Path, academy_id: str, lecture_id: int, notice_num: int) -> Path:
    return Path(root) / academy_id / str(lecture_id) / str(notice_num)


def safe_file_name(file_name: str) -> str:
    name = Path(file_name or "").name
    if name in ("", ".", ".."):
        raise BadRequestError(f"Invalid file name: {file_name!r}", error_code="INVALID_FILE")
    return name


# ─── Pipeline stages ──────────────────────────────────────────────────────────

def stage_uploads(root: Path, uploads: Iterable[Tuple[str, BinaryIO]]) -> Path:
    """Write uploads into a fresh staging directory, enforcing the size limit."""
    staging = Path(root) / STAGING_DIR / uuid.uuid4().hex
    staging.mkdir(parents=True, exist_ok=True)
    try:
        for file_name, stream in uploads:
            target = staging / safe_file_name(file_name)
            written = 0
            with open(target, "wb") as out:
                while True:
                    chunk = stream.read(_CHUNK)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > MAX_FILE_SIZE:
                        raise BadRequestError(
                            f"{target.name} exceeds the 10MB limit", error_code="FILE_TOO_LARGE",
                        )
                    out.write(chunk)
    except Exception:
        discard(staging)
        raise
    return staging


def relocate(staging: Path, target: Path) -> List[str]:
    """Move staged files into the notice's scoped directory. Returns the file names moved."""
    try:
        target.mkdir(parents=True, exist_ok=True)
        names = []
        for path in sorted(staging.iterdir()):
            os.replace(path, target / path.name)
            names.append(path.name)
        staging.rmdir()
    except OSError as e:
        log.error("Relocating %s → %s failed: %s", staging, target, e)
        raise StorageError("Failed to move uploaded files")
    return names


def mirror(storage, directory: Path, prefix: str) -> List[str]:
    return storage.upload_dir(directory, prefix)


def reclaim(directory: Path) -> None:
    """Remove a local directory tree. A missing tree is not an error."""
    if directory.exists():
        shutil.rmtree(directory)
        _prune_empty_parents(directory.parent, stop_at=2)


def discard(directory: Path) -> None:
    shutil.rmtree(directory, ignore_errors=True)


def _prune_empty_parents(directory: Path, stop_at: int) -> None:
    # <root>/<academy>/<lecture>: only the two levels above the notice dir are pruned
    for _ in range(stop_at):
        try:
            directory.rmdir()
        except OSError:
            return
        directory = directory.parent


# ─── Recovery ─────────────────────────────────────────────────────────────────

def find_orphans(root: Path) -> List[Tuple[str, int, int]]:
    """Scoped directories left on disk, as (academy_id, lecture_id, notice_num)."""
    root = Path(root)
    if not root.exists():
        return []
    found = []
    for academy_dir in sorted(p for p in root.iterdir() if p.is_dir() and p.name != STAGING_DIR):
        for lecture_dir in sorted(p for p in academy_dir.iterdir() if p.is_dir()):
            for notice_dir in sorted(p for p in lecture_dir.iterdir() if p.is_dir()):
                if lecture_dir.name.isdigit() and notice_dir.name.isdigit():
                    found.append((academy_dir.name, int(lecture_dir.name), int(notice_dir.name)))
    return found


def reconcile_orphans(root: Path, storage) -> List[str]:
    """
    Re-mirror every orphaned notice directory and reclaim it.
    Returns the notice ids recovered; failures stay on disk for the next run.
    """
    recovered = []
    for academy_id, lecture_id, notice_num in find_orphans(root):
        notice_id = format_notice_id(academy_id, lecture_id, notice_num)
        directory = scoped_dir(root, academy_id, lecture_id, notice_num)
        try:
            mirror(storage, directory, notice_key_prefix(academy_id, lecture_id, notice_num))
        except StorageError:
            log.warning("Orphan %s still cannot be mirrored", notice_id)
            continue
        reclaim(directory)
        recovered.append(notice_id)
        log.info("Recovered orphaned attachments of notice %s", notice_id)
    return recovered
