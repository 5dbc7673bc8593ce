"""Move-aside and restore of pre-existing destination files.

A destination that already exists is renamed before ffmpeg may touch it:
`clip.mp4` becomes `clip.backup.mp4` (or `clip.old.mp4` when a file is
re-encoded onto itself), then `clip.backup2.mp4`, `clip.backup3.mp4`, ...
until a free name is found. The Runner moves the file back if the job fails.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)

BACKUP_TAG = "backup"
IN_PLACE_TAG = "old"


def backup_candidates(destination: Path, in_place: bool = False) -> Iterator[Path]:
    tag = IN_PLACE_TAG if in_place else BACKUP_TAG
    stem = destination.stem
    suffix = destination.suffix
    yield destination.with_name(f"{stem}.{tag}{suffix}")
    n = 2
    while True:
        yield destination.with_name(f"{stem}.{tag}{n}{suffix}")
        n += 1


def next_backup_path(destination: Path, in_place: bool = False) -> Path:
    for candidate in backup_candidates(destination, in_place):
        if not candidate.exists():
            return candidate
    raise AssertionError("unreachable")


def _replace(src: Path, dst: Path) -> None:
    try:
        os.replace(src, dst)
    except OSError:
        # Cross-device rename
        if dst.exists():
            dst.unlink()
        shutil.move(str(src), str(dst))


def move_aside(destination: Path, in_place: bool = False) -> Path:
    """Renames an existing destination to a free backup name and returns it."""
    backup = next_backup_path(destination, in_place)
    _replace(destination, backup)
    logger.info(f"BACKUP_MOVE: {destination.name} -> {backup.name}")
    return backup


def restore(backup: Path, destination: Path) -> None:
    """Puts the backup back over the destination, replacing any partial output."""
    _replace(backup, destination)
    logger.info(f"BACKUP_RESTORE: {backup.name} -> {destination.name}")
