"""Origin directory scanning.

Only the top level of the origin directory is listed. Hidden entries,
sub-directories and symlinks are skipped, and an optional extension filter
narrows the result.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .logging_utils import render_fields_block

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ScannedFile:
    name: str
    directory: Path
    size: int
    modified_at: datetime

    @property
    def path(self) -> Path:
        return self.directory / self.name


def normalize_extensions(extensions: Iterable[str] | None) -> frozenset[str] | None:
    """Lower-case extensions and give each a leading dot; None or empty means no filter."""
    if not extensions:
        return None
    normalized = set()
    for extension in extensions:
        cleaned = extension.strip().lower()
        if not cleaned:
            continue
        normalized.add(cleaned if cleaned.startswith(".") else f".{cleaned}")
    return frozenset(normalized) or None


def skip_reason_for_entry(path: Path) -> str | None:
    """Return why ``path`` should not be catalogued, or None to keep it."""
    if path.name.startswith("."):
        return "hidden"
    if path.is_symlink():
        return "symlink"
    if not path.is_file():
        return "not a file"
    return None


def list_origin_files(origin_dir: Path, extensions: Iterable[str] | None = None) -> list[ScannedFile]:
    """List the catalogable files directly inside ``origin_dir``, sorted by name.

    Raises:
        FileNotFoundError: ``origin_dir`` does not exist or is not a directory
    """
    if not origin_dir.is_dir():
        LOGGER.warning(render_fields_block("Origin Directory Missing", {"Path": origin_dir}))
        raise FileNotFoundError(f"Origin directory not found: {origin_dir}")

    allowed = normalize_extensions(extensions)
    files: list[ScannedFile] = []
    for entry in sorted(origin_dir.iterdir(), key=lambda item: item.name):
        reason = skip_reason_for_entry(entry)
        if reason:
            LOGGER.debug("Skipping %s (%s)", entry, reason)
            continue
        if allowed is not None and entry.suffix.lower() not in allowed:
            continue
        stat = entry.stat()
        files.append(
            ScannedFile(
                name=entry.name,
                directory=origin_dir,
                size=stat.st_size,
                modified_at=datetime.fromtimestamp(stat.st_mtime),
            )
        )
    return files
