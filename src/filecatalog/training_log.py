"""Append-only training log of ``id;category;filename`` lines.

Every successful move appends one line so the next retrain learns from the
user's decisions. The classifier reads the same file back as its training set.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .errors import TrainingDataNotFoundError
from .models import TrainingLogEntry

LOGGER = logging.getLogger(__name__)

HEADER = "Id;Area;FileName"

_LOCKS: dict[Path, threading.Lock] = {}
_LOCKS_GUARD = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    key = path.expanduser().absolute()
    with _LOCKS_GUARD:
        lock = _LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _LOCKS[key] = lock
        return lock


@dataclass(slots=True)
class ParsedTrainingLog:
    entries: list[TrainingLogEntry] = field(default_factory=list)
    skipped: int = 0
    header: bool = False


def parse_line(line: str) -> TrainingLogEntry | None:
    parts = line.rstrip("\r\n").split(";", 2)
    if len(parts) != 3:
        return None
    raw_id, category, file_name = (part.strip() for part in parts)
    try:
        file_id = int(raw_id)
    except ValueError:
        return None
    if not category or not file_name:
        return None
    return TrainingLogEntry(file_id=file_id, category=category, file_name=file_name)


def parse_lines(lines: Iterable[str]) -> ParsedTrainingLog:
    """Parse log lines, skipping a leading header and malformed rows."""
    result = ParsedTrainingLog()
    first = True
    for line in lines:
        if not line.strip():
            first = False
            continue
        entry = parse_line(line)
        if entry is None:
            if first:
                result.header = True
            else:
                result.skipped += 1
        else:
            result.entries.append(entry)
        first = False
    return result


class TrainingLog:
    """Training log stored at ``path``.

    Appends from every instance pointing at the same file share one lock, so
    concurrent move jobs never interleave lines within a batch.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = _lock_for(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def append_entries(self, entries: Sequence[TrainingLogEntry]) -> int:
        if not entries:
            return 0
        payload = "".join(f"{entry.to_line()}\n" for entry in entries)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            new_file = not self.path.exists() or self.path.stat().st_size == 0
            with self.path.open("a", encoding="utf-8", newline="\n") as handle:
                if new_file:
                    handle.write(f"{HEADER}\n")
                handle.write(payload)
        LOGGER.debug("Appended %d training log entries to %s", len(entries), self.path)
        return len(entries)

    def read(self) -> ParsedTrainingLog:
        if not self.path.is_file():
            raise TrainingDataNotFoundError(f"Training data not found: {self.path}")
        with self._lock:
            with self.path.open("r", encoding="utf-8") as handle:
                parsed = parse_lines(handle)
        if parsed.skipped:
            LOGGER.warning("Skipped %d malformed training log lines in %s", parsed.skipped, self.path)
        return parsed

    def read_entries(self) -> list[TrainingLogEntry]:
        return self.read().entries
