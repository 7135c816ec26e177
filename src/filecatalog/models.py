from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

UNKNOWN_CATEGORY = "Unknown"


class FileFilter(str, Enum):
    ALL = "all"
    CATEGORIZED = "categorized"
    TO_CATEGORIZE = "to_categorize"
    NEW = "new"


@dataclass(slots=True)
class FileRecord:
    """One tracked filesystem entry.

    ``path`` is the directory holding the file; the full location is
    ``Path(path) / name``.
    """

    name: str
    path: str
    size: int = 0
    modified_at: Optional[dt.datetime] = None
    category: Optional[str] = None
    needs_categorization: bool = True
    is_new: bool = True
    excluded_from_move: bool = False
    active: bool = True
    id: Optional[int] = None

    def mark_categorized(self, category: str) -> None:
        self.category = category
        self.needs_categorization = False


@dataclass(slots=True, frozen=True)
class MoveRequestItem:
    file_id: int
    target_category: str


class MoveStatus(str, Enum):
    COMPLETED = "Completed"
    FAILED = "Failed"
    ID_NOT_PRESENT = "IdNotPresent"


@dataclass(slots=True)
class MoveOutcome:
    file_id: int
    file_name: Optional[str]
    status: MoveStatus
    message: str
    elapsed: float = 0.0
    category: Optional[str] = None

    def to_payload(self) -> dict[str, object]:
        return {
            "file_id": self.file_id,
            "file_name": self.file_name,
            "status": self.status.value,
            "message": self.message,
            "category": self.category,
            "elapsed": round(self.elapsed, 4),
        }


@dataclass(slots=True)
class MoveResult:
    outcomes: List[MoveOutcome] = field(default_factory=list)
    missing_ids: List[int] = field(default_factory=list)
    aborted: bool = False
    cancelled: bool = False
    persisted: int = 0
    log_entries: int = 0
    elapsed: float = 0.0

    @property
    def moved(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status is MoveStatus.COMPLETED)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status is MoveStatus.FAILED)

    @property
    def not_present(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status is MoveStatus.ID_NOT_PRESENT)

    def summary(self) -> dict[str, object]:
        return {
            "total": len(self.outcomes),
            "moved": self.moved,
            "failed": self.failed,
            "not_present": self.not_present,
            "missing_ids": list(self.missing_ids),
            "aborted": self.aborted,
            "cancelled": self.cancelled,
            "persisted": self.persisted,
            "log_entries": self.log_entries,
            "elapsed": round(self.elapsed, 3),
        }


@dataclass(slots=True, frozen=True)
class TrainingLogEntry:
    file_id: int
    category: str
    file_name: str

    def to_line(self) -> str:
        return f"{self.file_id};{self.category};{self.file_name}"

    @classmethod
    def from_record(cls, record: FileRecord) -> "TrainingLogEntry":
        if record.id is None or record.category is None:
            raise ValueError(f"Record {record.name!r} needs an id and a category to be logged")
        return cls(file_id=record.id, category=record.category, file_name=record.name)
