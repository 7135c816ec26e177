"""
Request validation and job submission.

``ActionsService`` is the entry point used by the CLI and the watcher. It
validates each request synchronously, raising ``ValidationError`` before
anything is queued, then hands the normalised payload to the orchestrator and
returns a ``JobTicket``.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .config import MAX_BATCH_SIZE, MIN_BATCH_SIZE
from .errors import ValidationError
from .jobs import Job, JobKind, JobOrchestrator, JobState
from .models import MoveRequestItem
from .mover import DEFAULT_BATCH_SIZE
from .persistence.gateway import BatchDataGateway
from .utils import is_safe_component

LOGGER = logging.getLogger(__name__)

MAX_MOVE_ITEMS = 1000
MAX_EXTENSION_FILTERS = 50
MAX_CATEGORY_LENGTH = 100

CATEGORY_PATTERN = re.compile(r"^[A-Za-z0-9_\-\s]+$")
EXTENSION_PATTERN = re.compile(r"^\.?[A-Za-z0-9]+$")


@dataclass(frozen=True)
class RefreshRequest:
    batch_size: int = DEFAULT_BATCH_SIZE
    extensions: Sequence[str] | None = None
    force_recategorization: bool = False


@dataclass(frozen=True)
class MoveRequest:
    items: Sequence[MoveRequestItem]
    continue_on_error: bool = True
    create_missing_directories: bool = True
    validate_categories: bool = False


@dataclass(frozen=True)
class JobTicket:
    """What a caller gets back from an enqueue."""

    job_id: str
    kind: JobKind
    state: JobState
    created_at: datetime
    total_items: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "kind": self.kind.value,
            "state": self.state.value,
            "created_at": self.created_at.isoformat(),
            "total_items": self.total_items,
            "metadata": dict(self.metadata),
        }


def validate_batch_size(batch_size: Any) -> int:
    if isinstance(batch_size, bool) or not isinstance(batch_size, int):
        raise ValidationError("Batch size must be an integer")
    if not MIN_BATCH_SIZE <= batch_size <= MAX_BATCH_SIZE:
        raise ValidationError(f"Batch size must be between {MIN_BATCH_SIZE} and {MAX_BATCH_SIZE}")
    return batch_size


def normalize_extension_filters(extensions: Sequence[str] | None) -> list[str]:
    """Validate extension filters and return them as lower-case ``.ext`` strings."""
    if not extensions:
        return []
    if isinstance(extensions, str):
        raise ValidationError("File extension filters must be a list")
    if len(extensions) > MAX_EXTENSION_FILTERS:
        raise ValidationError(f"Maximum {MAX_EXTENSION_FILTERS} file extension filters allowed")
    normalized: list[str] = []
    for extension in extensions:
        if not isinstance(extension, str) or not extension.strip():
            raise ValidationError("File extension filter cannot be empty")
        cleaned = extension.strip().lower()
        if not EXTENSION_PATTERN.match(cleaned):
            raise ValidationError(f"File extension {extension!r} must contain only letters and digits (e.g. .jpg)")
        if not cleaned.startswith("."):
            cleaned = f".{cleaned}"
        if cleaned not in normalized:
            normalized.append(cleaned)
    return normalized


def validate_move_items(items: Sequence[MoveRequestItem]) -> list[MoveRequestItem]:
    if not items:
        raise ValidationError("At least one file must be specified")
    if len(items) > MAX_MOVE_ITEMS:
        raise ValidationError(f"Maximum {MAX_MOVE_ITEMS} files can be moved in a single request")

    validated: list[MoveRequestItem] = []
    for index, item in enumerate(items):
        file_id = item.file_id
        if isinstance(file_id, bool) or not isinstance(file_id, int) or file_id <= 0:
            raise ValidationError(f"Item {index}: file id must be a positive integer")
        category = (item.target_category or "").strip()
        if not category:
            raise ValidationError(f"Item {index}: file category cannot be empty")
        if len(category) > MAX_CATEGORY_LENGTH:
            raise ValidationError(f"Item {index}: file category cannot exceed {MAX_CATEGORY_LENGTH} characters")
        if not CATEGORY_PATTERN.match(category) or not is_safe_component(category):
            raise ValidationError(
                f"Item {index}: file category can only contain letters, numbers, spaces, hyphens, and underscores"
            )
        validated.append(MoveRequestItem(file_id=file_id, target_category=category))
    return validated


class ActionsService:
    def __init__(self, orchestrator: JobOrchestrator, gateway: BatchDataGateway) -> None:
        self.orchestrator = orchestrator
        self.gateway = gateway

    def _ticket(self, job_id: str, *, total_items: int = 0, metadata: dict[str, Any] | None = None) -> JobTicket:
        job = self.orchestrator.get_status(job_id)
        return JobTicket(
            job_id=job.job_id,
            kind=job.kind,
            state=JobState.QUEUED,
            created_at=job.created_at,
            total_items=total_items,
            metadata=metadata or {},
        )

    def enqueue_refresh(self, request: RefreshRequest | None = None) -> JobTicket:
        request = request or RefreshRequest()
        batch_size = validate_batch_size(request.batch_size)
        extensions = normalize_extension_filters(request.extensions)
        payload = {
            "batch_size": batch_size,
            "extensions": extensions,
            "force_recategorization": bool(request.force_recategorization),
        }
        job_id = self.orchestrator.enqueue(JobKind.REFRESH, payload)
        LOGGER.info("Refresh job queued with id %s (batch size %d)", job_id, batch_size)
        return self._ticket(job_id, metadata=payload)

    def enqueue_move(self, request: MoveRequest) -> JobTicket:
        items = validate_move_items(request.items)

        missing: list[int] = []
        if not request.continue_on_error or request.validate_categories:
            records = self.gateway.get_by_ids([item.file_id for item in items])
            missing = list(dict.fromkeys(item.file_id for item in items if item.file_id not in records))
            if missing and not request.continue_on_error:
                raise ValidationError("Files not found: " + ", ".join(str(file_id) for file_id in missing))

        if request.validate_categories:
            known = set(self.gateway.get_categories())
            unknown = sorted({item.target_category for item in items} - known)
            if unknown:
                raise ValidationError("Unknown categories: " + ", ".join(unknown))

        payload = {
            "items": [{"file_id": item.file_id, "target_category": item.target_category} for item in items],
            "continue_on_error": bool(request.continue_on_error),
            "create_missing_directories": bool(request.create_missing_directories),
        }
        job_id = self.orchestrator.enqueue(JobKind.MOVE, payload)
        LOGGER.info("Move job queued with id %s for %d files", job_id, len(items))
        return self._ticket(
            job_id,
            total_items=len(items),
            metadata={
                "continue_on_error": request.continue_on_error,
                "create_missing_directories": request.create_missing_directories,
                "validate_categories": request.validate_categories,
                "missing_ids": missing,
            },
        )

    def enqueue_force_categorize(self, batch_size: int = DEFAULT_BATCH_SIZE) -> JobTicket:
        batch_size = validate_batch_size(batch_size)
        job_id = self.orchestrator.enqueue(JobKind.FORCE_CATEGORIZE, {"batch_size": batch_size})
        LOGGER.info("Categorization job queued with id %s", job_id)
        return self._ticket(job_id, metadata={"batch_size": batch_size})

    def enqueue_train(self) -> JobTicket:
        job_id = self.orchestrator.enqueue(JobKind.TRAIN)
        LOGGER.info("Training job queued with id %s", job_id)
        return self._ticket(job_id)

    def get_status(self, job_id: str) -> Job:
        if not job_id or not job_id.strip():
            raise ValidationError("Job id must not be empty")
        return self.orchestrator.get_status(job_id.strip())

    def cancel(self, job_id: str) -> bool:
        if not job_id or not job_id.strip():
            raise ValidationError("Job id must not be empty")
        return self.orchestrator.cancel(job_id.strip())
