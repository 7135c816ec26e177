"""
Background job orchestration.

Long operations are submitted as jobs: ``enqueue`` registers the job and
returns its id immediately, a shared thread pool runs the body, and callers
poll ``get_status`` for immutable snapshots. Job bodies cooperate with
cancellation through ``JobContext.checkpoint()`` at batch boundaries.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from .errors import JobCancelledError, JobNotFoundError
from .logging_utils import render_fields_block
from .progress import JOB_STATE, ProgressChannel

LOGGER = logging.getLogger(__name__)


class JobKind(str, Enum):
    REFRESH = "refresh"
    MOVE = "move"
    FORCE_CATEGORIZE = "forceCategorize"
    TRAIN = "train"


class JobState(str, Enum):
    QUEUED = "Queued"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset({JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED})

_STATE_RANK = {
    JobState.QUEUED: 0,
    JobState.RUNNING: 1,
    JobState.SUCCEEDED: 2,
    JobState.FAILED: 2,
    JobState.CANCELLED: 2,
}


@dataclass(frozen=True)
class Job:
    """Point-in-time view of a job."""

    job_id: str
    kind: JobKind
    state: JobState
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    processed_items: int = 0
    total_items: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @property
    def progress(self) -> float:
        if self.total_items <= 0:
            return 100.0 if self.state is JobState.SUCCEEDED else 0.0
        return min(100.0, self.processed_items * 100.0 / self.total_items)

    @property
    def elapsed(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.completed_at or datetime.now()
        return (end - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "kind": self.kind.value,
            "state": self.state.value,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "processed_items": self.processed_items,
            "total_items": self.total_items,
            "progress": round(self.progress, 1),
            "metadata": dict(self.metadata),
            "error": self.error,
        }


@dataclass
class _JobRecord:
    job_id: str
    kind: JobKind
    payload: dict[str, Any]
    created_at: datetime = field(default_factory=datetime.now)
    state: JobState = JobState.QUEUED
    started_at: datetime | None = None
    completed_at: datetime | None = None
    processed_items: int = 0
    total_items: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    cancel_event: threading.Event = field(default_factory=threading.Event)
    done_event: threading.Event = field(default_factory=threading.Event)
    future: Future | None = None

    def snapshot(self) -> Job:
        return Job(
            job_id=self.job_id,
            kind=self.kind,
            state=self.state,
            created_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
            processed_items=self.processed_items,
            total_items=self.total_items,
            metadata=dict(self.metadata),
            error=self.error,
        )


class JobContext:
    """Handle given to a running job body."""

    def __init__(self, orchestrator: "JobOrchestrator", record: _JobRecord) -> None:
        self._orchestrator = orchestrator
        self._record = record

    @property
    def job_id(self) -> str:
        return self._record.job_id

    @property
    def kind(self) -> JobKind:
        return self._record.kind

    @property
    def payload(self) -> dict[str, Any]:
        return self._record.payload

    @property
    def cancel_requested(self) -> bool:
        return self._record.cancel_event.is_set()

    def checkpoint(self) -> None:
        """Raise ``JobCancelledError`` when cancellation has been requested."""
        if self._record.cancel_event.is_set():
            raise JobCancelledError(f"Job {self.job_id} was cancelled")

    def set_total(self, total: int) -> None:
        with self._orchestrator._lock:
            self._record.total_items = max(total, 0)

    def add_total(self, count: int) -> None:
        with self._orchestrator._lock:
            self._record.total_items += max(count, 0)

    def advance(self, count: int = 1) -> None:
        with self._orchestrator._lock:
            self._record.processed_items += count

    def update_metadata(self, values: Mapping[str, Any] | None = None, **extra: Any) -> None:
        with self._orchestrator._lock:
            if values:
                self._record.metadata.update(values)
            self._record.metadata.update(extra)

    def publish(self, topic: str, payload: dict[str, Any] | None = None) -> None:
        self._orchestrator.channel.publish(topic, payload, job_id=self.job_id)


JobHandler = Callable[[JobContext], "Mapping[str, Any] | None"]


class JobOrchestrator:
    """Runs registered job handlers on a shared worker pool."""

    def __init__(
        self,
        handlers: Mapping[JobKind | str, JobHandler] | None = None,
        *,
        max_workers: int = 2,
        channel: ProgressChannel | None = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.channel = channel or ProgressChannel()
        self._handlers: dict[JobKind, JobHandler] = {}
        for kind, handler in (handlers or {}).items():
            self.register(kind, handler)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="filecatalog-job")
        self._lock = threading.Lock()
        self._jobs: dict[str, _JobRecord] = {}
        self._closed = False

    def register(self, kind: JobKind | str, handler: JobHandler) -> None:
        self._handlers[JobKind(kind)] = handler

    def enqueue(self, kind: JobKind | str, payload: Mapping[str, Any] | None = None) -> str:
        job_kind = JobKind(kind)
        if job_kind not in self._handlers:
            raise ValueError(f"No handler registered for job kind '{job_kind.value}'")

        record = _JobRecord(job_id=uuid.uuid4().hex, kind=job_kind, payload=dict(payload or {}))
        with self._lock:
            if self._closed:
                raise RuntimeError("Job orchestrator has been shut down")
            self._jobs[record.job_id] = record
            queued = record.snapshot()

        LOGGER.debug("Queued %s job %s", job_kind.value, record.job_id)
        self._publish_state(queued)
        with self._lock:
            # a shutdown in between has already cancelled the record
            if not self._closed:
                record.future = self._executor.submit(self._run, record)
        return record.job_id

    def get_status(self, job_id: str) -> Job:
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None:
                raise JobNotFoundError(job_id)
            return record.snapshot()

    def list_jobs(self) -> list[Job]:
        with self._lock:
            snapshots = [record.snapshot() for record in self._jobs.values()]
        return sorted(snapshots, key=lambda job: job.created_at)

    def cancel(self, job_id: str) -> bool:
        """Request cancellation.

        Returns False when the job already reached a terminal state. A job that
        has not started yet is cancelled immediately.
        """
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None:
                raise JobNotFoundError(job_id)
            if record.state.is_terminal:
                return False
            record.cancel_event.set()
            snapshot = None
            if record.state is JobState.QUEUED:
                snapshot = self._apply_transition(record, JobState.CANCELLED, "Cancelled before start")

        LOGGER.info("Cancellation requested for job %s", job_id)
        if snapshot is not None:
            self._finish_transition(record, snapshot)
        return True

    def wait(self, job_id: str, timeout: float | None = None) -> Job:
        with self._lock:
            record = self._jobs.get(job_id)
        if record is None:
            raise JobNotFoundError(job_id)
        record.done_event.wait(timeout)
        return self.get_status(job_id)

    def cleanup(self, max_age: timedelta | float = timedelta(hours=24)) -> int:
        """Forget terminal jobs that completed more than ``max_age`` ago."""
        if not isinstance(max_age, timedelta):
            max_age = timedelta(seconds=float(max_age))
        cutoff = datetime.now() - max_age
        with self._lock:
            stale = [
                job_id
                for job_id, record in self._jobs.items()
                if record.state.is_terminal and record.completed_at is not None and record.completed_at <= cutoff
            ]
            for job_id in stale:
                del self._jobs[job_id]
        if stale:
            LOGGER.debug("Removed %d finished jobs", len(stale))
        return len(stale)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
            pending = [record for record in self._jobs.values() if record.state is JobState.QUEUED]
        for record in pending:
            record.cancel_event.set()
            self._transition(record, JobState.CANCELLED, error="Orchestrator shut down")
        self._executor.shutdown(wait=wait, cancel_futures=True)

    def __enter__(self) -> "JobOrchestrator":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown(wait=True)

    def _run(self, record: _JobRecord) -> None:
        if not self._transition(record, JobState.RUNNING):
            return

        context = JobContext(self, record)
        handler = self._handlers[record.kind]
        try:
            result = handler(context)
        except JobCancelledError as exc:
            self._transition(record, JobState.CANCELLED, error=str(exc))
        except Exception as exc:  # noqa: BLE001 - a failing job never takes down the pool
            LOGGER.debug("Job %s raised", record.job_id, exc_info=True)
            self._transition(record, JobState.FAILED, error=str(exc) or exc.__class__.__name__)
        else:
            if result:
                with self._lock:
                    record.metadata.update(result)
            self._transition(record, JobState.SUCCEEDED)

    def _transition(self, record: _JobRecord, new_state: JobState, *, error: str | None = None) -> bool:
        with self._lock:
            snapshot = self._apply_transition(record, new_state, error)
        if snapshot is None:
            return False
        self._finish_transition(record, snapshot)
        return True

    def _apply_transition(self, record: _JobRecord, new_state: JobState, error: str | None) -> Job | None:
        # caller holds self._lock
        current = record.state
        if current.is_terminal or _STATE_RANK[new_state] <= _STATE_RANK[current]:
            LOGGER.debug("Ignoring transition %s -> %s for job %s", current.value, new_state.value, record.job_id)
            return None
        now = datetime.now()
        record.state = new_state
        if new_state is JobState.RUNNING:
            record.started_at = now
        if new_state.is_terminal:
            record.completed_at = now
            record.error = error
        return record.snapshot()

    def _finish_transition(self, record: _JobRecord, snapshot: Job) -> None:
        if snapshot.state.is_terminal:
            record.done_event.set()
            self._log_terminal(snapshot)
        self._publish_state(snapshot)

    def _publish_state(self, job: Job) -> None:
        self.channel.publish(
            JOB_STATE,
            {
                "state": job.state.value,
                "kind": job.kind.value,
                "processed_items": job.processed_items,
                "total_items": job.total_items,
                "error": job.error,
            },
            job_id=job.job_id,
        )

    @staticmethod
    def _log_terminal(job: Job) -> None:
        fields: dict[str, object] = {
            "Job": job.job_id,
            "Kind": job.kind.value,
            "State": job.state.value,
            "Items": f"{job.processed_items}/{job.total_items}",
            "Elapsed": f"{job.elapsed:.2f}s",
        }
        if job.error:
            fields["Error"] = job.error
        level = logging.ERROR if job.state is JobState.FAILED else logging.INFO
        LOGGER.log(level, render_fields_block("Job Finished", fields, pad_top=False))
