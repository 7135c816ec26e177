from __future__ import annotations

import fnmatch
import logging
import threading
import time
from collections.abc import Callable, Sequence
from pathlib import Path
from queue import Empty, Queue
from typing import TYPE_CHECKING

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .config import WatcherSettings
from .errors import FileCatalogError, JobNotFoundError

if TYPE_CHECKING:  # pragma: no cover
    from .actions import ActionsService, RefreshRequest

LOGGER = logging.getLogger(__name__)


class _OriginChangeHandler(FileSystemEventHandler):
    def __init__(self, queue: Queue[Path], root: Path, include: Sequence[str], ignore: Sequence[str]) -> None:
        self._queue = queue
        self._root = root
        self._include = list(include)
        self._ignore = list(ignore)

    def on_created(self, event) -> None:  # type: ignore[override]
        if getattr(event, "is_directory", False):
            return
        self._emit(Path(event.src_path))

    def on_moved(self, event) -> None:  # type: ignore[override]
        if getattr(event, "is_directory", False):
            return
        self._emit(Path(event.dest_path))

    def _emit(self, path: Path) -> None:
        if path.parent != self._root or path.name.startswith("."):
            return
        if not self._matches(path):
            return
        self._queue.put(path)

    def _matches(self, path: Path) -> bool:
        filename = path.name
        if self._include and not any(fnmatch.fnmatch(filename, pattern) for pattern in self._include):
            return False
        if self._ignore and any(fnmatch.fnmatch(filename, pattern) for pattern in self._ignore):
            return False
        return True


class OriginWatcher:
    """Queues a refresh job when new files land in the origin directory.

    Changes are collected for ``debounce_seconds`` after the last refresh; a new
    refresh is only submitted once the one started by this watcher has finished.
    """

    def __init__(
        self,
        actions: ActionsService,
        origin_dir: Path,
        settings: WatcherSettings,
        *,
        refresh_request: RefreshRequest | None = None,
        observer_factory: Callable[[], Observer] = Observer,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._actions = actions
        self._origin_dir = origin_dir
        self._settings = settings
        self._refresh_request = refresh_request
        self._clock = clock
        self._queue: Queue[Path] = Queue()
        self._handler = _OriginChangeHandler(self._queue, origin_dir, settings.include, settings.ignore)
        self._observer = observer_factory()
        self._observer.schedule(self._handler, str(origin_dir), recursive=False)
        self._pending: set[Path] = set()
        self._last_trigger = float("-inf")
        self._active_job: str | None = None
        self.triggered_jobs: list[str] = []

    @property
    def handler(self) -> _OriginChangeHandler:
        return self._handler

    def _refresh_running(self) -> bool:
        if self._active_job is None:
            return False
        try:
            job = self._actions.get_status(self._active_job)
        except JobNotFoundError:
            self._active_job = None
            return False
        if job.state.is_terminal:
            self._active_job = None
            return False
        return True

    def tick(self, timeout: float = 0.0) -> str | None:
        """Collect queued changes and submit a refresh when one is due.

        Returns the id of the submitted job, or None.
        """
        try:
            if timeout > 0:
                self._pending.add(self._queue.get(timeout=timeout))
            while True:
                self._pending.add(self._queue.get_nowait())
        except Empty:
            pass

        if not self._pending:
            return None
        if self._clock() - self._last_trigger < self._settings.debounce_seconds:
            return None
        if self._refresh_running():
            LOGGER.debug("Refresh still running; holding %d change(s)", len(self._pending))
            return None

        LOGGER.info("Detected %d new file(s) in %s; queueing refresh", len(self._pending), self._origin_dir)
        try:
            ticket = self._actions.enqueue_refresh(self._refresh_request)
        except FileCatalogError as exc:
            LOGGER.error("Failed to queue refresh: %s", exc)
            return None
        self._pending.clear()
        self._last_trigger = self._clock()
        self._active_job = ticket.job_id
        self.triggered_jobs.append(ticket.job_id)
        return ticket.job_id

    def run_forever(self, stop_event: threading.Event | None = None) -> None:
        stop_event = stop_event or threading.Event()
        self._observer.start()
        LOGGER.info("Watching %s for new files", self._origin_dir)
        try:
            while not stop_event.is_set():
                self.tick(timeout=1.0)
        finally:
            self._observer.stop()
            self._observer.join(timeout=5)


__all__ = ["OriginWatcher"]
