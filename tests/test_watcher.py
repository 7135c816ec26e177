from __future__ import annotations

import threading
from datetime import datetime
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from filecatalog.actions import JobTicket, RefreshRequest
from filecatalog.config import WatcherSettings
from filecatalog.errors import ValidationError
from filecatalog.jobs import Job, JobKind, JobState
from filecatalog.watcher import OriginWatcher


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def mock_observer():
    """Mock watchdog Observer."""
    return MagicMock()


@pytest.fixture
def actions():
    service = MagicMock()
    counter = {"value": 0}

    def enqueue(_request=None):
        counter["value"] += 1
        return JobTicket(
            job_id=f"job-{counter['value']}",
            kind=JobKind.REFRESH,
            state=JobState.QUEUED,
            created_at=datetime.now(),
        )

    service.enqueue_refresh.side_effect = enqueue
    service.get_status.side_effect = lambda job_id: Job(
        job_id=job_id, kind=JobKind.REFRESH, state=JobState.SUCCEEDED, created_at=datetime.now()
    )
    return service


def _created(path: Path, *, is_directory: bool = False):
    return SimpleNamespace(src_path=str(path), is_directory=is_directory)


def _watcher(actions, origin: Path, observer, clock=None, **settings) -> OriginWatcher:
    return OriginWatcher(
        actions,
        origin,
        WatcherSettings(enabled=True, debounce_seconds=settings.pop("debounce_seconds", 0.0), **settings),
        refresh_request=RefreshRequest(batch_size=50),
        observer_factory=lambda: observer,
        clock=clock or FakeClock(),
    )


class TestOriginWatcher:
    def test_schedules_non_recursive_watch(self, actions, mock_observer, tmp_path: Path) -> None:
        watcher = _watcher(actions, tmp_path, mock_observer)

        mock_observer.schedule.assert_called_once_with(watcher.handler, str(tmp_path), recursive=False)

    def test_new_file_queues_refresh(self, actions, mock_observer, tmp_path: Path) -> None:
        watcher = _watcher(actions, tmp_path, mock_observer)

        watcher.handler.on_created(_created(tmp_path / "movie.mp4"))

        assert watcher.tick() == "job-1"
        actions.enqueue_refresh.assert_called_once_with(RefreshRequest(batch_size=50))
        assert watcher.tick() is None

    def test_ignores_hidden_nested_and_directories(self, actions, mock_observer, tmp_path: Path) -> None:
        watcher = _watcher(actions, tmp_path, mock_observer)

        watcher.handler.on_created(_created(tmp_path / ".partial"))
        watcher.handler.on_created(_created(tmp_path / "sub" / "file.txt"))
        watcher.handler.on_created(_created(tmp_path / "folder", is_directory=True))

        assert watcher.tick() is None
        actions.enqueue_refresh.assert_not_called()

    def test_include_and_ignore_patterns(self, actions, mock_observer, tmp_path: Path) -> None:
        watcher = _watcher(actions, tmp_path, mock_observer, include=["*.mkv", "*.part"], ignore=["*.part"])

        watcher.handler.on_created(_created(tmp_path / "notes.txt"))
        watcher.handler.on_created(_created(tmp_path / "movie.part"))
        assert watcher.tick() is None

        watcher.handler.on_moved(SimpleNamespace(dest_path=str(tmp_path / "movie.mkv"), is_directory=False))
        assert watcher.tick() == "job-1"

    def test_debounce(self, actions, mock_observer, tmp_path: Path) -> None:
        clock = FakeClock()
        watcher = _watcher(actions, tmp_path, mock_observer, clock=clock, debounce_seconds=5.0)

        watcher.handler.on_created(_created(tmp_path / "a.mp4"))
        assert watcher.tick() == "job-1"

        clock.now += 1
        watcher.handler.on_created(_created(tmp_path / "b.mp4"))
        assert watcher.tick() is None

        clock.now += 5
        assert watcher.tick() == "job-2"

    def test_waits_for_running_refresh(self, actions, mock_observer, tmp_path: Path) -> None:
        state = {"value": JobState.RUNNING}
        actions.get_status.side_effect = lambda job_id: Job(
            job_id=job_id, kind=JobKind.REFRESH, state=state["value"], created_at=datetime.now()
        )
        watcher = _watcher(actions, tmp_path, mock_observer)

        watcher.handler.on_created(_created(tmp_path / "a.mp4"))
        assert watcher.tick() == "job-1"
        watcher.handler.on_created(_created(tmp_path / "b.mp4"))
        assert watcher.tick() is None

        state["value"] = JobState.SUCCEEDED
        assert watcher.tick() == "job-2"
        assert watcher.triggered_jobs == ["job-1", "job-2"]

    def test_enqueue_failure_keeps_changes(self, actions, mock_observer, tmp_path: Path) -> None:
        enqueue = actions.enqueue_refresh.side_effect
        actions.enqueue_refresh.side_effect = ValidationError("bad request")
        watcher = _watcher(actions, tmp_path, mock_observer)

        watcher.handler.on_created(_created(tmp_path / "a.mp4"))
        assert watcher.tick() is None
        assert watcher.triggered_jobs == []

        actions.enqueue_refresh.side_effect = enqueue
        assert watcher.tick() == "job-1"

    def test_run_forever_stops(self, actions, mock_observer, tmp_path: Path) -> None:
        watcher = _watcher(actions, tmp_path, mock_observer)
        stop = threading.Event()
        stop.set()

        watcher.run_forever(stop)

        mock_observer.start.assert_called_once()
        mock_observer.stop.assert_called_once()
        mock_observer.join.assert_called_once()
