from __future__ import annotations

import threading
import time
from datetime import timedelta

import pytest

from filecatalog.errors import JobNotFoundError
from filecatalog.jobs import JobContext, JobKind, JobOrchestrator, JobState
from filecatalog.progress import JOB_STATE, ProgressChannel


def _wait_for(predicate, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(0.01)
    raise AssertionError("condition not met in time")


@pytest.fixture
def orchestrator():
    instance = JobOrchestrator(max_workers=2)
    yield instance
    instance.shutdown(wait=True)


class TestJobOrchestrator:
    def test_enqueue_returns_immediately(self, orchestrator: JobOrchestrator) -> None:
        release = threading.Event()
        orchestrator.register(JobKind.REFRESH, lambda context: release.wait(5))

        job_id = orchestrator.enqueue(JobKind.REFRESH)

        job = orchestrator.get_status(job_id)
        assert job.state in (JobState.QUEUED, JobState.RUNNING)
        release.set()
        assert orchestrator.wait(job_id, timeout=5).state is JobState.SUCCEEDED

    def test_result_merged_into_metadata(self, orchestrator: JobOrchestrator) -> None:
        def handler(context: JobContext):
            context.set_total(3)
            context.advance(3)
            context.update_metadata(stage="done")
            return {"added": 3}

        orchestrator.register("train", handler)
        job = orchestrator.wait(orchestrator.enqueue("train"), timeout=5)

        assert job.state is JobState.SUCCEEDED
        assert job.metadata == {"stage": "done", "added": 3}
        assert (job.processed_items, job.total_items) == (3, 3)
        assert job.progress == 100.0
        assert job.started_at is not None and job.completed_at is not None

    def test_failure_is_isolated(self, orchestrator: JobOrchestrator) -> None:
        def broken(_context: JobContext):
            raise RuntimeError("disk on fire")

        orchestrator.register(JobKind.MOVE, broken)
        orchestrator.register(JobKind.TRAIN, lambda context: {"ok": True})

        failed = orchestrator.wait(orchestrator.enqueue(JobKind.MOVE), timeout=5)
        succeeded = orchestrator.wait(orchestrator.enqueue(JobKind.TRAIN), timeout=5)

        assert failed.state is JobState.FAILED
        assert failed.error == "disk on fire"
        assert succeeded.state is JobState.SUCCEEDED

    def test_unknown_job(self, orchestrator: JobOrchestrator) -> None:
        with pytest.raises(JobNotFoundError):
            orchestrator.get_status("missing")
        with pytest.raises(JobNotFoundError):
            orchestrator.cancel("missing")

    def test_unregistered_kind(self, orchestrator: JobOrchestrator) -> None:
        with pytest.raises(ValueError):
            orchestrator.enqueue(JobKind.REFRESH)
        with pytest.raises(ValueError):
            orchestrator.enqueue("unknown-kind")

    def test_cancel_running_job_at_checkpoint(self, orchestrator: JobOrchestrator) -> None:
        started = threading.Event()
        batches: list[int] = []

        def handler(context: JobContext):
            for index in range(100):
                context.checkpoint()
                batches.append(index)
                started.set()
                time.sleep(0.01)

        orchestrator.register(JobKind.REFRESH, handler)
        job_id = orchestrator.enqueue(JobKind.REFRESH)
        started.wait(5)

        assert orchestrator.cancel(job_id) is True
        job = orchestrator.wait(job_id, timeout=5)

        assert job.state is JobState.CANCELLED
        assert len(batches) < 100

    def test_cancel_queued_job(self) -> None:
        orchestrator = JobOrchestrator(max_workers=1)
        release = threading.Event()
        ran: list[str] = []
        orchestrator.register(JobKind.REFRESH, lambda context: release.wait(5))
        orchestrator.register(JobKind.TRAIN, lambda context: ran.append(context.job_id))
        try:
            blocker = orchestrator.enqueue(JobKind.REFRESH)
            queued = orchestrator.enqueue(JobKind.TRAIN)

            assert orchestrator.get_status(queued).state is JobState.QUEUED
            assert orchestrator.cancel(queued) is True
            assert orchestrator.get_status(queued).state is JobState.CANCELLED

            release.set()
            orchestrator.wait(blocker, timeout=5)
            orchestrator.shutdown(wait=True)
            assert ran == []
            assert orchestrator.get_status(queued).state is JobState.CANCELLED
        finally:
            release.set()
            orchestrator.shutdown(wait=True)

    def test_cancel_finished_job(self, orchestrator: JobOrchestrator) -> None:
        orchestrator.register(JobKind.TRAIN, lambda context: None)
        job_id = orchestrator.enqueue(JobKind.TRAIN)
        orchestrator.wait(job_id, timeout=5)

        assert orchestrator.cancel(job_id) is False
        assert orchestrator.get_status(job_id).state is JobState.SUCCEEDED

    def test_state_observed_monotonically(self) -> None:
        channel = ProgressChannel()
        states: list[tuple[str, str]] = []
        channel.register_callback(lambda event: states.append((event.job_id, event.payload["state"])), [JOB_STATE])
        orchestrator = JobOrchestrator(max_workers=2, channel=channel)
        orchestrator.register(JobKind.TRAIN, lambda context: time.sleep(0.01))
        rank = {"Queued": 0, "Running": 1, "Succeeded": 2}
        try:
            job_ids = [orchestrator.enqueue(JobKind.TRAIN) for _ in range(5)]
            observed: dict[str, list[str]] = {job_id: [] for job_id in job_ids}
            while not all(orchestrator.get_status(job_id).state.is_terminal for job_id in job_ids):
                for job_id in job_ids:
                    observed[job_id].append(orchestrator.get_status(job_id).state.value)
            for job_id in job_ids:
                observed[job_id].append(orchestrator.get_status(job_id).state.value)
                ranks = [rank[state] for state in observed[job_id]]
                assert ranks == sorted(ranks)
        finally:
            orchestrator.shutdown(wait=True)

        for job_id in job_ids:
            published = [state for owner, state in states if owner == job_id]
            assert published[-1] == "Succeeded"
            assert published.count("Succeeded") == 1
            assert "Running" in published

    def test_list_jobs_and_cleanup(self, orchestrator: JobOrchestrator) -> None:
        orchestrator.register(JobKind.TRAIN, lambda context: None)
        first = orchestrator.enqueue(JobKind.TRAIN)
        second = orchestrator.enqueue(JobKind.TRAIN)
        orchestrator.wait(first, timeout=5)
        orchestrator.wait(second, timeout=5)

        assert [job.job_id for job in orchestrator.list_jobs()] == [first, second]
        assert orchestrator.cleanup(max_age=timedelta(hours=1)) == 0
        assert orchestrator.cleanup(max_age=0) == 2
        assert orchestrator.list_jobs() == []

    def test_enqueue_after_shutdown(self) -> None:
        orchestrator = JobOrchestrator()
        orchestrator.register(JobKind.TRAIN, lambda context: None)
        orchestrator.shutdown()

        with pytest.raises(RuntimeError):
            orchestrator.enqueue(JobKind.TRAIN)

    def test_to_dict(self, orchestrator: JobOrchestrator) -> None:
        orchestrator.register(JobKind.FORCE_CATEGORIZE, lambda context: {"categorized": 0})
        job = orchestrator.wait(orchestrator.enqueue(JobKind.FORCE_CATEGORIZE), timeout=5)

        data = job.to_dict()

        assert data["kind"] == "forceCategorize"
        assert data["state"] == "Succeeded"
        assert data["metadata"] == {"categorized": 0}
