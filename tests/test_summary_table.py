from __future__ import annotations

from datetime import datetime
from pathlib import Path

from rich.console import Console

from filecatalog.classifier import ModelInfo
from filecatalog.jobs import Job, JobKind, JobState
from filecatalog.models import FileRecord, MoveOutcome, MoveStatus
from filecatalog.summary_table import SummaryTableRenderer


def _render(renderer: SummaryTableRenderer, table) -> str:
    renderer.print_table(table)
    return renderer.console.export_text()


def _renderer() -> SummaryTableRenderer:
    return SummaryTableRenderer(Console(record=True, width=160, force_terminal=False))


def test_job_table_hides_outcomes() -> None:
    renderer = _renderer()
    job = Job(
        job_id="job-1",
        kind=JobKind.MOVE,
        state=JobState.FAILED,
        created_at=datetime.now(),
        processed_items=1,
        total_items=2,
        metadata={"moved": 1, "outcomes": [{"file_id": 1}]},
        error="Files not found: 9",
    )

    text = _render(renderer, renderer.render_job_table(job))

    assert "Job job-1" in text
    assert "Failed" in text
    assert "1/2 (50%)" in text
    assert "moved" in text
    assert "outcomes" not in text
    assert "Files not found: 9" in text


def test_outcome_table() -> None:
    renderer = _renderer()
    outcomes = [
        MoveOutcome(1, "a.mp4", MoveStatus.COMPLETED, "a.mp4 moved to Video", category="Video"),
        MoveOutcome(2, None, MoveStatus.ID_NOT_PRESENT, "File with id 2 is not present"),
    ]

    text = _render(renderer, renderer.render_outcome_table(outcomes))

    assert "✓ Completed" in text
    assert "⚠ IdNotPresent" in text
    assert "File with id 2 is not present" in text


def test_files_table_flags() -> None:
    renderer = _renderer()
    records = [
        FileRecord(id=1, name="a.mp4", path="/in", size=10),
        FileRecord(id=2, name="b.pdf", path="/out", category="Docs", needs_categorization=False, is_new=False),
    ]

    text = _render(renderer, renderer.render_files_table(records))

    assert "to-categorize, new" in text
    assert "Docs" in text


def test_model_table_missing_artifact() -> None:
    renderer = _renderer()
    info = ModelInfo(
        path=Path("/models/classifier.joblib"),
        exists=False,
        size=None,
        modified_at=None,
        loaded=False,
        loaded_at=None,
        load_count=0,
        train_count=0,
    )

    text = _render(renderer, renderer.render_model_table(info))

    assert "/models/classifier.joblib" in text
    assert "no" in text
