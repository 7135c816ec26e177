from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Optional

from rich.console import Console
from rich.table import Table

from .jobs import JobState
from .models import MoveStatus

if TYPE_CHECKING:  # pragma: no cover
    from .classifier import ModelInfo
    from .jobs import Job
    from .models import FileRecord, MoveOutcome


SUCCESS_COLOR = "green"
WARNING_COLOR = "yellow"
ERROR_COLOR = "red"
DIM_COLOR = "dim"

SUCCESS_SYMBOL = "✓"
WARNING_SYMBOL = "⚠"
ERROR_SYMBOL = "✗"

_STATE_STYLES = {
    JobState.QUEUED: DIM_COLOR,
    JobState.RUNNING: WARNING_COLOR,
    JobState.SUCCEEDED: SUCCESS_COLOR,
    JobState.FAILED: ERROR_COLOR,
    JobState.CANCELLED: WARNING_COLOR,
}

_OUTCOME_STYLES = {
    MoveStatus.COMPLETED: (SUCCESS_COLOR, SUCCESS_SYMBOL),
    MoveStatus.FAILED: (ERROR_COLOR, ERROR_SYMBOL),
    MoveStatus.ID_NOT_PRESENT: (WARNING_COLOR, WARNING_SYMBOL),
}


class SummaryTableRenderer:
    """Renders jobs, move outcomes and file listings as Rich tables."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()

    @staticmethod
    def _styled_state(state: JobState) -> str:
        color = _STATE_STYLES[state]
        return f"[{color}]{state.value}[/{color}]"

    def render_job_table(self, job: Job) -> Table:
        table = Table(title=f"Job {job.job_id}", show_header=True, header_style="bold")
        table.add_column("Field", style="cyan", no_wrap=True)
        table.add_column("Value")

        table.add_row("Kind", job.kind.value)
        table.add_row("State", self._styled_state(job.state))
        table.add_row("Progress", f"{job.processed_items}/{job.total_items} ({job.progress:.0f}%)")
        table.add_row("Elapsed", f"{job.elapsed:.2f}s")
        for key, value in sorted(job.metadata.items()):
            if key == "outcomes" or (isinstance(value, (dict, list)) and len(value) > 10):
                continue
            table.add_row(key, str(value))
        if job.error:
            table.add_row("Error", f"[{ERROR_COLOR}]{job.error}[/{ERROR_COLOR}]")
        return table

    def render_outcome_table(self, outcomes: Iterable[MoveOutcome]) -> Table:
        table = Table(title="Move Outcomes", show_header=True, header_style="bold")
        table.add_column("Id", justify="right", no_wrap=True)
        table.add_column("File")
        table.add_column("Status", no_wrap=True)
        table.add_column("Message")

        for outcome in outcomes:
            color, symbol = _OUTCOME_STYLES[outcome.status]
            table.add_row(
                str(outcome.file_id),
                outcome.file_name or "",
                f"[{color}]{symbol} {outcome.status.value}[/{color}]",
                outcome.message,
            )
        return table

    def render_files_table(self, records: Iterable[FileRecord], *, title: str = "Files") -> Table:
        table = Table(title=title, show_header=True, header_style="bold")
        table.add_column("Id", justify="right", no_wrap=True)
        table.add_column("Name")
        table.add_column("Category")
        table.add_column("Size", justify="right")
        table.add_column("Flags", no_wrap=True)

        for record in records:
            flags = []
            if record.needs_categorization:
                flags.append("to-categorize")
            if record.is_new:
                flags.append("new")
            if record.excluded_from_move:
                flags.append("keep")
            category = record.category or f"[{DIM_COLOR}]-[/{DIM_COLOR}]"
            table.add_row(str(record.id), record.name, category, str(record.size), ", ".join(flags))
        return table

    def render_model_table(self, info: ModelInfo) -> Table:
        table = Table(title="Classifier", show_header=True, header_style="bold")
        table.add_column("Field", style="cyan", no_wrap=True)
        table.add_column("Value")

        exists = f"[{SUCCESS_COLOR}]yes[/{SUCCESS_COLOR}]" if info.exists else f"[{ERROR_COLOR}]no[/{ERROR_COLOR}]"
        table.add_row("Artifact", str(info.path))
        table.add_row("Exists", exists)
        table.add_row("Size", "" if info.size is None else f"{info.size} bytes")
        table.add_row("Modified", info.modified_at.isoformat(timespec="seconds") if info.modified_at else "")
        table.add_row("Loaded", "yes" if info.loaded else "no")
        table.add_row("Loaded At", info.loaded_at.isoformat(timespec="seconds") if info.loaded_at else "")
        return table

    def print_table(self, table: Table) -> None:
        self.console.print(table)
