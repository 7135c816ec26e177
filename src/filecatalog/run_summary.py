"""Log summaries for move batches and finished jobs.

This module formats the multi-line blocks written at the end of a move batch
and the recap printed after a job completes, grouping repeated failure
messages so a large batch stays readable.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import TYPE_CHECKING, Dict, List

from .jobs import JobState
from .logging_utils import LogBlockBuilder
from .models import MoveStatus
from .utils import format_duration

if TYPE_CHECKING:
    from .jobs import Job
    from .models import MoveResult

LOGGER = logging.getLogger(__name__)


def has_failures(result: MoveResult) -> bool:
    return bool(result.failed or result.not_present or result.aborted or result.cancelled)


def summarize_messages(entries: List[str], *, limit: int = 5) -> List[str]:
    """Group duplicate messages and keep the ``limit`` most frequent.

    Args:
        entries: Message strings to summarize.
        limit: Maximum number of distinct messages to show.

    Returns:
        Summary lines with duplicate counts, plus a remainder line when needed.
    """
    if not entries:
        return []
    counter = Counter(entries)
    ordered = sorted(counter.items(), key=lambda item: (-item[1], item[0]))
    lines: List[str] = []
    for text, count in ordered[:limit]:
        prefix = f"{count}× " if count > 1 else ""
        lines.append(f"{prefix}{text}")
    remaining = len(ordered) - limit
    if remaining > 0:
        lines.append(f"... {remaining} more (use --verbose for full list)")
    return lines


def category_counts(result: MoveResult) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for outcome in result.outcomes:
        if outcome.status is MoveStatus.COMPLETED and outcome.category:
            counts[outcome.category] = counts.get(outcome.category, 0) + 1
    return counts


def render_move_summary(result: MoveResult) -> str:
    builder = LogBlockBuilder("Move Summary")
    builder.add_fields(
        {
            "Requested": len(result.outcomes),
            "Moved": result.moved,
            "Failed": result.failed,
            "Not Present": result.not_present,
            "Records Updated": result.persisted,
            "Training Entries": result.log_entries,
            "Duration": format_duration(result.elapsed),
        }
    )
    if result.aborted:
        builder.add_fields({"Aborted": "ids not present: " + ", ".join(str(i) for i in result.missing_ids)})
    if result.cancelled:
        builder.add_fields({"Cancelled": "yes"})

    counts = category_counts(result)
    if counts:
        ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        builder.add_section("Categories", [f"{name}: {count}" for name, count in ordered])

    failures = [outcome.message for outcome in result.outcomes if outcome.status is not MoveStatus.COMPLETED]
    if failures:
        builder.add_section("Problems", summarize_messages(failures))
    return builder.render()


def log_move_summary(result: MoveResult, logger: logging.Logger = LOGGER) -> None:
    level = logging.WARNING if has_failures(result) else logging.INFO
    logger.log(level, render_move_summary(result))


def render_job_recap(job: Job) -> str:
    builder = LogBlockBuilder(f"{job.kind.value} job {job.state.value}")
    fields: Dict[str, object] = {
        "Job": job.job_id,
        "Processed": f"{job.processed_items}/{job.total_items}",
        "Elapsed": format_duration(job.elapsed),
    }
    if job.error:
        fields["Error"] = job.error
    builder.add_fields(fields)
    if job.metadata:
        builder.add_blank_line()
        builder.add_fields({key: value for key, value in sorted(job.metadata.items()) if not isinstance(value, dict)})
    return builder.render()


def log_job_recap(job: Job, logger: logging.Logger = LOGGER) -> None:
    level = logging.ERROR if job.state is JobState.FAILED else logging.INFO
    logger.log(level, render_job_recap(job))
