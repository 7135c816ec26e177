from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from .classifier import ClassifierCache
from .config import ORIGIN_DIR, ConfigProvider, require_path
from .errors import JobCancelledError, ModelUnavailableError, MoveAbortedError
from .file_discovery import list_origin_files
from .jobs import JobContext, JobHandler, JobKind
from .logging_utils import render_fields_block
from .models import UNKNOWN_CATEGORY, FileRecord, MoveRequestItem
from .mover import DEFAULT_BATCH_SIZE, BatchMover
from .persistence.gateway import BatchDataGateway
from .progress import CATEGORIZE_PROGRESS, REFRESH_PROGRESS, TRAIN_PROGRESS, ProgressChannel
from .utils import chunked, format_duration

LOGGER = logging.getLogger(__name__)


def _percent(done: int, total: int) -> float:
    if total <= 0:
        return 100.0
    return round(done * 100.0 / total, 1)


def _apply_prediction(record: FileRecord) -> bool:
    """Mark ``record`` categorized unless the classifier had no answer."""
    category = record.category or UNKNOWN_CATEGORY
    if category == UNKNOWN_CATEGORY:
        record.category = UNKNOWN_CATEGORY
        record.needs_categorization = True
        return False
    record.mark_categorized(category)
    return True


def coerce_move_items(raw_items: Iterable[Any]) -> list[MoveRequestItem]:
    items: list[MoveRequestItem] = []
    for raw in raw_items:
        if isinstance(raw, MoveRequestItem):
            items.append(raw)
        elif isinstance(raw, Mapping):
            items.append(MoveRequestItem(file_id=int(raw["file_id"]), target_category=str(raw["target_category"])))
        else:
            file_id, category = raw
            items.append(MoveRequestItem(file_id=int(file_id), target_category=str(category)))
    return items


class CatalogProcessor:
    """Bodies of the refresh, categorize, move and train jobs."""

    def __init__(
        self,
        gateway: BatchDataGateway,
        classifier: ClassifierCache,
        config: ConfigProvider,
        *,
        channel: ProgressChannel | None = None,
        mover: BatchMover | None = None,
    ) -> None:
        self.gateway = gateway
        self.classifier = classifier
        self.config = config
        self.channel = channel or ProgressChannel()
        self.mover = mover or BatchMover(gateway, config, self.channel)

    @staticmethod
    def _format_log(event: str, fields: Mapping[str, object] | None = None) -> str:
        return render_fields_block(event, fields or {}, pad_top=True)

    def handlers(self) -> dict[JobKind, JobHandler]:
        return {
            JobKind.REFRESH: self._refresh_job,
            JobKind.FORCE_CATEGORIZE: self._force_categorize_job,
            JobKind.MOVE: self._move_job,
            JobKind.TRAIN: self.train,
        }

    def _refresh_job(self, context: JobContext) -> dict[str, Any]:
        payload = context.payload
        return self.refresh(
            context,
            batch_size=int(payload.get("batch_size", DEFAULT_BATCH_SIZE)),
            extensions=payload.get("extensions"),
            force_recategorization=bool(payload.get("force_recategorization", False)),
        )

    def _force_categorize_job(self, context: JobContext) -> dict[str, Any]:
        return self.force_categorize(context, batch_size=int(context.payload.get("batch_size", DEFAULT_BATCH_SIZE)))

    def _move_job(self, context: JobContext) -> dict[str, Any]:
        payload = context.payload
        return self.move(
            context,
            coerce_move_items(payload.get("items", [])),
            continue_on_error=bool(payload.get("continue_on_error", True)),
            create_missing_directories=bool(payload.get("create_missing_directories", True)),
            batch_size=int(payload.get("batch_size", DEFAULT_BATCH_SIZE)),
        )

    def refresh(
        self,
        context: JobContext,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        extensions: Sequence[str] | None = None,
        force_recategorization: bool = False,
    ) -> dict[str, Any]:
        """Catalogue files in the origin directory that the store has not seen.

        New files are classified and inserted one batch at a time. A batch the
        classifier cannot handle is skipped and reported, the others continue.
        """
        started = time.perf_counter()
        origin_dir = require_path(self.config, ORIGIN_DIR)
        context.publish(REFRESH_PROGRESS, {"message": "Started refresh", "percent": 0.0})

        scanned = list_origin_files(origin_dir, extensions)
        existing = self.gateway.get_existing_names([item.name for item in scanned])
        unseen = [item for item in scanned if item.name not in existing]
        context.set_total(len(unseen))
        context.update_metadata(files_in_folder=len(scanned), already_known=len(scanned) - len(unseen))

        batches = (len(unseen) + batch_size - 1) // batch_size
        added = 0
        categorized = 0
        skipped_batches = 0
        done = 0
        for index, chunk in enumerate(chunked(unseen, batch_size), start=1):
            context.checkpoint()
            records = [
                FileRecord(
                    name=item.name,
                    path=str(item.directory),
                    size=item.size,
                    modified_at=item.modified_at,
                )
                for item in chunk
            ]
            try:
                self.classifier.predict_batch(records)
            except ModelUnavailableError as exc:
                skipped_batches += 1
                done += len(chunk)
                context.advance(len(chunk))
                LOGGER.error(self._format_log("Refresh Batch Skipped", {"Batch": f"{index}/{batches}", "Error": exc}))
                context.publish(
                    REFRESH_PROGRESS,
                    {
                        "batch": index,
                        "batches": batches,
                        "added": added,
                        "percent": _percent(done, len(unseen)),
                        "message": f"Failed to categorize batch {index}: {exc}",
                    },
                )
                continue

            categorized += sum(1 for record in records if _apply_prediction(record))
            inserted = self.gateway.batch_insert(records)
            added += inserted
            done += len(chunk)
            context.advance(len(chunk))
            context.publish(
                REFRESH_PROGRESS,
                {
                    "batch": index,
                    "batches": batches,
                    "added": added,
                    "percent": _percent(done, len(unseen)),
                    "message": f"Processed batch {index}, added {inserted} files",
                },
            )

        recategorized = 0
        if force_recategorization:
            recategorized = self._recategorize(context, batch_size, REFRESH_PROGRESS)

        duration = time.perf_counter() - started
        summary = {
            "files_in_folder": len(scanned),
            "already_known": len(scanned) - len(unseen),
            "added": added,
            "categorized": categorized,
            "skipped_batches": skipped_batches,
            "recategorized": recategorized,
            "duration": round(duration, 3),
        }
        LOGGER.info(
            self._format_log(
                "Refresh Completed",
                {
                    "Origin": origin_dir,
                    "Files In Folder": len(scanned),
                    "Added": added,
                    "Skipped Batches": skipped_batches,
                    "Duration": format_duration(duration),
                },
            )
        )
        context.publish(
            REFRESH_PROGRESS,
            {
                "percent": 100.0,
                "added": added,
                "message": f"Refresh completed: added {added} files, total files in folder: {len(scanned)}",
            },
        )
        return summary

    def force_categorize(self, context: JobContext, *, batch_size: int = DEFAULT_BATCH_SIZE) -> dict[str, Any]:
        """Classify every record still waiting for a category."""
        started = time.perf_counter()
        updated = self._recategorize(context, batch_size, CATEGORIZE_PROGRESS)
        duration = time.perf_counter() - started
        LOGGER.info(
            self._format_log(
                "Categorization Completed",
                {"Categorized": updated, "Duration": format_duration(duration)},
            )
        )
        return {"categorized": updated, "duration": round(duration, 3)}

    def _recategorize(self, context: JobContext, batch_size: int, topic: str) -> int:
        pending = self.gateway.get_uncategorized()
        if not pending:
            context.publish(topic, {"percent": 100.0, "message": "No files to categorize"})
            return 0

        context.add_total(len(pending))
        categorized = 0
        done = 0
        for chunk in chunked(pending, batch_size):
            context.checkpoint()
            records = list(chunk)
            self.classifier.predict_batch(records)
            categorized += sum(1 for record in records if _apply_prediction(record))
            self.gateway.batch_update(records)
            done += len(records)
            context.advance(len(records))
            context.publish(
                topic,
                {
                    "percent": _percent(done, len(pending)),
                    "categorized": categorized,
                    "message": f"Categorized {done}/{len(pending)} files",
                },
            )
        return categorized

    def move(
        self,
        context: JobContext,
        items: Sequence[MoveRequestItem],
        *,
        continue_on_error: bool = True,
        create_missing_directories: bool = True,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> dict[str, Any]:
        context.set_total(len(items))
        result = self.mover.run(
            items,
            continue_on_error=continue_on_error,
            create_missing_directories=create_missing_directories,
            checkpoint=context.checkpoint,
            on_item=lambda _outcome: context.advance(),
            batch_size=batch_size,
            job_id=context.job_id,
        )
        summary = result.summary()
        context.update_metadata(summary, outcomes=[outcome.to_payload() for outcome in result.outcomes])
        if result.aborted:
            raise MoveAbortedError(result.missing_ids)
        if result.cancelled:
            raise JobCancelledError(f"Move cancelled after {result.moved} of {len(items)} files")
        return summary

    def train(self, context: JobContext) -> dict[str, Any]:
        context.set_total(1)
        context.publish(TRAIN_PROGRESS, {"stage": "started", "message": "Training classifier"})
        artifact = self.classifier.train_and_save()
        context.advance()
        metadata = artifact.to_metadata()
        context.publish(TRAIN_PROGRESS, {"stage": "completed", **metadata})
        return metadata
