"""
Batch file mover.

Moves tracked files from the origin directory into ``DESTDIR/<category>/``
and records each decision in the training log. The store is read once for
all requested ids and written once for all successes; a single summary is
published when the batch completes.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from collections.abc import Callable, Sequence
from pathlib import Path

from .config import DEST_DIR, ORIGIN_DIR, TRAIN_DATA_NAME, TRAIN_DATA_PATH, ConfigProvider, require_path
from .errors import ConfigurationError, GatewayError, JobCancelledError
from .logging_utils import render_fields_block
from .models import FileRecord, MoveOutcome, MoveRequestItem, MoveResult, MoveStatus, TrainingLogEntry
from .persistence.gateway import BatchDataGateway
from .progress import MOVE_OUTCOME, MOVE_SUMMARY, ProgressChannel
from .run_summary import log_move_summary
from .training_log import TrainingLog
from .utils import chunked, ensure_directory, is_safe_component, move_file

LOGGER = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


class BatchMover:
    """Moves a batch of files and reports one outcome per requested item."""

    def __init__(
        self,
        gateway: BatchDataGateway,
        config: ConfigProvider,
        channel: ProgressChannel | None = None,
        *,
        training_log_factory: Callable[[Path], TrainingLog] = TrainingLog,
    ) -> None:
        self._gateway = gateway
        self._config = config
        self._channel = channel or ProgressChannel()
        self._training_log_factory = training_log_factory

    def run(
        self,
        items: Sequence[MoveRequestItem],
        *,
        continue_on_error: bool = True,
        create_missing_directories: bool = True,
        checkpoint: Callable[[], None] | None = None,
        on_item: Callable[[MoveOutcome], None] | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        job_id: str | None = None,
    ) -> MoveResult:
        """Move ``items`` and return the ordered outcomes.

        When ids are unknown and ``continue_on_error`` is False nothing is
        touched on disk and the result comes back with ``aborted`` set. A
        cancellation observed between chunks stops the loop; the remaining
        items are reported as failed, the completed moves are still persisted
        and the result comes back with ``cancelled`` set.

        Raises:
            GatewayError: the store could not be read, or the final batch
                update failed (outcomes and summary are published first)
            ConfigurationError: origin or destination directory is not configured
        """
        started = time.perf_counter()
        result = MoveResult()
        if not items:
            return result

        records = self._gateway.get_by_ids([item.file_id for item in items])
        result.missing_ids = list(dict.fromkeys(item.file_id for item in items if item.file_id not in records))

        if result.missing_ids and not continue_on_error:
            result.aborted = True
            missing = set(result.missing_ids)
            for item in items:
                if item.file_id in missing:
                    outcome = self._not_present(item)
                else:
                    outcome = MoveOutcome(
                        file_id=item.file_id,
                        file_name=records[item.file_id].name,
                        status=MoveStatus.FAILED,
                        message="Not moved: batch aborted because some ids are not present",
                    )
                self._record(result, outcome, job_id, on_item)
            return self._finish(result, started, job_id)

        origin_dir = require_path(self._config, ORIGIN_DIR)
        destination_dir = require_path(self._config, DEST_DIR)

        successes: list[FileRecord] = []
        entries: list[TrainingLogEntry] = []
        processed = 0
        for chunk in chunked(items, batch_size):
            if checkpoint is not None:
                try:
                    checkpoint()
                except JobCancelledError:
                    result.cancelled = True
                    break
            for item in chunk:
                record = records.get(item.file_id)
                if record is None:
                    outcome = self._not_present(item)
                else:
                    outcome, updated = self._move_one(
                        item, record, origin_dir, destination_dir, create_missing_directories
                    )
                    if updated is not None:
                        successes.append(updated)
                        entries.append(TrainingLogEntry.from_record(updated))
                self._record(result, outcome, job_id, on_item)
                processed += 1

        if result.cancelled:
            for item in items[processed:]:
                record = records.get(item.file_id)
                outcome = MoveOutcome(
                    file_id=item.file_id,
                    file_name=record.name if record else None,
                    status=MoveStatus.FAILED,
                    message="Not moved: job cancelled",
                )
                self._record(result, outcome, job_id, on_item)

        gateway_error: GatewayError | None = None
        if successes:
            try:
                result.persisted = self._gateway.batch_update(successes)
                LOGGER.info("Batch updated %d file records", result.persisted)
            except GatewayError as exc:
                gateway_error = exc
                LOGGER.error(render_fields_block("Batch Update Failed", {"Records": len(successes), "Error": exc}))

        if entries:
            result.log_entries = self._append_training_log(entries)

        self._finish(result, started, job_id)
        if gateway_error is not None:
            raise gateway_error
        return result

    def _move_one(
        self,
        item: MoveRequestItem,
        record: FileRecord,
        origin_dir: Path,
        destination_dir: Path,
        create_missing_directories: bool,
    ) -> tuple[MoveOutcome, FileRecord | None]:
        item_started = time.perf_counter()
        try:
            category = item.target_category.strip()
            if not is_safe_component(category):
                raise ValueError(f"Category {item.target_category!r} is not a valid folder name")

            source = origin_dir / record.name
            folder = destination_dir / category
            if not folder.is_dir():
                if not create_missing_directories:
                    raise FileNotFoundError(f"Destination folder {folder} does not exist")
                ensure_directory(folder)
                LOGGER.info("Destination folder %s created", folder)

            move_file(source, folder / record.name)
            LOGGER.info("%s moved to %s", source, folder / record.name)
        except Exception as exc:  # noqa: BLE001 - one failed file never stops the batch
            LOGGER.error("Move failed for file %s (%s): %s", item.file_id, record.name, exc)
            outcome = MoveOutcome(
                file_id=item.file_id,
                file_name=record.name,
                status=MoveStatus.FAILED,
                message=f"Error moving file with id {item.file_id}: {exc}",
                elapsed=time.perf_counter() - item_started,
            )
            return outcome, None

        updated = dataclasses.replace(
            record,
            category=category,
            needs_categorization=False,
            is_new=False,
            excluded_from_move=False,
            path=str(folder),
        )
        outcome = MoveOutcome(
            file_id=item.file_id,
            file_name=record.name,
            status=MoveStatus.COMPLETED,
            message=f"{record.name} moved to {category}",
            elapsed=time.perf_counter() - item_started,
            category=category,
        )
        return outcome, updated

    def _append_training_log(self, entries: list[TrainingLogEntry]) -> int:
        try:
            path = require_path(self._config, TRAIN_DATA_PATH, TRAIN_DATA_NAME)
            return self._training_log_factory(path).append_entries(entries)
        except (ConfigurationError, OSError) as exc:
            LOGGER.error(render_fields_block("Training Log Append Failed", {"Entries": len(entries), "Error": exc}))
            return 0

    @staticmethod
    def _not_present(item: MoveRequestItem) -> MoveOutcome:
        LOGGER.warning("File with id %s is not present", item.file_id)
        return MoveOutcome(
            file_id=item.file_id,
            file_name=None,
            status=MoveStatus.ID_NOT_PRESENT,
            message=f"File with id {item.file_id} is not present",
        )

    def _record(
        self,
        result: MoveResult,
        outcome: MoveOutcome,
        job_id: str | None,
        on_item: Callable[[MoveOutcome], None] | None,
    ) -> None:
        result.outcomes.append(outcome)
        self._channel.publish(MOVE_OUTCOME, outcome.to_payload(), job_id=job_id)
        if on_item is not None:
            on_item(outcome)

    def _finish(self, result: MoveResult, started: float, job_id: str | None) -> MoveResult:
        result.elapsed = time.perf_counter() - started
        log_move_summary(result)
        self._channel.publish(MOVE_SUMMARY, result.summary(), job_id=job_id)
        return result
