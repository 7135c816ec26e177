"""
Thread-safe cache around the file-name classifier.

The cache holds at most one loaded model handle. Readers check the handle
without locking; when it is missing they take the gate, check again and then
load the artifact from disk, training a first model from the training log when
no artifact exists yet. Retraining holds the same gate for its whole duration
and drops the cached handle once the new artifact is on disk, so the next
prediction loads the fresh model exactly once.
"""

from __future__ import annotations

import logging
import os
import re
import threading
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import joblib
from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.naive_bayes import MultinomialNB
from sklearn.pipeline import Pipeline

from .config import MODEL_NAME, MODEL_PATH, TRAIN_DATA_NAME, TRAIN_DATA_PATH, ConfigProvider, require_path
from .errors import ConfigurationError, ModelUnavailableError, TrainingDataNotFoundError, ValidationError
from .logging_utils import render_fields_block
from .models import UNKNOWN_CATEGORY, FileRecord
from .training_log import TrainingLog
from .utils import format_duration

LOGGER = logging.getLogger(__name__)

ARTIFACT_FORMAT = 1

_SEPARATORS = re.compile(r"[\W_]+", re.UNICODE)


def normalize_file_name(file_name: str) -> str:
    """Lower-case a file name and turn punctuation into single spaces.

    ``"The.Movie_2019.MKV"`` becomes ``"the movie 2019 mkv"`` so the extension
    and every word contribute n-grams.
    """
    return _SEPARATORS.sub(" ", file_name.lower()).strip()


def build_pipeline() -> Pipeline:
    return Pipeline(
        [
            ("tfidf", TfidfVectorizer(analyzer="char_wb", ngram_range=(2, 4), sublinear_tf=True)),
            ("nb", MultinomialNB(alpha=0.1)),
        ]
    )


@dataclass(frozen=True)
class ClassifierHandle:
    model: Any
    loaded_at: datetime
    source: Path

    def predict(self, file_name: str) -> str:
        return str(self.model.predict([normalize_file_name(file_name)])[0])

    def predict_many(self, file_names: Sequence[str]) -> list[str]:
        normalized = [normalize_file_name(name) for name in file_names]
        return [str(label) for label in self.model.predict(normalized)]


@dataclass(frozen=True)
class ModelArtifact:
    path: Path
    size: int
    sample_count: int
    categories: tuple[str, ...]
    trained_at: datetime
    duration: float

    def to_metadata(self) -> dict[str, object]:
        return {
            "model_path": str(self.path),
            "model_size": self.size,
            "sample_count": self.sample_count,
            "categories": list(self.categories),
            "trained_at": self.trained_at.isoformat(),
            "duration": round(self.duration, 3),
        }


@dataclass(frozen=True)
class ModelInfo:
    path: Path
    exists: bool
    size: int | None
    modified_at: datetime | None
    loaded: bool
    loaded_at: datetime | None
    load_count: int
    train_count: int


class ClassifierCache:
    """Lazily loaded, shared classifier.

    Paths are resolved from ``config`` on every load or train, so a changed
    model location takes effect the next time the handle is rebuilt.
    """

    def __init__(
        self,
        config: ConfigProvider,
        *,
        bootstrap: bool = True,
        pipeline_factory: Callable[[], Any] = build_pipeline,
    ) -> None:
        self._config = config
        self._bootstrap = bootstrap
        self._pipeline_factory = pipeline_factory
        self._gate = threading.Lock()
        self._handle: ClassifierHandle | None = None
        self.load_count = 0
        self.train_count = 0

    def model_path(self) -> Path:
        return require_path(self._config, MODEL_PATH, MODEL_NAME)

    def training_path(self) -> Path:
        return require_path(self._config, TRAIN_DATA_PATH, TRAIN_DATA_NAME)

    @property
    def is_loaded(self) -> bool:
        return self._handle is not None

    def get_handle(self) -> ClassifierHandle:
        handle = self._handle
        if handle is not None:
            return handle
        with self._gate:
            if self._handle is None:
                self._handle = self._load_locked()
            return self._handle

    def invalidate(self) -> None:
        with self._gate:
            self._handle = None

    def predict(self, file_name: str) -> str:
        if not file_name or not file_name.strip():
            raise ValidationError("File name must not be empty")
        category = self.get_handle().predict(file_name)
        return category or UNKNOWN_CATEGORY

    def predict_batch(self, records: list[FileRecord]) -> list[FileRecord]:
        """Assign a predicted category to every record in place.

        Blank names and per-record prediction failures get the Unknown
        category. The model is only loaded when there is something to predict.
        """
        if not records:
            return records

        handle = self.get_handle()
        candidates: list[FileRecord] = []
        for record in records:
            if record.name and record.name.strip():
                candidates.append(record)
            else:
                record.category = UNKNOWN_CATEGORY
        if not candidates:
            return records

        try:
            labels = handle.predict_many([record.name for record in candidates])
        except Exception:  # noqa: BLE001 - fall back to per-record prediction
            LOGGER.debug("Batch prediction failed; predicting %d records one by one", len(candidates))
            for record in candidates:
                try:
                    record.category = handle.predict(record.name) or UNKNOWN_CATEGORY
                except Exception as exc:  # noqa: BLE001
                    LOGGER.warning("Failed to categorize %s: %s", record.name, exc)
                    record.category = UNKNOWN_CATEGORY
        else:
            for record, label in zip(candidates, labels):
                record.category = label or UNKNOWN_CATEGORY
        return records

    def train_and_save(self) -> ModelArtifact:
        with self._gate:
            artifact = self._train_locked()
            self._handle = None
        return artifact

    def get_info(self) -> ModelInfo:
        path = self.model_path()
        handle = self._handle
        exists = path.is_file()
        stat = path.stat() if exists else None
        return ModelInfo(
            path=path,
            exists=exists,
            size=stat.st_size if stat else None,
            modified_at=datetime.fromtimestamp(stat.st_mtime) if stat else None,
            loaded=handle is not None,
            loaded_at=handle.loaded_at if handle else None,
            load_count=self.load_count,
            train_count=self.train_count,
        )

    def _load_locked(self) -> ClassifierHandle:
        path = self.model_path()
        if not path.is_file():
            if not self._bootstrap:
                raise ModelUnavailableError(f"Model artifact not found: {path}")
            LOGGER.info("No model artifact at %s; training an initial model", path)
            try:
                self._train_locked()
            except ConfigurationError:
                raise
            except Exception as exc:  # noqa: BLE001 - any training failure leaves no usable model
                raise ModelUnavailableError(f"Model artifact not found and training failed: {exc}") from exc

        try:
            payload = joblib.load(path)
        except Exception as exc:
            raise ModelUnavailableError(f"Failed to load model artifact {path}: {exc}") from exc

        model = payload.get("model") if isinstance(payload, dict) else None
        if model is None or not hasattr(model, "predict"):
            raise ModelUnavailableError(f"Model artifact {path} does not contain a classifier")

        self.load_count += 1
        LOGGER.debug("Loaded classifier from %s (load #%d)", path, self.load_count)
        return ClassifierHandle(model=model, loaded_at=datetime.now(), source=path)

    def _train_locked(self) -> ModelArtifact:
        training_path = self.training_path()
        model_path = self.model_path()
        started = time.perf_counter()

        entries = TrainingLog(training_path).read_entries()
        samples = [(normalize_file_name(entry.file_name), entry.category) for entry in entries]
        samples = [(text, label) for text, label in samples if text]
        if not samples:
            raise TrainingDataNotFoundError(f"Training data at {training_path} holds no usable entries")

        texts = [text for text, _ in samples]
        labels = [label for _, label in samples]
        model = self._pipeline_factory()
        model.fit(texts, labels)

        trained_at = datetime.now()
        categories = tuple(sorted(set(labels)))
        self._save_atomically(
            {
                "format": ARTIFACT_FORMAT,
                "model": model,
                "trained_at": trained_at,
                "sample_count": len(samples),
                "categories": categories,
            },
            model_path,
        )
        self.train_count += 1
        duration = time.perf_counter() - started

        artifact = ModelArtifact(
            path=model_path,
            size=model_path.stat().st_size,
            sample_count=len(samples),
            categories=categories,
            trained_at=trained_at,
            duration=duration,
        )
        LOGGER.info(
            render_fields_block(
                "Classifier Trained",
                {
                    "Artifact": model_path,
                    "Samples": len(samples),
                    "Categories": len(categories),
                    "Duration": format_duration(duration),
                },
            )
        )
        return artifact

    @staticmethod
    def _save_atomically(payload: dict[str, Any], path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            joblib.dump(payload, temp_path)
            os.replace(temp_path, path)
        finally:
            if temp_path.exists():
                temp_path.unlink()
