from __future__ import annotations

from pathlib import Path

import pytest

from filecatalog.config import (
    DEST_DIR,
    MODEL_NAME,
    MODEL_PATH,
    ORIGIN_DIR,
    TRAIN_DATA_NAME,
    TRAIN_DATA_PATH,
    StaticConfigProvider,
)
from filecatalog.persistence import FileRecordStore
from filecatalog.progress import ProgressChannel


@pytest.fixture
def dirs(tmp_path: Path) -> dict[str, Path]:
    """Origin, destination, model and training directories under tmp_path."""
    layout = {
        "origin": tmp_path / "origin",
        "dest": tmp_path / "dest",
        "model": tmp_path / "model",
        "train": tmp_path / "train",
    }
    for path in layout.values():
        path.mkdir()
    return layout


@pytest.fixture
def config(dirs: dict[str, Path]) -> StaticConfigProvider:
    return StaticConfigProvider(
        {
            ORIGIN_DIR: str(dirs["origin"]),
            DEST_DIR: str(dirs["dest"]),
            MODEL_PATH: str(dirs["model"]),
            MODEL_NAME: "classifier.joblib",
            TRAIN_DATA_PATH: str(dirs["train"]),
            TRAIN_DATA_NAME: "training.csv",
        }
    )


@pytest.fixture
def training_file(dirs: dict[str, Path]) -> Path:
    return dirs["train"] / "training.csv"


@pytest.fixture
def write_training(training_file: Path):
    """Write ``lines`` (without header unless given) to the training log."""

    def _write(*lines: str) -> Path:
        training_file.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")
        return training_file

    return _write


@pytest.fixture
def store(tmp_path: Path) -> FileRecordStore:
    file_store = FileRecordStore(tmp_path / "catalog.db")
    yield file_store
    file_store.close()


@pytest.fixture
def channel() -> ProgressChannel:
    return ProgressChannel()
