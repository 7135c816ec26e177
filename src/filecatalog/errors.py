"""Exception hierarchy shared by the categorization pipeline."""

from __future__ import annotations

from collections.abc import Sequence


class FileCatalogError(Exception):
    """Base exception for filecatalog errors."""


class ConfigurationError(FileCatalogError):
    """A required configuration value is missing or invalid."""

    def __init__(self, message: str, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


class ValidationError(FileCatalogError):
    """A request was rejected before any work started."""


class ModelUnavailableError(FileCatalogError):
    """No usable classifier could be loaded or trained."""


class TrainingDataNotFoundError(FileCatalogError):
    """The training log is missing or holds no usable entries."""


class GatewayError(FileCatalogError):
    """The persistent store failed to complete a batch operation."""


class JobNotFoundError(FileCatalogError):
    """No job is registered under the requested id."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class JobCancelledError(FileCatalogError):
    """Raised at a checkpoint once cancellation has been requested."""


class MoveAbortedError(FileCatalogError):
    """A move batch referenced unknown ids and was not allowed to continue."""

    def __init__(self, missing_ids: Sequence[int]) -> None:
        joined = ", ".join(str(file_id) for file_id in missing_ids)
        super().__init__(f"Files not found: {joined}")
        self.missing_ids = list(missing_ids)


__all__ = [
    "ConfigurationError",
    "FileCatalogError",
    "GatewayError",
    "JobCancelledError",
    "JobNotFoundError",
    "ModelUnavailableError",
    "MoveAbortedError",
    "TrainingDataNotFoundError",
    "ValidationError",
]
