from __future__ import annotations

from collections.abc import Iterable, Sequence

from ..models import FileFilter, FileRecord


class BatchDataGateway:
    """Batch-shaped access to the file record store.

    Every operation accepts empty input and answers with an empty or zero
    result instead of raising. Implementations raise ``GatewayError`` when the
    underlying store fails.
    """

    name: str = "gateway"

    def get_by_ids(self, ids: Iterable[int]) -> dict[int, FileRecord]:
        raise NotImplementedError

    def batch_update(self, records: Sequence[FileRecord]) -> int:
        raise NotImplementedError

    def batch_insert(self, records: Sequence[FileRecord]) -> int:
        raise NotImplementedError

    def get_existing_names(self, names: Iterable[str]) -> set[str]:
        raise NotImplementedError

    def get_uncategorized(self) -> list[FileRecord]:
        raise NotImplementedError

    def list_files(self, file_filter: FileFilter = FileFilter.ALL) -> list[FileRecord]:
        raise NotImplementedError

    def get_categories(self) -> list[str]:
        raise NotImplementedError
