"""Wiring of stores, classifier, orchestrator and services for one process."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .actions import ActionsService
from .classifier import ClassifierCache
from .config import LayeredConfigProvider, Settings, StaticConfigProvider
from .jobs import JobOrchestrator
from .persistence import ConfigStore, FileRecordStore
from .processor import CatalogProcessor
from .progress import ProgressChannel

LOGGER = logging.getLogger(__name__)


@dataclass
class CatalogRuntime:
    settings: Settings
    store: FileRecordStore
    config_store: ConfigStore
    config: LayeredConfigProvider
    channel: ProgressChannel
    classifier: ClassifierCache
    processor: CatalogProcessor
    orchestrator: JobOrchestrator
    actions: ActionsService

    def close(self, wait: bool = True) -> None:
        self.orchestrator.shutdown(wait=wait)
        self.store.close()
        self.config_store.close()

    def __enter__(self) -> "CatalogRuntime":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def build_runtime(settings: Settings) -> CatalogRuntime:
    store = FileRecordStore(settings.database_path)
    config_store = ConfigStore(settings.database_path)
    # values stored in the database win over the YAML file
    config = LayeredConfigProvider([config_store, StaticConfigProvider.from_settings(settings)])
    channel = ProgressChannel(default_maxsize=settings.progress_queue_size)
    classifier = ClassifierCache(config)
    processor = CatalogProcessor(store, classifier, config, channel=channel)
    orchestrator = JobOrchestrator(processor.handlers(), max_workers=settings.workers, channel=channel)
    actions = ActionsService(orchestrator, store)
    LOGGER.debug("Runtime ready (database %s, %d workers)", settings.database_path, settings.workers)
    return CatalogRuntime(
        settings=settings,
        store=store,
        config_store=config_store,
        config=config,
        channel=channel,
        classifier=classifier,
        processor=processor,
        orchestrator=orchestrator,
        actions=actions,
    )
