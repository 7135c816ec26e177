"""Persistence layer for file records and stored configuration."""

from .config_store import ConfigStore
from .file_store import FileRecordStore
from .gateway import BatchDataGateway

__all__ = ["BatchDataGateway", "ConfigStore", "FileRecordStore"]
