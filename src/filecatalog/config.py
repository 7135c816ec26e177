from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from .errors import ConfigurationError
from .utils import load_yaml_file

# Configuration keys resolved at operation time
ORIGIN_DIR = "ORIGINDIR"
DEST_DIR = "DESTDIR"
MODEL_PATH = "MODELPATH"
MODEL_NAME = "MODELNAME"
TRAIN_DATA_PATH = "TRAINDATAPATH"
TRAIN_DATA_NAME = "TRAINDATANAME"

# Settings field backing each configuration key
_SETTING_FOR_KEY = {
    ORIGIN_DIR: "origin_dir",
    DEST_DIR: "destination_dir",
    MODEL_PATH: "model_path",
    MODEL_NAME: "model_name",
    TRAIN_DATA_PATH: "train_data_path",
    TRAIN_DATA_NAME: "train_data_name",
}

MIN_BATCH_SIZE = 10
MAX_BATCH_SIZE = 1000


@dataclass
class WatcherSettings:
    enabled: bool = False
    include: list[str] = field(default_factory=list)
    ignore: list[str] = field(default_factory=list)
    debounce_seconds: float = 5.0


@dataclass
class Settings:
    database_path: Path
    origin_dir: str | None = None
    destination_dir: str | None = None
    model_path: str | None = None
    model_name: str | None = None
    train_data_path: str | None = None
    train_data_name: str | None = None
    workers: int = 2
    batch_size: int = 100
    progress_queue_size: int = 1000
    log_file: Path | None = None
    file_watcher: WatcherSettings = field(default_factory=WatcherSettings)

    def config_values(self) -> dict[str, str]:
        values: dict[str, str] = {}
        for key, attribute in _SETTING_FOR_KEY.items():
            value = getattr(self, attribute)
            if value:
                values[key] = str(value)
        return values


class ConfigProvider(Protocol):
    def get_value(self, key: str) -> str | None: ...


class StaticConfigProvider:
    """Serves configuration keys from an in-memory mapping."""

    def __init__(self, values: Mapping[str, str] | None = None) -> None:
        self._values = {str(key): str(value) for key, value in (values or {}).items()}

    def get_value(self, key: str) -> str | None:
        value = self._values.get(key)
        if value is None or not value.strip():
            return None
        return value

    @classmethod
    def from_settings(cls, settings: Settings) -> "StaticConfigProvider":
        return cls(settings.config_values())


class LayeredConfigProvider:
    """Returns the first non-empty value found across ``providers``."""

    def __init__(self, providers: Sequence[ConfigProvider]) -> None:
        self._providers = list(providers)

    def get_value(self, key: str) -> str | None:
        for provider in self._providers:
            value = provider.get_value(key)
            if value is not None and value.strip():
                return value
        return None


def require_value(provider: ConfigProvider, key: str) -> str:
    value = provider.get_value(key)
    if value is None or not value.strip():
        raise ConfigurationError(f"Required configuration value '{key}' is not set", key=key)
    return value.strip()


def require_path(provider: ConfigProvider, directory_key: str, name_key: str | None = None) -> Path:
    """Resolve a directory key (optionally joined with a file-name key) to a Path."""
    directory = Path(require_value(provider, directory_key)).expanduser()
    if name_key is None:
        return directory
    return directory / require_value(provider, name_key)


def _ensure_string_list(value: Any, *, field_name: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        raise ValueError(f"'{field_name}' must be provided as a list of strings")
    result: list[str] = []
    for index, entry in enumerate(value):
        if not isinstance(entry, str):
            raise ValueError(f"'{field_name}[{index}]' must be a string")
        cleaned = entry.strip()
        if cleaned:
            result.append(cleaned)
    return result


def _ensure_int(value: Any, *, field_name: str, minimum: int, maximum: int | None = None) -> int:
    if isinstance(value, bool):
        raise ValueError(f"'{field_name}' must be an integer")
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"'{field_name}' must be an integer") from exc
    if parsed < minimum:
        raise ValueError(f"'{field_name}' must be greater than or equal to {minimum}")
    if maximum is not None and parsed > maximum:
        raise ValueError(f"'{field_name}' must be less than or equal to {maximum}")
    return parsed


def _optional_string(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, (str, int, float)) or isinstance(value, bool):
        raise ValueError(f"'settings.{key}' must be a string")
    text = str(value).strip()
    return text or None


def _build_watcher_settings(data: Any) -> WatcherSettings:
    if not data:
        return WatcherSettings()
    if not isinstance(data, dict):
        raise ValueError("'file_watcher' must be provided as a mapping when specified")

    try:
        debounce = float(data.get("debounce_seconds", 5.0))
    except (TypeError, ValueError) as exc:
        raise ValueError("'file_watcher.debounce_seconds' must be a number") from exc
    if debounce < 0:
        raise ValueError("'file_watcher.debounce_seconds' must be greater than or equal to 0")

    return WatcherSettings(
        enabled=bool(data.get("enabled", False)),
        include=_ensure_string_list(data.get("include"), field_name="file_watcher.include"),
        ignore=_ensure_string_list(data.get("ignore"), field_name="file_watcher.ignore"),
        debounce_seconds=debounce,
    )


def _build_settings(data: Any, *, base_dir: Path | None = None) -> Settings:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("'settings' must be provided as a mapping")

    database_raw = data.get("database_path", "./data/filecatalog.db")
    database_path = Path(str(database_raw)).expanduser()
    if base_dir is not None and not database_path.is_absolute():
        database_path = base_dir / database_path

    log_file_raw = data.get("log_file")
    log_file = Path(str(log_file_raw)).expanduser() if log_file_raw else None

    return Settings(
        database_path=database_path,
        origin_dir=_optional_string(data, "origin_dir"),
        destination_dir=_optional_string(data, "destination_dir"),
        model_path=_optional_string(data, "model_path"),
        model_name=_optional_string(data, "model_name"),
        train_data_path=_optional_string(data, "train_data_path"),
        train_data_name=_optional_string(data, "train_data_name"),
        workers=_ensure_int(data.get("workers", 2), field_name="settings.workers", minimum=1),
        batch_size=_ensure_int(
            data.get("batch_size", 100),
            field_name="settings.batch_size",
            minimum=MIN_BATCH_SIZE,
            maximum=MAX_BATCH_SIZE,
        ),
        progress_queue_size=_ensure_int(
            data.get("progress_queue_size", 1000),
            field_name="settings.progress_queue_size",
            minimum=1,
        ),
        log_file=log_file,
        file_watcher=_build_watcher_settings(data.get("file_watcher")),
    )


def load_settings(path: Path) -> Settings:
    data = load_yaml_file(path)
    return _build_settings(data.get("settings", {}), base_dir=path.parent)


def settings_from_mapping(data: Mapping[str, Any]) -> Settings:
    return _build_settings(dict(data))
