from __future__ import annotations

from pathlib import Path

import pytest

from filecatalog.config import (
    DEST_DIR,
    MODEL_NAME,
    MODEL_PATH,
    ORIGIN_DIR,
    LayeredConfigProvider,
    StaticConfigProvider,
    load_settings,
    require_path,
    require_value,
    settings_from_mapping,
)
from filecatalog.errors import ConfigurationError
from filecatalog.persistence import ConfigStore


def test_load_settings_resolves_relative_database(tmp_path: Path) -> None:
    config_path = tmp_path / "filecatalog.yaml"
    config_path.write_text(
        """
settings:
  database_path: data/catalog.db
  origin_dir: /incoming
  destination_dir: /library
  model_path: /models
  model_name: classifier.joblib
  workers: 3
  batch_size: 200
  file_watcher:
    enabled: true
    include: ["*.mkv"]
    debounce_seconds: 2
""",
        encoding="utf-8",
    )

    settings = load_settings(config_path)

    assert settings.database_path == tmp_path / "data" / "catalog.db"
    assert settings.workers == 3
    assert settings.batch_size == 200
    assert settings.file_watcher.enabled is True
    assert settings.file_watcher.include == ["*.mkv"]
    assert settings.file_watcher.debounce_seconds == 2.0
    assert settings.config_values() == {
        ORIGIN_DIR: "/incoming",
        DEST_DIR: "/library",
        MODEL_PATH: "/models",
        MODEL_NAME: "classifier.joblib",
    }


def test_load_settings_expands_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INBOX", "/srv/inbox")
    config_path = tmp_path / "filecatalog.yaml"
    config_path.write_text("settings:\n  origin_dir: $INBOX\n", encoding="utf-8")

    assert load_settings(config_path).origin_dir == "/srv/inbox"


def test_defaults() -> None:
    settings = settings_from_mapping({})

    assert settings.workers == 2
    assert settings.batch_size == 100
    assert settings.file_watcher.enabled is False
    assert settings.config_values() == {}


@pytest.mark.parametrize(
    "data, message",
    [
        ({"workers": 0}, "settings.workers"),
        ({"batch_size": 5}, "settings.batch_size"),
        ({"batch_size": 5000}, "settings.batch_size"),
        ({"batch_size": True}, "settings.batch_size"),
        ({"origin_dir": ["a"]}, "settings.origin_dir"),
        ({"file_watcher": "yes"}, "file_watcher"),
        ({"file_watcher": {"debounce_seconds": -1}}, "debounce_seconds"),
        ({"file_watcher": {"include": [1]}}, "file_watcher.include[0]"),
    ],
)
def test_invalid_settings(data, message: str) -> None:
    with pytest.raises(ValueError, match=message.replace("[", r"\[").replace("]", r"\]")):
        settings_from_mapping(data)


class TestProviders:
    def test_blank_values_are_missing(self) -> None:
        provider = StaticConfigProvider({ORIGIN_DIR: "  "})

        assert provider.get_value(ORIGIN_DIR) is None
        with pytest.raises(ConfigurationError) as excinfo:
            require_value(provider, ORIGIN_DIR)
        assert excinfo.value.key == ORIGIN_DIR

    def test_require_path_joins_name(self) -> None:
        provider = StaticConfigProvider({MODEL_PATH: "/models", MODEL_NAME: "clf.joblib"})

        assert require_path(provider, MODEL_PATH, MODEL_NAME) == Path("/models/clf.joblib")

    def test_layered_prefers_first_non_empty(self, tmp_path: Path) -> None:
        store = ConfigStore(tmp_path / "catalog.db")
        store.set_value(ORIGIN_DIR, "/from-db")
        store.set_value(DEST_DIR, "")
        provider = LayeredConfigProvider(
            [store, StaticConfigProvider({ORIGIN_DIR: "/from-yaml", DEST_DIR: "/library"})]
        )

        assert provider.get_value(ORIGIN_DIR) == "/from-db"
        assert provider.get_value(DEST_DIR) == "/library"
        assert provider.get_value(MODEL_PATH) is None
        store.close()
