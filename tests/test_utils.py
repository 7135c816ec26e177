from __future__ import annotations

from pathlib import Path

import pytest

from filecatalog.utils import (
    chunked,
    env_bool,
    expand_env,
    format_duration,
    is_safe_component,
    load_yaml_file,
    move_file,
    parse_env_bool,
)


class TestIsSafeComponent:
    @pytest.mark.parametrize("value", ["Video", "Tax Docs", "music_2024", "a-b"])
    def test_accepts_plain_names(self, value: str) -> None:
        assert is_safe_component(value)

    @pytest.mark.parametrize("value", ["", ".", "..", "a/b", "a\\b", " padded", "nul\x00"])
    def test_rejects_paths(self, value: str) -> None:
        assert not is_safe_component(value)


class TestMoveFile:
    def test_moves(self, tmp_path: Path) -> None:
        source = tmp_path / "a.txt"
        source.write_text("data", encoding="utf-8")
        destination = tmp_path / "out" / "a.txt"
        destination.parent.mkdir()

        move_file(source, destination)

        assert not source.exists()
        assert destination.read_text(encoding="utf-8") == "data"

    def test_missing_source(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            move_file(tmp_path / "missing.txt", tmp_path / "b.txt")

    def test_refuses_overwrite(self, tmp_path: Path) -> None:
        source = tmp_path / "a.txt"
        source.write_text("new", encoding="utf-8")
        destination = tmp_path / "b.txt"
        destination.write_text("old", encoding="utf-8")

        with pytest.raises(FileExistsError):
            move_file(source, destination)
        assert destination.read_text(encoding="utf-8") == "old"


def test_chunked() -> None:
    assert [list(chunk) for chunk in chunked([1, 2, 3, 4, 5], 2)] == [[1, 2], [3, 4], [5]]
    assert list(chunked([], 3)) == []
    with pytest.raises(ValueError):
        list(chunked([1], 0))


def test_format_duration() -> None:
    assert format_duration(0) == "00:00:00.000"
    assert format_duration(3723.5) == "01:02:03.500"
    assert format_duration(-1) == "00:00:00.000"


def test_expand_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CATALOG_ROOT", "/srv/catalog")

    assert expand_env({"paths": ["$CATALOG_ROOT/in"], "n": 3}) == {"paths": ["/srv/catalog/in"], "n": 3}


def test_load_yaml_file(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("settings:\n  workers: 3\n", encoding="utf-8")

    assert load_yaml_file(path) == {"settings": {"workers": 3}}


def test_load_yaml_file_rejects_non_mapping(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_yaml_file(path)


def test_load_yaml_file_reports_parse_errors(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("settings: [unclosed\n", encoding="utf-8")

    with pytest.raises(ValueError, match="Failed to parse"):
        load_yaml_file(path)


@pytest.mark.parametrize(
    "raw, expected",
    [("1", True), ("Yes", True), ("off", False), ("0", False), ("maybe", None), (None, None)],
)
def test_parse_env_bool(raw, expected) -> None:
    assert parse_env_bool(raw) is expected


def test_env_bool(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FILECATALOG_FLAG", "true")
    assert env_bool("FILECATALOG_FLAG") is True
    monkeypatch.delenv("FILECATALOG_FLAG")
    assert env_bool("FILECATALOG_FLAG") is None
