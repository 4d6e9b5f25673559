from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from vibe_downloader.config import ConfigManager, Settings
from vibe_downloader.jobs import MediaMode


def test_defaults_are_valid(tmp_path: Path) -> None:
    settings = Settings(download_base_path=tmp_path)

    assert settings.metadata_timeout == 45
    assert settings.item_timeout == 600
    assert settings.playlist_item_limit == 50
    assert settings.audio_quality == "audio_standard"
    assert settings.default_mode == MediaMode.VIDEO


@pytest.mark.parametrize("field, value", [
    ("metadata_timeout", 1),
    ("item_timeout", 10000),
    ("cooldown_seconds", -1),
    ("concurrent_fragments", 0),
    ("audio_quality", "audio_ultra"),
    ("log_level", "LOUD"),
])
def test_out_of_range_values_are_rejected(tmp_path: Path, field: str, value) -> None:
    with pytest.raises(ValidationError):
        Settings(download_base_path=tmp_path, **{field: value})


def test_log_level_is_normalized(tmp_path: Path) -> None:
    assert Settings(download_base_path=tmp_path, log_level="debug").log_level == "DEBUG"


def test_missing_download_folder_falls_back(tmp_path: Path) -> None:
    settings = Settings(download_base_path=tmp_path / "does-not-exist")

    assert settings.download_base_path != tmp_path / "does-not-exist"
    assert settings.download_base_path.is_dir()


def test_missing_file_is_created_with_defaults(tmp_path: Path) -> None:
    manager = ConfigManager(tmp_path / "cfg" / "config.json")

    settings = manager.load()

    assert (tmp_path / "cfg" / "config.json").exists()
    assert settings.metadata_timeout == 45


def test_round_trip_keeps_changes(tmp_path: Path) -> None:
    manager = ConfigManager(tmp_path / "config.json")
    manager.save(Settings(download_base_path=tmp_path, default_mode=MediaMode.AUDIO, cooldown_seconds=2))

    settings = manager.load()

    assert settings.default_mode == MediaMode.AUDIO
    assert settings.cooldown_seconds == 2
    assert settings.download_base_path == tmp_path


def test_corrupt_file_is_backed_up(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"item_timeout": "forever"}), encoding="utf-8")

    settings = ConfigManager(config_path).load()

    assert settings.item_timeout == 600
    assert not config_path.exists()
    assert len(list(tmp_path.glob("config.*.bak"))) == 1
