from __future__ import annotations

from pathlib import Path

from vibe_downloader.history import HistoryStore
from vibe_downloader.jobs import JobDescriptor, MediaMode, Platform, new_job_id


def _job(title: str) -> JobDescriptor:
    return JobDescriptor(new_job_id(), f"https://youtu.be/{title}", title, mode=MediaMode.AUDIO,
                         platform=Platform.YOUTUBE)


def test_add_keeps_newest_first(tmp_path: Path) -> None:
    store = HistoryStore(tmp_path / "history.json")

    store.add(_job("first"), "/out/first.mp3")
    store.add(_job("second"), "/out/second.mp3")

    items = store.load()
    assert [item.title for item in items] == ["second", "first"]
    assert items[0].platform == "youtube"
    assert items[0].mode == "audio"
    assert items[0].path == "/out/second.mp3"


def test_delete_and_clear(tmp_path: Path) -> None:
    store = HistoryStore(tmp_path / "history.json")
    kept = store.add(_job("kept"), None)
    dropped = store.add(_job("dropped"), None)

    assert store.delete(dropped.id)
    assert not store.delete("no-such-id")
    assert [item.id for item in store.load()] == [kept.id]

    store.clear()
    assert store.load() == []


def test_unreadable_history_loads_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "history.json"
    path.write_text("{not json", encoding="utf-8")

    assert HistoryStore(path).load() == []
