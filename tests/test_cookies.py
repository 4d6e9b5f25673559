from __future__ import annotations

from pathlib import Path

import pytest

from vibe_downloader.cookies import CookieStore
from vibe_downloader.exceptions import CookieError

COOKIE_TEXT = "# Netscape HTTP Cookie File\n.instagram.com\tTRUE\t/\tTRUE\t0\tsessionid\tabc\n"


def _store(tmp_path: Path) -> CookieStore:
    return CookieStore(cookies_dir=tmp_path / "cookies", legacy_file=tmp_path / "cookies.txt")


def test_save_writes_one_file_per_platform(tmp_path: Path) -> None:
    store = _store(tmp_path)

    path = store.save(COOKIE_TEXT, "instagram")

    assert path == tmp_path / "cookies" / "cookies_instagram.txt"
    assert path.read_text(encoding="utf-8") == COOKIE_TEXT.strip()
    assert store.status("instagram") == {"exists": True, "path": str(path)}
    assert store.status("facebook") == {"exists": False}
    assert list((tmp_path / "cookies").glob(".cookies-*")) == []


def test_save_rejects_empty_content(tmp_path: Path) -> None:
    store = _store(tmp_path)

    with pytest.raises(CookieError):
        store.save("   \n", "youtube")
    assert not store.path_for("youtube").exists()


def test_delete_removes_the_file_and_tolerates_absence(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.save(COOKIE_TEXT, "tiktok")

    store.delete("tiktok")
    store.delete("tiktok")

    assert store.status("tiktok") == {"exists": False}


def test_sessions_never_cross_platforms(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.save(COOKIE_TEXT, "instagram")
    (tmp_path / "cookies.txt").write_text(COOKIE_TEXT, encoding="utf-8")

    assert store.resolve("https://www.instagram.com/reel/abc/") == store.path_for("instagram")
    # Dedicated platforms without their own file get nothing, not the legacy file.
    assert store.resolve("https://www.facebook.com/watch?v=1") is None
    assert store.resolve("https://youtu.be/abc") is None


def test_other_sites_fall_back_to_the_legacy_file(tmp_path: Path) -> None:
    store = _store(tmp_path)

    assert store.resolve("https://x.com/someone/status/1") is None

    (tmp_path / "cookies.txt").write_text(COOKIE_TEXT, encoding="utf-8")

    assert store.resolve("https://x.com/someone/status/1") == tmp_path / "cookies.txt"
    assert store.resolve("https://example.org/video") == tmp_path / "cookies.txt"
