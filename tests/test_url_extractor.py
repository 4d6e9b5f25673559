from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from vibe_downloader.cookies import CookieStore
from vibe_downloader.exceptions import MetadataFetchError
from vibe_downloader.url_extractor import (
    ErrorCategory, MediaMetadata, MetadataExtractor, classify_metadata_error, friendly_error_message
)


@pytest.mark.parametrize("raw, category", [
    ("ERROR: [instagram] abc: Requested content is not available, rate-limit reached or login required", ErrorCategory.LOGIN_REQUIRED),
    ("Sign in to confirm you're not a bot. Use --cookies for the authentication", ErrorCategory.LOGIN_REQUIRED),
    ("ERROR: [youtube] abc: Private video", ErrorCategory.PRIVATE),
    ("ERROR: [youtube] abc: Video unavailable", ErrorCategory.UNAVAILABLE),
    ("Sign in to confirm your age. This video may be inappropriate for some users.", ErrorCategory.AGE_RESTRICTED),
    ("The uploader has not made this video available in your country", ErrorCategory.REGION_BLOCKED),
    ("HTTP Error 404: Not Found", ErrorCategory.NOT_FOUND),
    ("Read timed out.", ErrorCategory.TIMEOUT),
    ("Connection reset by peer", ErrorCategory.NETWORK),
    ("ERROR: Unsupported URL: https://example.com/", ErrorCategory.UNSUPPORTED_URL),
    ("something odd happened", ErrorCategory.GENERIC),
    ("", ErrorCategory.GENERIC),
])
def test_classify_metadata_error(raw: str, category: ErrorCategory) -> None:
    assert classify_metadata_error(raw) == category


def test_classification_is_case_insensitive() -> None:
    assert classify_metadata_error("PRIVATE VIDEO") == ErrorCategory.PRIVATE


def test_facebook_stories_get_their_own_message() -> None:
    message = friendly_error_message(ErrorCategory.UNSUPPORTED_URL, "https://www.facebook.com/stories/123")

    assert "Facebook Stories" in message
    assert friendly_error_message(ErrorCategory.UNSUPPORTED_URL) == "This URL is not supported."


def _extractor(tmp_path: Path, **kwargs) -> MetadataExtractor:
    store = CookieStore(cookies_dir=tmp_path / "cookies", legacy_file=tmp_path / "cookies.txt")
    return MetadataExtractor(Path("/opt/bin/yt-dlp"), store, **kwargs)


def test_build_command_flattens_playlists(tmp_path: Path) -> None:
    extractor = _extractor(tmp_path, playlist_item_limit=20)

    command = extractor.build_command("https://www.youtube.com/playlist?list=PL123")

    assert command[:3] == ["/opt/bin/yt-dlp", "https://www.youtube.com/playlist?list=PL123", "--dump-single-json"]
    assert command[-3:] == ["--flat-playlist", "--playlist-items", "1:20"]


def test_build_command_keeps_single_video_from_playlist(tmp_path: Path) -> None:
    extractor = _extractor(tmp_path)

    command = extractor.build_command("https://www.youtube.com/watch?v=abc&list=PL123")

    assert "--no-playlist" in command
    assert "--flat-playlist" not in command


def test_build_command_uses_legacy_cookies_for_other_sites(tmp_path: Path) -> None:
    extractor = _extractor(tmp_path)
    (tmp_path / "cookies.txt").write_text("# Netscape HTTP Cookie File\n", encoding="utf-8")

    soundcloud = extractor.build_command("https://soundcloud.com/artist/track")
    instagram = extractor.build_command("https://www.instagram.com/p/abc/")

    assert soundcloud[soundcloud.index("--cookies") + 1] == str(tmp_path / "cookies.txt")
    assert "--cookies" not in instagram


def test_media_metadata_from_playlist_info() -> None:
    raw = {
        "_type": "playlist",
        "id": "PL1",
        "title": "Mix",
        "uploader": "Someone",
        "entries": [
            {"id": "a1", "title": "First", "duration": 61},
            None,
            {"id": "b2", "url": "https://www.youtube.com/watch?v=b2"},
        ],
    }

    metadata = MediaMetadata.from_info(raw, "https://www.youtube.com/playlist?list=PL1")

    assert metadata.is_playlist
    assert metadata.playlist_count == 2
    assert [e.title for e in metadata.entries] == ["First", "Track 2"]
    assert metadata.entries[0].url == "https://www.youtube.com/watch?v=a1"


class _FakeProcess:
    def __init__(self, stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0, delay: float = 0) -> None:
        self._stdout = stdout
        self._stderr = stderr
        self._final_returncode = returncode
        self._delay = delay
        self.returncode = None
        self.killed = False

    async def communicate(self):
        if self._delay:
            await asyncio.sleep(self._delay)
        self.returncode = self._final_returncode
        return self._stdout, self._stderr

    def kill(self) -> None:
        self.killed = True


def _patch_process(monkeypatch, process: _FakeProcess) -> None:
    async def fake_exec(*args, **kwargs):
        return process

    monkeypatch.setattr("vibe_downloader.url_extractor.asyncio.create_subprocess_exec", fake_exec)


def test_fetch_metadata_parses_output(tmp_path: Path, monkeypatch) -> None:
    info = {"id": "abc", "title": "A Video", "uploader": "Me", "duration": 12,
            "formats": [{"format_id": "137", "ext": "mp4", "height": 1080}]}
    _patch_process(monkeypatch, _FakeProcess(stdout=json.dumps(info).encode()))

    metadata = asyncio.run(_extractor(tmp_path).fetch_metadata("https://youtu.be/abc"))

    assert metadata.title == "A Video"
    assert metadata.content_type == "video"
    assert metadata.formats[0].height == 1080


def test_fetch_metadata_classifies_failures(tmp_path: Path, monkeypatch) -> None:
    _patch_process(monkeypatch, _FakeProcess(stderr=b"WARNING: x\nERROR: [youtube] abc: Private video\n", returncode=1))

    with pytest.raises(MetadataFetchError) as excinfo:
        asyncio.run(_extractor(tmp_path).fetch_metadata("https://youtu.be/abc"))

    assert excinfo.value.category == ErrorCategory.PRIVATE
    assert str(excinfo.value) == "This video is private and cannot be accessed."
    assert excinfo.value.raw_error == "[youtube] abc: Private video"


def test_fetch_metadata_times_out_and_kills_the_process(tmp_path: Path, monkeypatch) -> None:
    process = _FakeProcess(delay=5)
    _patch_process(monkeypatch, process)

    with pytest.raises(MetadataFetchError) as excinfo:
        asyncio.run(_extractor(tmp_path, timeout=0.05).fetch_metadata("https://youtu.be/abc"))

    assert excinfo.value.category == ErrorCategory.TIMEOUT
    assert str(excinfo.value) == "Request timed out. Please try again."
    assert process.killed


def test_fetch_metadata_rejects_invalid_json(tmp_path: Path, monkeypatch) -> None:
    _patch_process(monkeypatch, _FakeProcess(stdout=b"not json"))

    with pytest.raises(MetadataFetchError) as excinfo:
        asyncio.run(_extractor(tmp_path).fetch_metadata("https://youtu.be/abc"))

    assert excinfo.value.category == ErrorCategory.GENERIC
