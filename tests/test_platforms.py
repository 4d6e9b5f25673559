from __future__ import annotations

from pathlib import Path

import pytest

from vibe_downloader.jobs import MediaMode, Platform
from vibe_downloader.paths import organized_folder, safe_title
from vibe_downloader.platforms import (
    check_platform_url, detect_content_type, detect_platform, parse_batch_lines, playlist_args
)


@pytest.mark.parametrize("url, platform", [
    ("https://youtu.be/abc", Platform.YOUTUBE),
    ("https://www.youtube.com/shorts/abc", Platform.YOUTUBE),
    ("https://instagr.am/p/abc", Platform.INSTAGRAM),
    ("https://fb.watch/xyz/", Platform.FACEBOOK),
    ("https://x.com/user/status/1", Platform.X),
    ("https://pin.it/abc", Platform.PINTEREST),
    ("https://soundcloud.com/artist/track", Platform.SOUNDCLOUD),
    ("https://open.spotify.com/track/1", Platform.SPOTIFY),
    ("https://example.com/video", None),
])
def test_detect_platform(url: str, platform) -> None:
    assert detect_platform(url) == platform


def test_check_platform_url_points_to_the_right_tab() -> None:
    assert check_platform_url("https://www.tiktok.com/@a/video/1", Platform.TIKTOK) is None
    assert check_platform_url("https://www.tiktok.com/@a/video/1", Platform.YOUTUBE) == (
        "This looks like a TikTok link. Please switch to TikTok."
    )
    assert check_platform_url("https://example.com/x", Platform.INSTAGRAM).startswith("Invalid URL for Instagram")


@pytest.mark.parametrize("url, mode, content_type", [
    ("https://www.instagram.com/reel/abc/", MediaMode.VIDEO, "reels"),
    ("https://www.instagram.com/stories/user/1/", MediaMode.VIDEO, "stories"),
    ("https://www.youtube.com/shorts/abc", MediaMode.VIDEO, "shorts"),
    ("https://www.youtube.com/playlist?list=PL1", MediaMode.VIDEO, "playlist"),
    ("https://www.instagram.com/p/abc/", MediaMode.VIDEO, "post"),
    ("https://www.youtube.com/watch?v=abc", MediaMode.VIDEO, "video"),
    ("https://www.instagram.com/reel/abc/", MediaMode.AUDIO, "audio"),
])
def test_detect_content_type(url: str, mode: MediaMode, content_type: str) -> None:
    assert detect_content_type(url, mode) == content_type


def test_playlist_args() -> None:
    assert playlist_args("https://www.youtube.com/watch?v=a&list=RDa&start_radio=1", 50) == [
        "--flat-playlist", "--playlist-items", "1:50"
    ]
    assert playlist_args("https://www.youtube.com/watch?v=a&list=PL1", 50) == ["--no-playlist"]
    assert playlist_args("https://www.youtube.com/watch?v=a", 50) == []


def test_parse_batch_lines_keeps_http_lines_in_order() -> None:
    text = "https://a.com/1\r\n\nfoo bar\n  HTTPS://b.com/2  \nwww.c.com\nhttp://d.com/3\nmailto:x@y.z"

    assert parse_batch_lines(text) == ["https://a.com/1", "HTTPS://b.com/2", "http://d.com/3"]
    assert parse_batch_lines(["", "https://a.com/1"]) == ["https://a.com/1"]
    assert parse_batch_lines("") == []


def test_safe_title() -> None:
    assert safe_title('AC/DC: "Live" <2024>') == "ACDC Live 2024"
    assert safe_title("???") == "download"


def test_organized_folder(tmp_path: Path) -> None:
    folder = organized_folder(tmp_path, "youtube", "playlist", sub_folder="My Mix!")

    assert folder == tmp_path / "VibeDownloader" / "YouTube" / "Playlists" / "My Mix"
    assert folder.is_dir()
    assert organized_folder(tmp_path, "x", "unknown", create=False) == tmp_path / "VibeDownloader" / "X (Twitter)" / "Videos"
