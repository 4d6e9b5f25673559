"""
URL classification helpers.

Everything here is plain string matching on the URL; nothing touches the network.
"""

import re
from typing import List, Optional, Iterable, Union

from .jobs import MediaMode, Platform

PLATFORM_DOMAINS = {
    Platform.YOUTUBE: ('youtube.com', 'youtu.be'),
    Platform.INSTAGRAM: ('instagram.com', 'instagr.am'),
    Platform.TIKTOK: ('tiktok.com',),
    Platform.FACEBOOK: ('facebook.com', 'fb.watch', 'fb.com', 'messenger.com'),
    Platform.SPOTIFY: ('spotify.com',),
    Platform.X: ('twitter.com', 'x.com'),
    Platform.PINTEREST: ('pinterest.com', 'pin.it'),
    Platform.SOUNDCLOUD: ('soundcloud.com',),
}

PLATFORM_NAMES = {
    Platform.YOUTUBE: 'YouTube',
    Platform.INSTAGRAM: 'Instagram',
    Platform.TIKTOK: 'TikTok',
    Platform.FACEBOOK: 'Facebook',
    Platform.SPOTIFY: 'Spotify',
    Platform.X: 'X',
    Platform.PINTEREST: 'Pinterest',
    Platform.SOUNDCLOUD: 'SoundCloud',
}

_URL_LINE = re.compile(r'^https?://\S+', re.IGNORECASE)


def detect_platform(url: str) -> Optional[Platform]:
    """Returns the platform a URL belongs to, or None for unknown sites."""
    lowered = url.lower()
    for platform, domains in PLATFORM_DOMAINS.items():
        if any(domain in lowered for domain in domains):
            return platform
    return None


def check_platform_url(url: str, platform: Platform) -> Optional[str]:
    """
    Checks that a URL belongs to the platform the user selected.

    Returns:
        None if the URL matches, otherwise a message for the user.
    """
    lowered = url.lower()
    if any(domain in lowered for domain in PLATFORM_DOMAINS[platform]):
        return None
    detected = detect_platform(url)
    if detected is not None:
        name = PLATFORM_NAMES[detected]
        return f"This looks like a {name} link. Please switch to {name}."
    return f"Invalid URL for {PLATFORM_NAMES[platform]}. Please check your link."


def detect_content_type(url: str, mode: MediaMode = MediaMode.VIDEO) -> str:
    """Maps a URL to the content folder it should be saved under."""
    if mode == MediaMode.AUDIO:
        return 'audio'
    if '/reel/' in url or '/reels/' in url:
        return 'reels'
    if '/stories/' in url or '/story/' in url:
        return 'stories'
    if '/shorts/' in url:
        return 'shorts'
    if '/playlist' in url:
        return 'playlist'
    if '/p/' in url and detect_platform(url) == Platform.INSTAGRAM:
        return 'post'
    return 'video'


def is_radio_mix(url: str) -> bool:
    return 'start_radio=1' in url or 'list=RD' in url


def is_playlist_url(url: str) -> bool:
    """True for playlist URLs that are not a single video inside a playlist."""
    if 'list=' not in url or is_radio_mix(url):
        return False
    return '/playlist' in url or 'watch?v=' not in url


def playlist_args(url: str, item_limit: int) -> List[str]:
    """yt-dlp flags that flatten playlists to a bounded window of items."""
    if is_radio_mix(url) or is_playlist_url(url):
        return ['--flat-playlist', '--playlist-items', f'1:{item_limit}']
    if 'list=' in url and 'watch?v=' in url:
        return ['--no-playlist']
    return []


def parse_batch_lines(text: Union[str, Iterable[str]]) -> List[str]:
    """
    Extracts the URLs from pasted batch text, preserving their order.

    Only non-blank lines beginning with http:// or https:// are kept; anything
    else is dropped silently.
    """
    lines = text.splitlines() if isinstance(text, str) else list(text)
    urls = []
    for line in lines:
        candidate = line.strip()
        if candidate and _URL_LINE.match(candidate):
            urls.append(candidate)
    return urls
