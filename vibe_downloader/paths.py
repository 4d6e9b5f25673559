"""Organizes downloads into per-platform, per-content-type folders."""
import re
from pathlib import Path
from typing import Optional

CONTENT_FOLDERS = {
    'video': 'Videos',
    'audio': 'Audio',
    'reel': 'Reels',
    'reels': 'Reels',
    'story': 'Stories',
    'stories': 'Stories',
    'playlist': 'Playlists',
    'thumbnail': 'Thumbnails',
    'photo': 'Photos',
    'shorts': 'Shorts',
    'post': 'Posts',
    'track': 'Tracks',
    'album': 'Albums',
}

PLATFORM_FOLDERS = {
    'youtube': 'YouTube',
    'instagram': 'Instagram',
    'tiktok': 'TikTok',
    'facebook': 'Facebook',
    'spotify': 'Spotify',
    'x': 'X (Twitter)',
    'pinterest': 'Pinterest',
    'soundcloud': 'SoundCloud',
    'snapchat': 'Snapchat',
}

ROOT_FOLDER = 'VibeDownloader'

_UNSAFE_CHARS = re.compile(r'[^a-zA-Z0-9 \-_]')


def safe_title(title: str, fallback: str = 'download') -> str:
    """Strips a title down to characters that are safe in any filesystem."""
    cleaned = _UNSAFE_CHARS.sub('', title or '').strip()
    return cleaned or fallback


def organized_folder(base_path: Path, platform: str, content_type: str, sub_folder: Optional[str] = None, create: bool = True) -> Path:
    """
    Builds `<base>/VibeDownloader/<Platform>/<ContentFolder>[/<sub folder>]`.

    Args:
        base_path: The user's download root.
        platform: A platform id such as 'youtube'.
        content_type: A content type such as 'video' or 'reels'.
        sub_folder: Optional extra level, e.g. a playlist title.
        create: Whether to create the folder on disk.
    """
    platform_folder = PLATFORM_FOLDERS.get(platform.lower(), platform)
    content_folder = CONTENT_FOLDERS.get(content_type.lower(), 'Videos')
    full_path = base_path / ROOT_FOLDER / platform_folder / content_folder

    if sub_folder:
        safe_sub = safe_title(sub_folder, fallback='')
        if safe_sub:
            full_path = full_path / safe_sub

    if create:
        full_path.mkdir(parents=True, exist_ok=True)
    return full_path
