"""
Provides methods to extract information from URLs using yt-dlp.
"""

import asyncio
import json
import sys
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .constants import (
    SUBPROCESS_CREATION_FLAGS, USER_AGENT, METADATA_TIMEOUT_SECONDS, PLAYLIST_ITEM_LIMIT,
    SOCKET_TIMEOUT_SECONDS
)
from .cookies import CookieStore
from .exceptions import MetadataFetchError
from .platforms import playlist_args


class ErrorCategory(str, Enum):
    LOGIN_REQUIRED = 'login_required'
    PRIVATE = 'private'
    UNAVAILABLE = 'unavailable'
    AGE_RESTRICTED = 'age_restricted'
    REGION_BLOCKED = 'region_blocked'
    NOT_FOUND = 'not_found'
    TIMEOUT = 'timeout'
    NETWORK = 'network'
    UNSUPPORTED_URL = 'unsupported_url'
    GENERIC = 'generic'


# Checked in order; the first category with a matching marker wins.
_ERROR_MARKERS: List[Tuple[ErrorCategory, Tuple[str, ...]]] = [
    (ErrorCategory.LOGIN_REQUIRED, ('log in', 'login', 'authentication')),
    (ErrorCategory.PRIVATE, ('private',)),
    (ErrorCategory.UNAVAILABLE, ('unavailable',)),
    (ErrorCategory.AGE_RESTRICTED, ('age-restricted', 'age restricted', 'confirm your age', 'inappropriate for some users')),
    (ErrorCategory.REGION_BLOCKED, ('blocked', 'country', 'geo restricted', 'geo-restricted')),
    (ErrorCategory.NOT_FOUND, ('not found', '404')),
    (ErrorCategory.TIMEOUT, ('timed out', 'timeout')),
    (ErrorCategory.NETWORK, ('network', 'connection')),
    (ErrorCategory.UNSUPPORTED_URL, ('unsupported url',)),
]

_FRIENDLY_MESSAGES = {
    ErrorCategory.LOGIN_REQUIRED: "Login required. This content is private or requires authentication.",
    ErrorCategory.PRIVATE: "This video is private and cannot be accessed.",
    ErrorCategory.UNAVAILABLE: "This video is unavailable or has been removed.",
    ErrorCategory.AGE_RESTRICTED: "Age-restricted content. Login required to access.",
    ErrorCategory.REGION_BLOCKED: "This content is blocked in your region.",
    ErrorCategory.NOT_FOUND: "Content not found. Check the URL and try again.",
    ErrorCategory.TIMEOUT: "Request timed out. Please try again.",
    ErrorCategory.NETWORK: "Network error. Check your internet connection.",
    ErrorCategory.UNSUPPORTED_URL: "This URL is not supported.",
    ErrorCategory.GENERIC: "Failed to fetch video info",
}


def classify_metadata_error(raw_error: str) -> ErrorCategory:
    """Maps raw yt-dlp failure text to a user-facing category."""
    lowered = (raw_error or '').lower()
    for category, markers in _ERROR_MARKERS:
        if any(marker in lowered for marker in markers):
            return category
    return ErrorCategory.GENERIC


def friendly_error_message(category: ErrorCategory, url: str = '') -> str:
    if category == ErrorCategory.UNSUPPORTED_URL and 'facebook.com/stories' in url:
        return "Facebook Stories are currently not supported by the downloader."
    return _FRIENDLY_MESSAGES[category]


@dataclass
class MediaFormat:
    format_id: str
    ext: str
    height: Optional[int] = None


@dataclass
class PlaylistEntry:
    id: str
    title: str
    duration: float
    url: str


@dataclass
class MediaMetadata:
    """The parts of a yt-dlp info dictionary the downloader uses."""
    id: Optional[str]
    title: str
    webpage_url: str
    content_type: str = 'video'
    thumbnail: Optional[str] = None
    thumbnails: List[Dict[str, Any]] = field(default_factory=list)
    uploader: str = 'Unknown'
    duration: float = 0
    formats: List[MediaFormat] = field(default_factory=list)
    entries: List[PlaylistEntry] = field(default_factory=list)
    playlist_count: int = 0

    @property
    def is_playlist(self) -> bool:
        return self.content_type == 'playlist'

    @classmethod
    def from_info(cls, raw: Dict[str, Any], url: str) -> 'MediaMetadata':
        """Builds metadata from the JSON printed by `--dump-single-json`."""
        raw_entries = raw.get('entries') or []
        if '/stories/' in url or '/story/' in url:
            content_type = 'story'
        elif raw.get('_type') == 'playlist' or raw_entries:
            content_type = 'playlist'
        else:
            content_type = 'video'

        entries = []
        for i, entry in enumerate(e for e in raw_entries if e):
            entry_id = str(entry.get('id') or '')
            entries.append(PlaylistEntry(
                id=entry_id,
                title=entry.get('title') or f"Track {i + 1}",
                duration=entry.get('duration') or 0,
                url=entry.get('url') or entry.get('webpage_url') or f"https://www.youtube.com/watch?v={entry_id}",
            ))

        formats = [
            MediaFormat(format_id=str(f.get('format_id')), ext=f.get('ext') or '', height=f.get('height'))
            for f in raw.get('formats') or [] if f.get('format_id') is not None
        ]

        return cls(
            id=raw.get('id'),
            title=raw.get('title') or raw.get('fulltitle') or 'Untitled',
            webpage_url=raw.get('webpage_url') or url,
            content_type=content_type,
            thumbnail=raw.get('thumbnail'),
            thumbnails=raw.get('thumbnails') or [],
            uploader=raw.get('uploader') or raw.get('channel') or raw.get('creator') or raw.get('uploader_id') or 'Unknown',
            duration=raw.get('duration') or 0,
            formats=formats,
            entries=entries,
            playlist_count=raw.get('playlist_count') or len(entries),
        )


class MetadataExtractor:
    """
    Describes URLs by running `yt-dlp --dump-single-json`.

    Every failure surfaces as a `MetadataFetchError` whose category is derived
    from yt-dlp's error text.
    """
    def __init__(self, yt_dlp_path: Path, cookie_store: CookieStore,
                 timeout: float = METADATA_TIMEOUT_SECONDS, playlist_item_limit: int = PLAYLIST_ITEM_LIMIT):
        """
        Initializes the MetadataExtractor.

        Args:
            yt_dlp_path: The path to the yt-dlp executable.
            cookie_store: Resolves the cookie file allowed for each URL.
            timeout: Seconds before the fetch is abandoned.
            playlist_item_limit: The last playlist item listed for flattened playlists.
        """
        self.yt_dlp_path = yt_dlp_path
        self.cookie_store = cookie_store
        self.timeout = timeout
        self.playlist_item_limit = playlist_item_limit
        self.logger = logging.getLogger(__name__)

    def _parse_yt_dlp_error(self, stderr: str) -> str:
        """
        Parses stderr from yt-dlp to find a concise error message.

        Args:
            stderr: The standard error string from the yt-dlp process.

        Returns:
            A concise error message, or the last line of stderr as a fallback.
        """
        if not stderr or not stderr.strip():
            return "yt-dlp returned an error with no output."

        for line in stderr.strip().splitlines():
            if line.lower().startswith('error:'):
                error_msg = line[6:].strip()
                return error_msg[:200] + "..." if len(error_msg) > 200 else error_msg

        return stderr.strip().splitlines()[-1]

    def build_command(self, url: str) -> List[str]:
        """Builds the yt-dlp argument list for describing `url`."""
        command = [
            str(self.yt_dlp_path), url,
            '--dump-single-json',
            '--no-warnings',
            '--socket-timeout', str(SOCKET_TIMEOUT_SECONDS),
            '--user-agent', USER_AGENT,
        ]
        cookie_path = self.cookie_store.resolve(url)
        if cookie_path:
            command.extend(['--cookies', str(cookie_path)])
        command.extend(playlist_args(url, self.playlist_item_limit))
        return command

    def _fail(self, raw_error: str, url: str) -> MetadataFetchError:
        category = classify_metadata_error(raw_error)
        return MetadataFetchError(friendly_error_message(category, url), category=category, raw_error=raw_error)

    async def fetch_metadata(self, url: str) -> MediaMetadata:
        """
        Fetches and parses metadata for a URL.

        Raises:
            MetadataFetchError: On timeout, non-zero exit code, or unparsable output.
        """
        command = self.build_command(url)
        self.logger.info(f"Fetching info for {url}...")

        kwargs = {}
        if sys.platform == 'win32':
            kwargs['creationflags'] = SUBPROCESS_CREATION_FLAGS

        process = None
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                **kwargs
            )
            stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except FileNotFoundError:
            self.logger.error(f"yt-dlp executable not found at: {self.yt_dlp_path}")
            raise MetadataFetchError("yt-dlp executable not found.", category=ErrorCategory.GENERIC)
        except asyncio.TimeoutError:
            if process and process.returncode is None: process.kill()
            self.logger.error(f"Metadata fetch timed out after {self.timeout}s: {url}")
            raise self._fail("Request timed out", url)
        except OSError as e:
            self.logger.error(f"OS error running yt-dlp: {e}")
            raise MetadataFetchError(f"OS error: {e}", category=ErrorCategory.GENERIC, raw_error=str(e))
        except asyncio.CancelledError:
            if process and process.returncode is None: process.kill()
            raise

        stdout = stdout_bytes.decode('utf-8', 'replace')
        stderr = stderr_bytes.decode('utf-8', 'replace')

        if process.returncode != 0:
            raw_error = self._parse_yt_dlp_error(stderr)
            self.logger.error(f"yt-dlp metadata fetch failed for '{url}'. Stderr: {stderr.strip()}")
            raise self._fail(raw_error, url)

        try:
            raw = json.loads(stdout)
        except json.JSONDecodeError as e:
            self.logger.error(f"yt-dlp printed invalid JSON for '{url}': {e}")
            raise MetadataFetchError("Failed to fetch video info", category=ErrorCategory.GENERIC, raw_error=str(e))
        if not isinstance(raw, dict):
            raise MetadataFetchError("Failed to fetch video info", category=ErrorCategory.GENERIC)

        return MediaMetadata.from_info(raw, url)
