"""Per-platform cookie files handed to yt-dlp."""
import os
import logging
import tempfile
from pathlib import Path
from typing import Optional, Dict, Any

from .constants import COOKIES_DIR, LEGACY_COOKIE_FILE, COOKIE_PLATFORMS
from .exceptions import CookieError
from .platforms import detect_platform


class CookieStore:
    """
    Stores one Netscape cookie file per platform.

    A session saved for one platform is never handed to another platform's
    request. The legacy global cookie file is used only for sites that have no
    dedicated cookie file of their own.
    """
    def __init__(self, cookies_dir: Path = COOKIES_DIR, legacy_file: Path = LEGACY_COOKIE_FILE):
        self.cookies_dir = cookies_dir
        self.legacy_file = legacy_file
        self.logger = logging.getLogger(__name__)

    def path_for(self, platform: str) -> Path:
        return self.cookies_dir / f'cookies_{platform}.txt'

    def save(self, content: str, platform: str = 'instagram') -> Path:
        """
        Writes cookie text for a platform, replacing any previous file atomically.

        Raises:
            CookieError: If the content is empty or the file cannot be written.
        """
        if not content or not content.strip():
            raise CookieError("Empty cookie content")
        target = self.path_for(platform)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=str(target.parent), prefix='.cookies-', suffix='.tmp')
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(content.strip())
            os.replace(tmp_name, target)
        except OSError as e:
            raise CookieError(f"Failed to save cookies: {e}") from e
        self.logger.info(f"Cookies saved to {target} for {platform}")
        return target

    def status(self, platform: str = 'instagram') -> Dict[str, Any]:
        target = self.path_for(platform)
        try:
            if target.exists():
                return {'exists': target.stat().st_size > 0, 'path': str(target)}
        except OSError as e:
            self.logger.warning(f"Could not read cookie file {target}: {e}")
        return {'exists': False}

    def delete(self, platform: str = 'instagram'):
        target = self.path_for(platform)
        try:
            if target.exists():
                target.unlink()
        except OSError as e:
            raise CookieError(f"Failed to delete cookies: {e}") from e

    def resolve(self, url: str) -> Optional[Path]:
        """Returns the cookie file a request for `url` may use, if any."""
        platform = detect_platform(url)
        if platform is not None and platform.value in COOKIE_PLATFORMS:
            dedicated = self.path_for(platform.value)
            if dedicated.exists():
                self.logger.debug(f"Using custom cookies for {platform.value} (Path: {dedicated})")
                return dedicated
            return None
        if self.legacy_file.exists():
            self.logger.debug("Using legacy cookies.txt")
            return self.legacy_file
        return None
