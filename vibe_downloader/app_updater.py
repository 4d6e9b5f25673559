"""Manages checking for new application versions on GitHub."""
import asyncio
import logging
import json
from typing import Any, Callable, Coroutine, Dict, Optional, Tuple

import requests
from packaging.version import parse, InvalidVersion

from .constants import GITHUB_API_URL, REQUEST_HEADERS, REQUEST_TIMEOUTS
from ._version import __version__
from .config import Settings


class AppUpdater:
    """Checks for new application versions on GitHub."""

    def __init__(self, event_callback: Optional[Callable[[Tuple[str, Any]], Coroutine[Any, Any, None]]],
                 config: Settings, current_version: str = __version__):
        """
        Initializes the AppUpdater.

        Args:
            event_callback: The async function to call with manager events.
            config: The application's configuration settings object.
            current_version: The version the running application reports.
        """
        self.event_callback = event_callback
        self.config = config
        self.current_version = current_version
        self.logger = logging.getLogger(__name__)

    async def check_for_updates(self) -> Optional[Dict[str, str]]:
        """Runs the blocking check in a worker thread and reports a newer release."""
        release = await asyncio.to_thread(self.find_newer_release)
        if release and self.event_callback:
            await self.event_callback(('new_version_available', release))
        return release

    def find_newer_release(self) -> Optional[Dict[str, str]]:
        """
        Fetches the latest release info from GitHub and compares versions.

        Network errors, parsing errors and unexpected API responses are logged
        and treated as "no update".

        Returns:
            A dict with 'version' and 'url' when a newer, non-skipped release exists.
        """
        self.logger.info("Checking for application updates...")
        latest_version_str = ""
        try:
            response = requests.get(GITHUB_API_URL, headers=REQUEST_HEADERS, timeout=REQUEST_TIMEOUTS)
            response.raise_for_status()

            data = response.json()
            if not isinstance(data, dict):
                self.logger.warning(f"Unexpected API response type: {type(data)}")
                return None

            latest_version_str = data.get('tag_name')
            release_url = data.get('html_url')

            if not latest_version_str or not release_url:
                self.logger.warning("Could not find version tag or URL in API response.")
                return None

            latest_version_str = latest_version_str.lstrip('v')

            if latest_version_str == self.config.skipped_update_version:
                self.logger.info(f"Update for version {latest_version_str} has been skipped by the user.")
                return None

            current_version = parse(self.current_version)
            latest_version = parse(latest_version_str)
            self.logger.info(f"Current version: {current_version}, Latest version found: {latest_version}")

            if latest_version > current_version:
                self.logger.info(f"New version available: {latest_version}")
                return {'version': str(latest_version), 'url': release_url}
            return None

        except requests.exceptions.RequestException as e:
            status_code = f" (Status: {e.response.status_code})" if getattr(e, 'response', None) is not None else ""
            self.logger.warning(f"Failed to check for updates (network error): {e}{status_code}")
        except (InvalidVersion, KeyError, TypeError, json.JSONDecodeError) as e:
            self.logger.warning(f"Could not parse API response from GitHub: {e}")
            if latest_version_str:
                self.logger.warning(f"Version string was: '{latest_version_str}'")
        return None
