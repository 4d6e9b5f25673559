"""
Defines application-wide constants, paths, and utility functions.

This module centralizes configuration for paths, URLs, and subprocess behavior,
adapting to whether the application is running from source or as a frozen executable.
"""

import sys
import subprocess
from pathlib import Path

# --- Application Path and Configuration Setup ---
if getattr(sys, 'frozen', False):
    # If the application is run as a bundle, the PyInstaller bootloader
    # sets the app path to the executable's directory.
    APP_PATH = Path(sys.executable).parent
else:
    # In development, the app path is the project root (parent of 'vibe_downloader').
    APP_PATH = Path(__file__).resolve().parent.parent

# Use a user-specific directory for configuration to avoid permission issues.
USER_DATA_DIR: Path = Path.home() / '.vibe-downloader'
CONFIG_FILE: Path = USER_DATA_DIR / 'config.json'
HISTORY_FILE: Path = USER_DATA_DIR / 'history.json'
LOG_DIR: Path = USER_DATA_DIR / 'logs'
COOKIES_DIR: Path = USER_DATA_DIR / 'cookies'
LEGACY_COOKIE_FILE: Path = USER_DATA_DIR / 'cookies.txt'

# Centralize subprocess creation flags to avoid console windows on Windows.
SUBPROCESS_CREATION_FLAGS = subprocess.CREATE_NO_WINDOW if sys.platform == 'win32' else 0

# --- External tool behaviour ---
USER_AGENT = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36'
REQUEST_HEADERS = {'User-Agent': USER_AGENT}
REQUEST_TIMEOUTS = (10, 60)  # (connect_timeout, read_timeout)

METADATA_TIMEOUT_SECONDS = 45
ITEM_TIMEOUT_SECONDS = 600
INTER_ITEM_COOLDOWN_SECONDS = 0.5
FILE_RELEASE_DELAY_SECONDS = 0.5
PLAYLIST_ITEM_LIMIT = 50
SOCKET_TIMEOUT_SECONDS = 15

# yt-dlp --audio-quality values (0 is best, 9 is worst).
AUDIO_QUALITY_TIERS = {
    'audio_best': '0',
    'audio_standard': '5',
    'audio_low': '9',
}
DEFAULT_AUDIO_TIER = 'audio_standard'

# Platforms whose sessions live in their own cookie file and never fall back
# to the legacy global cookie file.
COOKIE_PLATFORMS = ('instagram', 'facebook', 'youtube', 'tiktok')

# --- Dependency downloads ---
YT_DLP_URLS = {
    'win32': 'https://github.com/yt-dlp/yt-dlp/releases/latest/download/yt-dlp.exe',
    'linux': 'https://github.com/yt-dlp/yt-dlp/releases/latest/download/yt-dlp',
    'darwin': 'https://github.com/yt-dlp/yt-dlp/releases/latest/download/yt-dlp_macos'
}
YT_DLP_RELEASES_API_URL = 'https://api.github.com/repos/yt-dlp/yt-dlp/releases/latest'
MIN_YT_DLP_BINARY_SIZE = 1024 * 1024
FFMPEG_URLS = {
    'win32': 'https://github.com/BtbN/FFmpeg-Builds/releases/download/latest/ffmpeg-master-latest-win64-gpl.zip',
    'linux': 'https://github.com/BtbN/FFmpeg-Builds/releases/download/latest/ffmpeg-master-latest-linux64-gpl.tar.xz',
    'darwin': 'https://github.com/BtbN/FFmpeg-Builds/releases/download/latest/ffmpeg-master-latest-macos64-gpl.zip'
}

# --- Application Update Checker ---
GITHUB_OWNER = 'vibe-downloader'
GITHUB_REPO = 'vibe-downloader'
GITHUB_API_URL = f'https://api.github.com/repos/{GITHUB_OWNER}/{GITHUB_REPO}/releases/latest'
