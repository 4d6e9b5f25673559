"""Embeds cover art into finished MP3 downloads."""

import asyncio
import logging
from pathlib import Path
from typing import Tuple

import aiohttp
from mutagen.id3 import APIC, ID3, ID3NoHeaderError, TIT2

from .constants import REQUEST_HEADERS, FILE_RELEASE_DELAY_SECONDS

_LOG = logging.getLogger(__name__)


async def fetch_thumbnail(url: str) -> Tuple[bytes, str]:
    """
    Downloads a thumbnail image.

    Returns:
        The image bytes and their MIME type.

    Raises:
        aiohttp.ClientError: If the request fails or returns an error status.
    """
    timeout = aiohttp.ClientTimeout(total=30)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        async with session.get(url, headers=REQUEST_HEADERS) as r:
            r.raise_for_status()
            mime = r.headers.get('content-type', 'image/jpeg').split(';')[0].strip() or 'image/jpeg'
            return await r.read(), mime


def write_cover(audio_path: Path, image: bytes, mime: str, title: str):
    """Writes an ID3 front-cover frame and title into an MP3 file."""
    try:
        tags = ID3(str(audio_path))
    except ID3NoHeaderError:
        tags = ID3()
    tags.delall('APIC')
    tags.add(APIC(encoding=3, mime=mime, type=3, desc='Cover', data=image))
    if title:
        tags.setall('TIT2', [TIT2(encoding=3, text=[title])])
    tags.save(str(audio_path))


async def embed_cover(audio_path: Path, thumbnail_url: str, title: str, release_delay: float = FILE_RELEASE_DELAY_SECONDS):
    """
    Fetches a thumbnail and embeds it as the cover of `audio_path`.

    Waits `release_delay` seconds first so the downloader has let go of the file.
    """
    image, mime = await fetch_thumbnail(thumbnail_url)
    await asyncio.sleep(release_delay)
    if not await asyncio.to_thread(audio_path.exists):
        raise FileNotFoundError(f"Downloaded file not found: {audio_path}")
    await asyncio.to_thread(write_cover, audio_path, image, mime, title)
    _LOG.info(f"Embedded cover art in {audio_path.name} ({mime}, {len(image)} bytes)")
