"""Manages the discovery, download, and updates for yt-dlp and FFmpeg."""
import sys
import shutil
import asyncio
import urllib.parse
import zipfile
import tarfile
import time
import tempfile
import logging
from pathlib import Path
from typing import Optional, List, Tuple, Callable, Any, Dict, Coroutine

import aiohttp
import aiofiles

from .constants import (
    YT_DLP_URLS, YT_DLP_RELEASES_API_URL, MIN_YT_DLP_BINARY_SIZE, FFMPEG_URLS, REQUEST_HEADERS,
    APP_PATH, SUBPROCESS_CREATION_FLAGS
)
from .exceptions import DownloadCancelledError


class DependencyManager:
    """Manages the discovery, download, and updates for yt-dlp and FFmpeg."""
    DOWNLOAD_RETRY_ATTEMPTS = 3

    def __init__(self, event_callback: Optional[Callable[[Tuple[str, Any]], Coroutine[Any, Any, None]]] = None,
                 install_dir: Path = APP_PATH):
        """
        Initializes the DependencyManager.

        Args:
            event_callback: The async function to call with download progress events.
            install_dir: Where downloaded executables are placed.
        """
        self.event_callback = event_callback
        self.install_dir = install_dir
        self.logger = logging.getLogger(__name__)
        self.yt_dlp_path: Optional[Path] = None
        self.ffmpeg_path: Optional[Path] = None
        self.download_task: Optional[asyncio.Task] = None

    async def initialize(self):
        """Asynchronously finds paths to dependencies to avoid blocking the event loop."""
        self.logger.info("Initializing dependency paths...")
        self.yt_dlp_path, self.ffmpeg_path = await asyncio.gather(
            asyncio.to_thread(self.find_yt_dlp),
            asyncio.to_thread(self.find_ffmpeg)
        )
        self.logger.info(f"yt-dlp path: {self.yt_dlp_path}")
        self.logger.info(f"FFmpeg path: {self.ffmpeg_path}")

    def cancel_download(self):
        """Signals the download process to stop."""
        if self.download_task and not self.download_task.done():
            self.logger.info("Cancellation signal sent to dependency downloader.")
            self.download_task.cancel()

    def find_yt_dlp(self) -> Optional[Path]:
        """Finds the yt-dlp executable, discarding a truncated local copy."""
        local_path = self._local_path('yt-dlp')
        if local_path.exists() and local_path.stat().st_size < MIN_YT_DLP_BINARY_SIZE:
            self.logger.warning("yt-dlp binary seems corrupted (too small), deleting to redownload...")
            try:
                local_path.unlink()
            except OSError as e:
                self.logger.error(f"Could not delete corrupted yt-dlp binary: {e}")
        self.yt_dlp_path = self._find_executable('yt-dlp')
        return self.yt_dlp_path

    def find_ffmpeg(self) -> Optional[Path]:
        """Finds the ffmpeg executable."""
        self.ffmpeg_path = self._find_executable('ffmpeg')
        return self.ffmpeg_path

    def _local_path(self, name: str) -> Path:
        return self.install_dir / (f'{name}.exe' if sys.platform == 'win32' else name)

    def _find_executable(self, name: str) -> Optional[Path]:
        """Finds an executable, preferring a locally managed one."""
        local_path = self._local_path(name)
        if local_path.exists():
            return local_path
        path_in_system = shutil.which(name)
        return Path(path_in_system) if path_in_system else None

    async def get_version(self, executable_path: Optional[Path]) -> str:
        """Asynchronously returns the version of an executable by running it with '--version'."""
        if not executable_path or not executable_path.exists():
            return "Not found"
        try:
            command: List[str] = [str(executable_path)]
            if 'ffmpeg' in executable_path.name.lower():
                command.append('-version')
            else:
                command.append('--version')

            kwargs = {'stdout': asyncio.subprocess.PIPE, 'stderr': asyncio.subprocess.PIPE}
            if sys.platform == 'win32':
                kwargs['creationflags'] = SUBPROCESS_CREATION_FLAGS

            process = await asyncio.create_subprocess_exec(*command, **kwargs)
            stdout_bytes, _ = await asyncio.wait_for(process.communicate(), timeout=15)

            if process.returncode != 0:
                return "Cannot execute"

            return stdout_bytes.decode('utf-8', 'replace').strip().split('\n')[0]
        except FileNotFoundError:
            return "Not found or no permission"
        except asyncio.TimeoutError:
            return "Version check timed out"
        except OSError:
            return "Cannot execute"

    async def _report(self, dep_type: str, **payload):
        if self.event_callback:
            await self.event_callback(('dependency_progress', {'type': dep_type, **payload}))

    async def _download_file(self, session: aiohttp.ClientSession, url: str, save_path: Path, dep_type: str):
        """Downloads a file as a single stream, with retries."""
        await self._report(dep_type, status='determinate', text='Preparing download...', value=0)
        for attempt in range(self.DOWNLOAD_RETRY_ATTEMPTS):
            try:
                async with session.get(url, headers=REQUEST_HEADERS, timeout=aiohttp.ClientTimeout(total=None, sock_read=60)) as r:
                    r.raise_for_status()
                    total_size = int(r.headers.get('Content-Length', 0))
                    if total_size <= 0:
                        await self._report(dep_type, status='indeterminate', text=f'Downloading {dep_type}... (Size unknown)')

                    bytes_downloaded, start_time = 0, time.monotonic()
                    async with aiofiles.open(save_path, 'wb') as f_out:
                        async for chunk in r.content.iter_chunked(8192):
                            await f_out.write(chunk)
                            bytes_downloaded += len(chunk)
                            if total_size > 0:
                                progress = (bytes_downloaded / total_size) * 100
                                elapsed = time.monotonic() - start_time
                                speed = (bytes_downloaded / elapsed) / 1024 / 1024 if elapsed > 0 else 0
                                text = f'Downloading... {bytes_downloaded/1024/1024:.1f}/{total_size/1024/1024:.1f} MB ({speed:.1f} MB/s)'
                                await self._report(dep_type, status='determinate', text=text, value=progress)
                await self._report(dep_type, status='determinate', text='Download complete. Preparing...', value=100)
                return
            except aiohttp.ClientError as e:
                self.logger.error(f"Download error on attempt {attempt + 1}: {e}")
                if attempt < self.DOWNLOAD_RETRY_ATTEMPTS - 1: await asyncio.sleep(2 ** attempt)
                else: raise e

    async def get_latest_yt_dlp_version(self, session: aiohttp.ClientSession) -> Optional[str]:
        """Returns the tag of the newest yt-dlp release on GitHub."""
        async with session.get(YT_DLP_RELEASES_API_URL, headers=REQUEST_HEADERS, timeout=aiohttp.ClientTimeout(total=15)) as r:
            r.raise_for_status()
            data = await r.json()
        return data.get('tag_name') if isinstance(data, dict) else None

    async def install_or_update_yt_dlp(self) -> Dict[str, Any]:
        """Coroutine for downloading yt-dlp, skipped when the local copy is already the latest release."""
        self.download_task = asyncio.current_task()
        try:
            platform = sys.platform
            if platform not in YT_DLP_URLS:
                return {'type': 'yt-dlp', 'success': False, 'error': f"Unsupported OS: {platform}"}

            url = YT_DLP_URLS[platform]
            save_path = self._local_path('yt-dlp')
            current_version = await self.get_version(self.yt_dlp_path)

            async with aiohttp.ClientSession() as session:
                latest_version = await self.get_latest_yt_dlp_version(session)
                if latest_version and current_version == latest_version:
                    self.logger.info(f"yt-dlp is already up to date ({current_version}).")
                    return {'type': 'yt-dlp', 'success': True, 'updated': False, 'version': current_version}

                self.logger.info(f"Updating yt-dlp: {current_version} -> {latest_version}")
                await self._download_file(session, url, save_path, 'yt-dlp')

            if platform in ['linux', 'darwin']:
                await asyncio.to_thread(save_path.chmod, 0o755)

            self.yt_dlp_path = save_path
            new_version = await self.get_version(save_path)
            result = {'type': 'yt-dlp', 'success': True, 'updated': True, 'version': new_version, 'path': str(save_path)}
            if latest_version and new_version != latest_version:
                result['message'] = 'Update completed but version verification failed'
            return result
        except asyncio.CancelledError:
            self.logger.info("yt-dlp download cancelled by user.")
            raise DownloadCancelledError("Download cancelled by user.")
        except aiohttp.ClientError as e:
            return {'type': 'yt-dlp', 'success': False, 'error': f"Network error: {e}"}
        except (IOError, OSError) as e:
            return {'type': 'yt-dlp', 'success': False, 'error': f"File error: {e}"}

    async def download_ffmpeg(self) -> Dict[str, Any]:
        """Coroutine for downloading and extracting FFmpeg."""
        self.download_task = asyncio.current_task()
        platform = sys.platform
        if platform not in FFMPEG_URLS:
            return {'type': 'ffmpeg', 'success': False, 'error': f"Unsupported OS: {platform}"}

        url = FFMPEG_URLS[platform]
        final_ffmpeg_name = 'ffmpeg.exe' if platform == 'win32' else 'ffmpeg'
        final_ffmpeg_path = self.install_dir / final_ffmpeg_name

        with tempfile.TemporaryDirectory(prefix="ffmpeg-dl-") as temp_dir_str:
            temp_dir = Path(temp_dir_str)
            try:
                archive_path = temp_dir / Path(urllib.parse.unquote(url)).name
                extract_dir = temp_dir / "ffmpeg_extracted"

                async with aiohttp.ClientSession() as session:
                    await self._download_file(session, url, archive_path, 'ffmpeg')

                await self._report('ffmpeg', status='indeterminate', text='Extracting FFmpeg...')
                await asyncio.to_thread(extract_dir.mkdir, exist_ok=True)
                await asyncio.to_thread(self._extract_archive, archive_path, extract_dir)

                found_files = list(extract_dir.rglob(final_ffmpeg_name))
                if not found_files: raise FileNotFoundError(f"Could not find '{final_ffmpeg_name}' in archive.")

                if final_ffmpeg_path.exists(): await asyncio.to_thread(final_ffmpeg_path.unlink)
                await asyncio.to_thread(shutil.move, str(found_files[0]), str(final_ffmpeg_path))

                if platform in ['linux', 'darwin']: await asyncio.to_thread(final_ffmpeg_path.chmod, 0o755)
                self.ffmpeg_path = final_ffmpeg_path
                return {'type': 'ffmpeg', 'success': True, 'path': str(final_ffmpeg_path)}
            except asyncio.CancelledError:
                self.logger.info("FFmpeg download cancelled by user.")
                raise DownloadCancelledError("Download cancelled by user.")
            except aiohttp.ClientError as e: return {'type': 'ffmpeg', 'success': False, 'error': f"Network error: {e}"}
            except (zipfile.BadZipFile, tarfile.ReadError) as e: return {'type': 'ffmpeg', 'success': False, 'error': f"Archive error: {e}"}
            except FileNotFoundError as e: return {'type': 'ffmpeg', 'success': False, 'error': str(e)}
            except (IOError, OSError) as e: return {'type': 'ffmpeg', 'success': False, 'error': f"File error: {e}"}

    @staticmethod
    def _extract_archive(archive_path: Path, extract_dir: Path):
        if archive_path.suffix == '.zip':
            with zipfile.ZipFile(archive_path, 'r') as archive:
                archive.extractall(extract_dir)
        elif '.tar.xz' in archive_path.name:
            with tarfile.open(archive_path, 'r:xz') as archive:
                archive.extractall(path=extract_dir)
