"""Runs yt-dlp media downloads and translates their output into ProgressEvents."""
import asyncio
import re
import os
import sys
import signal
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .constants import (
    SUBPROCESS_CREATION_FLAGS, USER_AGENT, AUDIO_QUALITY_TIERS, FILE_RELEASE_DELAY_SECONDS
)
from .cookies import CookieStore
from .exceptions import MediaFetchError
from .jobs import JobDescriptor, ProgressEvent
from .paths import organized_folder, safe_title
from .platforms import detect_content_type
from .tagging import embed_cover

EventSink = Callable[[ProgressEvent], Awaitable[None]]

PROGRESS_PREFIX = 'PROGRESS::'
PROGRESS_TEMPLATE = (
    'download:' + PROGRESS_PREFIX +
    '%(progress._percent_str)s::%(progress._total_bytes_str)s::%(progress._speed_str)s::'
    '%(progress._eta_str)s::%(progress._downloaded_bytes_str)s'
)

_ANSI_ESCAPE = re.compile(r'\x1b\[[0-9;]*m')
_PLAIN_PROGRESS = re.compile(
    r'\[download\]\s+(?P<percent>\d+(?:\.\d+)?)%'
    r'(?:\s+of\s+~?\s*(?P<total>\S+))?'
    r'(?:\s+at\s+(?P<speed>\S+))?'
    r'(?:\s+ETA\s+(?P<eta>\S+))?'
)
_DESTINATION_PATTERNS = (
    re.compile(r'\[Merger\] Merging formats into "(?P<path>.+)"'),
    re.compile(r'\[ExtractAudio\] Destination: (?P<path>.+)'),
    re.compile(r'\[download\] Destination: (?P<path>.+)'),
    re.compile(r'\[download\] (?P<path>.+) has already been downloaded'),
)
STATUS_TEXTS = {
    'merger': 'Merging...',
    'extractaudio': 'Extracting Audio...',
    'embedthumbnail': 'Embedding...',
    'fixupm4a': 'Fixing M4a...',
    'metadata': 'Writing Metadata...',
}


@dataclass
class ProgressInfo:
    percent: float
    total_size: Optional[str] = None
    speed: Optional[str] = None
    eta: Optional[str] = None
    downloaded_size: Optional[str] = None


def _clean_field(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = _ANSI_ESCAPE.sub('', value).strip()
    return None if value in ('', 'NA', 'N/A', 'Unknown') else value


def parse_progress_line(line: str) -> Optional[ProgressInfo]:
    """
    Parses one line of yt-dlp output into progress figures.

    Understands both the PROGRESS:: template this module asks for and yt-dlp's
    default `[download]  42.0% of 10.00MiB at 1.00MiB/s ETA 00:05` lines.
    """
    line = _ANSI_ESCAPE.sub('', line).strip()
    if line.startswith(PROGRESS_PREFIX):
        parts = line[len(PROGRESS_PREFIX):].split('::')
        try:
            percent = float(parts[0].strip().rstrip('%'))
        except (IndexError, ValueError):
            return None
        fields = [_clean_field(p) for p in parts[1:]] + [None] * 4
        return ProgressInfo(percent, total_size=fields[0], speed=fields[1], eta=fields[2], downloaded_size=fields[3])

    match = _PLAIN_PROGRESS.search(line)
    if match:
        try:
            percent = float(match.group('percent'))
        except ValueError:
            return None
        return ProgressInfo(
            percent,
            total_size=_clean_field(match.group('total')),
            speed=_clean_field(match.group('speed')),
            eta=_clean_field(match.group('eta')),
        )
    return None


def parse_destination(line: str) -> Optional[str]:
    for pattern in _DESTINATION_PATTERNS:
        match = pattern.search(line)
        if match:
            return match.group('path').strip()
    return None


class DownloadProcess:
    """
    One running yt-dlp download.

    Emits PROGRESS and STATUS_TEXT events while the process runs, an ERROR
    event on the first `ERROR:` line or on a failed exit, and a COMPLETED event
    once the process has fully stopped with exit code 0. A consumer may see
    ERROR followed by COMPLETED for the same job and must keep the first.
    """
    def __init__(self, job: JobDescriptor, command: List[str], sink: EventSink, fallback_path: Path,
                 release_delay: float = FILE_RELEASE_DELAY_SECONDS):
        self.job = job
        self.command = command
        self.sink = sink
        self.result_path: str = str(fallback_path)
        self.release_delay = release_delay
        self.logger = logging.getLogger(__name__)
        self.process: Optional[asyncio.subprocess.Process] = None
        self.reader_task: Optional[asyncio.Task] = None
        self.returncode: Optional[int] = None
        self._closed = asyncio.Event()

    async def start(self):
        """
        Spawns the process and the task that reads its output.

        Raises:
            MediaFetchError: If yt-dlp cannot be started.
        """
        kwargs: Dict[str, Any] = {}
        if sys.platform == 'win32':
            kwargs['creationflags'] = SUBPROCESS_CREATION_FLAGS | subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs['start_new_session'] = True

        try:
            self.process = await asyncio.create_subprocess_exec(
                *self.command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                **kwargs
            )
        except FileNotFoundError:
            raise MediaFetchError("yt-dlp executable not found")
        except OSError as e:
            raise MediaFetchError(f"OS error: {e}")

        self.logger.info(f"[{self.job.job_id}] Started yt-dlp (PID: {self.process.pid}) for {self.job.source_url}")
        self.reader_task = asyncio.create_task(self._pump(), name=f"download-{self.job.job_id}")

    async def wait_closed(self):
        await self._closed.wait()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def terminate(self):
        """Stops the process at OS level. Used on application shutdown only."""
        if not self.process or self.process.returncode is not None:
            return
        self.logger.info(f"Terminating process for {self.job.job_id} (PID: {self.process.pid})...")
        try:
            if sys.platform == 'win32':
                self.process.send_signal(signal.CTRL_BREAK_EVENT)
            else:
                os.killpg(os.getpgid(self.process.pid), signal.SIGINT)
        except (ProcessLookupError, OSError) as e:
            self.logger.warning(f"Graceful shutdown for {self.job.job_id} failed: {e}. Forcing termination...")
            try: self.process.kill()
            except (ProcessLookupError, OSError): pass # Already gone

    async def _emit(self, event: ProgressEvent):
        try:
            await self.sink(event)
        except Exception:
            self.logger.exception(f"[{self.job.job_id}] Progress consumer failed on {event.kind.value} event")

    async def _pump(self):
        job_id = self.job.job_id
        error_emitted = False
        if self.process is None or self.process.stdout is None:
            raise MediaFetchError(f"Process for {job_id} was not started with a stdout pipe.")
        try:
            while True:
                line_bytes = await self.process.stdout.readline()
                if not line_bytes: break
                clean_line = line_bytes.decode('utf-8', 'replace').strip()
                if not clean_line: continue
                self.logger.debug(f"[{job_id}] {clean_line}")

                if destination := parse_destination(clean_line):
                    self.result_path = destination

                if clean_line.startswith('ERROR:'):
                    if not error_emitted:
                        error_emitted = True
                        await self._emit(ProgressEvent.error(job_id, clean_line[6:].strip()))
                    continue

                if status_match := re.match(r'\[(\w+)\]', clean_line):
                    if (status_key := status_match.group(1).lower()) in STATUS_TEXTS:
                        await self._emit(ProgressEvent.status_text(job_id, STATUS_TEXTS[status_key]))

                if info := parse_progress_line(clean_line):
                    await self._emit(ProgressEvent.progress(
                        job_id, info.percent, speed=info.speed, eta=info.eta,
                        total_size=info.total_size, downloaded_size=info.downloaded_size,
                    ))

            self.returncode = await self.process.wait()
            self.logger.info(f"[{job_id}] yt-dlp exited with code {self.returncode}")

            if self.returncode == 0:
                await self._post_process()
                await self._emit(ProgressEvent.completed(job_id, self.result_path))
            elif not error_emitted:
                await self._emit(ProgressEvent.error(job_id, f"yt-dlp exited with code {self.returncode}"))
        except asyncio.CancelledError:
            self.terminate()
            raise
        except Exception as e:
            self.logger.exception(f"Unexpected error while reading output for job {job_id}")
            if not error_emitted:
                await self._emit(ProgressEvent.error(job_id, f"Unexpected error: {e}"))
        finally:
            self._closed.set()

    async def _post_process(self):
        """Embeds the cover into audio downloads; failures never fail the job."""
        if not (self.job.is_audio and self.job.embed_thumbnail and self.job.thumbnail_url):
            return
        try:
            await embed_cover(Path(self.result_path), self.job.thumbnail_url, self.job.display_title, self.release_delay)
        except Exception as e:
            self.logger.warning(f"[{self.job.job_id}] Failed to embed thumbnail: {e}")


class MediaFetcher:
    """Builds yt-dlp download invocations and starts them as DownloadProcesses."""
    def __init__(self, cookie_store: CookieStore, download_base_path: Path, concurrent_fragments: int = 16):
        """
        Initializes the MediaFetcher.

        Args:
            cookie_store: Resolves the cookie file allowed for each URL.
            download_base_path: The root under which organized folders are created.
            concurrent_fragments: Passed to yt-dlp's --concurrent-fragments.
        """
        self.cookie_store = cookie_store
        self.download_base_path = download_base_path
        self.concurrent_fragments = concurrent_fragments
        self.logger = logging.getLogger(__name__)
        self.yt_dlp_path: Optional[Path] = None
        self.ffmpeg_path: Optional[Path] = None

    def set_config(self, yt_dlp_path: Optional[Path], ffmpeg_path: Optional[Path]):
        """Sets runtime executable locations."""
        self.yt_dlp_path = yt_dlp_path
        self.ffmpeg_path = ffmpeg_path

    def output_folder(self, job: JobDescriptor, create: bool = True) -> Path:
        platform = job.platform.value if job.platform else 'youtube'
        content_type = detect_content_type(job.source_url, job.mode)
        return organized_folder(self.download_base_path, platform, content_type, job.output_folder_hint, create=create)

    def expected_path(self, job: JobDescriptor, folder: Path) -> Path:
        ext = 'mp3' if job.is_audio else 'mp4'
        return folder / f"{safe_title(job.display_title)}.{ext}"

    def build_command(self, job: JobDescriptor, folder: Path) -> List[str]:
        """Builds the full yt-dlp command list for a job."""
        if not self.yt_dlp_path:
            raise MediaFetchError("yt-dlp is not available.")
        output_template = folder / f"{safe_title(job.display_title)}.%(ext)s"
        command = [
            str(self.yt_dlp_path), job.source_url,
            '-o', str(output_template),
            '--no-playlist',
            '--user-agent', USER_AGENT,
        ]

        cookie_path = self.cookie_store.resolve(job.source_url)
        if cookie_path:
            command.extend(['--cookies', str(cookie_path)])

        if job.is_audio:
            quality = AUDIO_QUALITY_TIERS.get(job.format_selector, AUDIO_QUALITY_TIERS['audio_standard'])
            command.extend(['-x', '--audio-format', 'mp3', '--audio-quality', quality])
        else:
            command.extend(['--merge-output-format', 'mp4'])
            if job.format_selector and job.format_selector != 'best' and not job.format_selector.startswith('audio_'):
                command.extend(['-f', f'{job.format_selector}+bestaudio/best'])
            else:
                command.extend(['-S', 'vcodec:h264,res,acodec:m4a'])

        command.extend(['--progress', '--newline', '--progress-template', PROGRESS_TEMPLATE])
        command.extend(['--concurrent-fragments', str(self.concurrent_fragments)])
        if self.ffmpeg_path:
            command.extend(['--ffmpeg-location', str(self.ffmpeg_path.parent)])
        return command

    async def start_media_fetch(self, job: JobDescriptor, sink: EventSink) -> DownloadProcess:
        """
        Starts downloading a job; events flow to `sink` until the process closes.

        Raises:
            MediaFetchError: If the process cannot be started.
        """
        try:
            folder = await asyncio.to_thread(self.output_folder, job)
        except OSError as e:
            raise MediaFetchError(f"Cannot create the output folder: {e}")
        command = self.build_command(job, folder)
        self.logger.debug(f"Starting download with args: {command}")
        handle = DownloadProcess(job, command, sink, self.expected_path(job, folder))
        await handle.start()
        return handle
