"""
A thin terminal view for the AppController.

Receives the same state snapshots a graphical window would and renders them
as single status lines.
"""
import sys
from typing import Any, Dict, List, TextIO

from .jobs import DownloadState, JobStatus, QueueEntry
from .url_extractor import MediaMetadata


class ConsoleView:
    """Prints controller updates to a text stream."""

    def __init__(self, stream: TextIO = sys.stdout):
        self.stream = stream
        self._last_line = ''
        self._last_queue_line: Dict[str, str] = {}

    def _write(self, line: str, transient: bool = False):
        """Writes a line; transient lines are overwritten by the next one on a terminal."""
        if transient and self.stream.isatty():
            self.stream.write(f"\r{line[:120]:<120}")
        else:
            if self._last_line.startswith('\r'):
                self.stream.write('\n')
            self.stream.write(line + '\n')
        self._last_line = '\r' if transient and self.stream.isatty() else ''
        self.stream.flush()

    @staticmethod
    def _progress_line(title: str, percent: float, speed, eta, status_text) -> str:
        parts = [f"{percent:5.1f}%", title]
        if status_text:
            parts.append(f"[{status_text}]")
        if speed:
            parts.append(f"at {speed}")
        if eta:
            parts.append(f"ETA {eta}")
        return ' '.join(parts)

    async def update_single(self, state: DownloadState):
        title = state.job.display_title if state.job else ''
        if state.status == JobStatus.COMPLETED:
            self._write(f"Done: {title} -> {state.last_output_path}")
        elif state.status == JobStatus.FAILED:
            self._write(f"Failed: {title}: {state.last_error}")
        elif state.busy:
            self._write(self._progress_line(title, state.progress_percent, state.speed, state.eta, state.status_text), transient=True)

    async def update_queue(self, entries: List[QueueEntry], batch_state, stats: Dict[str, int]):
        for position, entry in enumerate(entries, start=1):
            title = entry.descriptor.display_title
            if entry.status == JobStatus.DOWNLOADING:
                line = self._progress_line(title, entry.progress_percent, entry.speed, entry.eta, entry.status_text)
                self._write(f"[{position}/{stats['total']}] {line}", transient=True)
                continue
            if entry.status == JobStatus.FAILED:
                line = f"[{position}/{stats['total']}] Failed: {title}: {entry.last_error}"
            elif entry.status == JobStatus.COMPLETED:
                line = f"[{position}/{stats['total']}] Done: {title}"
            elif entry.status == JobStatus.RESOLVING:
                line = f"[{position}/{stats['total']}] Resolving {entry.descriptor.source_url}"
            else:
                continue
            # Snapshots repeat every entry; only print the ones that changed.
            if self._last_queue_line.get(entry.job_id) != line:
                self._last_queue_line[entry.job_id] = line
                self._write(line)

    async def batch_finished(self, stats: Dict[str, int]):
        self._write(f"Batch finished: {stats['completed']} completed, {stats['failed']} failed, {stats['total']} total")

    async def show_update_notice(self, version: str, url: str):
        self._write(f"A new version ({version}) is available: {url}")
        self._write(f"Run 'vibe-downloader deps --skip-update {version}' to stop this notice.")

    async def update_dependency_progress(self, value: Dict[str, Any]):
        if value.get('status') == 'determinate':
            self._write(f"{value.get('type')}: {value.get('text')}", transient=True)
        else:
            self._write(f"{value.get('type')}: {value.get('text')}")

    def show_metadata(self, metadata: MediaMetadata):
        self._write(f"Title:    {metadata.title}")
        self._write(f"Uploader: {metadata.uploader}")
        self._write(f"Type:     {metadata.content_type}")
        if metadata.duration:
            minutes, seconds = divmod(int(metadata.duration), 60)
            self._write(f"Duration: {minutes}:{seconds:02d}")
        if metadata.is_playlist:
            self._write(f"Entries:  {metadata.playlist_count}")
            for i, entry in enumerate(metadata.entries, start=1):
                self._write(f"  {i:3d}. {entry.title} ({entry.url})")
        heights = sorted({f.height for f in metadata.formats if f.height}, reverse=True)
        if heights:
            self._write("Heights:  " + ', '.join(f"{h}p" for h in heights))

    def show_message(self, message: str):
        self._write(message)
