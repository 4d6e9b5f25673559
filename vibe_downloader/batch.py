"""
The batch queue engine.

Processes an ordered list of pasted URLs strictly one at a time: resolve the
item's metadata, start its download, wait for the router to report the
item's terminal event, cool down, move on. One item's failure is recorded on
that item and never stops the rest of the batch.
"""
import asyncio
import logging
from collections import deque
from dataclasses import replace
from enum import Enum
from functools import partial
from typing import Any, Callable, Coroutine, Deque, Iterable, List, Optional, Tuple, Union

from .constants import METADATA_TIMEOUT_SECONDS, ITEM_TIMEOUT_SECONDS, INTER_ITEM_COOLDOWN_SECONDS
from .exceptions import BatchValidationError, MediaFetchError, MetadataFetchError, QueueStateError
from .jobs import EventKind, JobDescriptor, JobStatus, MediaMode, ProgressEvent, QueueEntry, new_job_id
from .platforms import detect_platform, parse_batch_lines
from .router import ProgressRouter
from .url_extractor import ErrorCategory, friendly_error_message

ManagerEventCallback = Callable[[Tuple[str, Any]], Coroutine[Any, Any, None]]


class BatchState(str, Enum):
    IDLE = 'Idle'
    RUNNING = 'Running'
    PAUSED = 'Paused'
    COMPLETED = 'Completed'


class BatchQueueEngine:
    """
    Holds the batch queue and advances it one item at a time.

    The cursor is the index of the entry being processed or about to be
    processed. It only moves forward; retried entries are re-admitted
    separately and processed after the entries ahead of the cursor.
    Pause and cancel stop scheduling only: an item already in flight is
    allowed to finish.
    """
    def __init__(self, extractor, fetcher, router: ProgressRouter,
                 event_callback: Optional[ManagerEventCallback] = None,
                 cooldown: float = INTER_ITEM_COOLDOWN_SECONDS,
                 item_timeout: float = ITEM_TIMEOUT_SECONDS,
                 metadata_timeout: float = METADATA_TIMEOUT_SECONDS):
        """
        Initializes the BatchQueueEngine.

        Args:
            extractor: Provides `fetch_metadata(url)`.
            fetcher: Provides `start_media_fetch(job, sink)`.
            router: The shared progress router.
            event_callback: Async function called with ('queue_updated', entries)
                and ('batch_finished', stats) events.
            cooldown: Seconds to wait between items so file handles are released.
            item_timeout: Hard ceiling on one item's download.
            metadata_timeout: Hard ceiling on one item's metadata fetch.
        """
        self.extractor = extractor
        self.fetcher = fetcher
        self.router = router
        self.event_callback = event_callback
        self.cooldown = cooldown
        self.item_timeout = item_timeout
        self.metadata_timeout = metadata_timeout
        self.logger = logging.getLogger(__name__)

        self.entries: List[QueueEntry] = []
        self.cursor: int = 0
        self.state: BatchState = BatchState.IDLE
        self._readmitted: Deque[QueueEntry] = deque()
        self._current: Optional[QueueEntry] = None
        self.handle = None
        self._task: Optional[asyncio.Task] = None

    # --- Introspection ---

    @property
    def is_processing(self) -> bool:
        """True while an advance pass is running, including a paused in-flight item."""
        return self._task is not None and not self._task.done()

    @property
    def current_entry(self) -> Optional[QueueEntry]:
        return self._current

    def snapshot(self) -> List[QueueEntry]:
        return [replace(entry) for entry in self.entries]

    def get_stats(self) -> dict:
        statuses = [entry.status for entry in self.entries]
        return {
            'total': len(statuses),
            'completed': statuses.count(JobStatus.COMPLETED),
            'failed': statuses.count(JobStatus.FAILED),
            'pending': statuses.count(JobStatus.PENDING),
        }

    def _entry_at(self, index: int) -> QueueEntry:
        if not 0 <= index < len(self.entries):
            raise QueueStateError(f"No queue entry at index {index}.")
        return self.entries[index]

    def _index_of(self, entry: QueueEntry) -> Optional[int]:
        for i, candidate in enumerate(self.entries):
            if candidate is entry:
                return i
        return None

    def _has_unfinished(self) -> bool:
        return any(not entry.status.is_terminal for entry in self.entries)

    def _has_pending(self) -> bool:
        return any(entry.status == JobStatus.PENDING for entry in self.entries)

    # --- Operations ---

    async def submit(self, text: Union[str, Iterable[str]], mode: MediaMode = MediaMode.VIDEO,
                     format_selector: str = 'best', embed_thumbnail: bool = True,
                     output_folder_hint: Optional[str] = None) -> List[QueueEntry]:
        """
        Replaces the queue with one entry per valid URL line and starts processing.
        Every entry is saved into `output_folder_hint` when one is given, e.g. a playlist title.

        Raises:
            BatchValidationError: If no line is an http(s) URL. The queue is left unchanged.
            QueueStateError: If an item from a previous batch is still in flight.
        """
        urls = parse_batch_lines(text)
        if not urls:
            raise BatchValidationError("No valid URLs found. Each line must start with http:// or https://")
        if self.is_processing:
            raise QueueStateError("The previous batch is still processing an item.")

        self.entries = [
            QueueEntry(JobDescriptor(
                job_id=new_job_id(),
                source_url=url,
                display_title=url,
                mode=mode,
                platform=detect_platform(url),
                format_selector=format_selector,
                embed_thumbnail=embed_thumbnail,
                output_folder_hint=output_folder_hint,
            ))
            for url in urls
        ]
        self.cursor = 0
        self._readmitted.clear()
        self.state = BatchState.RUNNING
        self.logger.info(f"--- Queued batch of {len(self.entries)} item(s) ---")
        await self._notify()
        self._ensure_running()
        return self.snapshot()

    async def pause(self):
        """Stops scheduling new items. The item in flight still finishes."""
        if self.state != BatchState.RUNNING:
            return
        self.state = BatchState.PAUSED
        self.logger.info(f"Batch paused at item {self.cursor + 1}/{len(self.entries)}")
        await self._notify()

    async def resume(self):
        if self.state != BatchState.PAUSED:
            return
        self.state = BatchState.RUNNING
        self.logger.info("Batch resumed")
        await self._notify()
        self._ensure_running()

    async def retry(self, index: int):
        """
        Resets a failed entry to Pending and re-admits it without moving the cursor.
        The entry gets a new job id so events from the failed attempt are dropped.

        Raises:
            QueueStateError: If the entry is not Failed.
        """
        entry = self._entry_at(index)
        if entry.status != JobStatus.FAILED:
            raise QueueStateError(f"Only failed items can be retried (item {index} is {entry.status.value}).")
        entry.reset()
        # A timed-out attempt may still be running under the old id
        entry.descriptor = replace(entry.descriptor, job_id=new_job_id())
        self._readmitted.append(entry)
        self.logger.info(f"Retrying item {index + 1}: {entry.descriptor.source_url}")
        if self.state != BatchState.PAUSED:
            self.state = BatchState.RUNNING
        await self._notify()
        if self.state == BatchState.RUNNING:
            self._ensure_running()

    async def cancel(self):
        """Stops scheduling and empties the queue. An in-flight process is left to finish on its own."""
        if self._current is not None:
            self.logger.info(f"Batch cancelled; '{self._current.descriptor.display_title}' will finish in the background")
        else:
            self.logger.info("Batch cancelled")
        self.state = BatchState.IDLE
        self.entries = []
        self.cursor = 0
        self._readmitted.clear()
        await self._notify()

    async def remove(self, index: int):
        """
        Removes an entry that is not currently being processed.

        Raises:
            QueueStateError: If the entry is Resolving or Downloading.
        """
        entry = self._entry_at(index)
        if entry.status.is_active:
            raise QueueStateError("Cannot remove an item that is currently processing.")
        del self.entries[index]
        if index < self.cursor:
            self.cursor -= 1
        self._readmitted = deque(e for e in self._readmitted if e is not entry)
        await self._notify()

    async def set_mode(self, index: int, mode: MediaMode):
        """
        Switches an entry between audio and video.

        Raises:
            QueueStateError: If the entry has already started.
        """
        entry = self._entry_at(index)
        if entry.status != JobStatus.PENDING:
            raise QueueStateError("The output mode can only be changed while an item is pending.")
        entry.descriptor = replace(entry.descriptor, mode=mode)
        await self._notify()

    async def wait(self):
        """Waits for the current advance pass, and any pass it hands over to, to finish."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})
            await asyncio.sleep(0)

    # --- Advance loop ---

    def _ensure_running(self):
        if self.is_processing:
            return
        self._task = asyncio.create_task(self._advance(), name="batch-advance")
        self._task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task):
        """Logs exceptions from the advance pass and picks up work admitted while it was exiting."""
        try:
            task.result()
        except asyncio.CancelledError:
            return  # Shutdown
        except Exception:
            self.logger.exception(f"Exception in background task {task.get_name()}:")
        if self.state == BatchState.RUNNING and self._has_pending():
            self._ensure_running()

    def _next_entry(self) -> Optional[Tuple[QueueEntry, bool]]:
        """Returns the next entry to process and whether it came from the cursor."""
        while self.cursor < len(self.entries):
            entry = self.entries[self.cursor]
            if entry.status == JobStatus.PENDING:
                return entry, True
            self.cursor += 1
        while self._readmitted:
            entry = self._readmitted.popleft()
            if entry.status == JobStatus.PENDING and self._index_of(entry) is not None:
                return entry, False
        return None

    async def _advance(self):
        while self.state == BatchState.RUNNING:
            picked = self._next_entry()
            if picked is None:
                break
            entry, from_cursor = picked

            self._current = entry
            try:
                await self._process(entry)
            finally:
                self._current = None

            if from_cursor:
                index = self._index_of(entry)
                if index is not None:
                    self.cursor = index + 1
            await self._notify()

            if self.state == BatchState.RUNNING and self._has_pending() and self.cooldown > 0:
                await asyncio.sleep(self.cooldown)

        if self.state == BatchState.RUNNING and self.entries and not self._has_unfinished():
            self.state = BatchState.COMPLETED
            stats = self.get_stats()
            self.logger.info(f"--- Batch complete: {stats['completed']} completed, {stats['failed']} failed ---")
            await self._notify()
            if self.event_callback:
                await self.event_callback(('batch_finished', stats))

    async def _process(self, entry: QueueEntry):
        """Runs one entry to a terminal state. Never raises for item-level failures."""
        try:
            await self._resolve_and_download(entry)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.exception(f"Unexpected error while processing {entry.descriptor.source_url}")
            self._mark_failed(entry, f"Unexpected error: {e}")

    async def _resolve_and_download(self, entry: QueueEntry):
        url = entry.descriptor.source_url
        entry.status = JobStatus.RESOLVING
        await self._notify()

        try:
            metadata = await asyncio.wait_for(self.extractor.fetch_metadata(url), timeout=self.metadata_timeout)
        except asyncio.TimeoutError:
            self._mark_failed(entry, friendly_error_message(ErrorCategory.TIMEOUT))
            return
        except MetadataFetchError as e:
            self._mark_failed(entry, str(e))
            return

        entry.descriptor = entry.descriptor.with_metadata(metadata.title, metadata.thumbnail)
        entry.status = JobStatus.DOWNLOADING
        entry.progress_percent = 0.0
        await self._notify()

        future = self.router.expect(entry.job_id, partial(self._on_item_event, entry))
        try:
            self.handle = await self.fetcher.start_media_fetch(entry.descriptor, self.router.dispatch)
            result_path = await asyncio.wait_for(future, timeout=self.item_timeout)
        except MediaFetchError as e:
            self._mark_failed(entry, str(e))
        except asyncio.TimeoutError:
            self._mark_failed(entry, f"Download timed out after {self.item_timeout:g} seconds.")
        else:
            entry.status = JobStatus.COMPLETED
            entry.progress_percent = 100.0
            entry.result_path = result_path
            entry.last_error = None
            self.logger.info(f"Completed '{entry.descriptor.display_title}' -> {result_path}")
            if self.event_callback:
                await self.event_callback(('item_completed', replace(entry)))
        finally:
            self.router.release(future)

    def _mark_failed(self, entry: QueueEntry, message: str):
        entry.status = JobStatus.FAILED
        entry.last_error = message
        self.logger.error(f"Failed '{entry.descriptor.display_title}': {message}")

    async def _on_item_event(self, entry: QueueEntry, event: ProgressEvent):
        """Receives the router's non-terminal events for the in-flight entry."""
        if event.kind == EventKind.PROGRESS:
            if event.percent is not None:
                entry.progress_percent = max(0.0, min(100.0, event.percent))
            entry.speed = event.speed
            entry.eta = event.eta
        elif event.kind == EventKind.STATUS_TEXT:
            entry.status_text = event.message
        await self._notify()

    async def _notify(self):
        if self.event_callback:
            await self.event_callback(('queue_updated', self.snapshot()))
