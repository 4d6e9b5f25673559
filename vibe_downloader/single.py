"""Drives the one interactive download a user can have in flight outside a batch."""
import asyncio
import logging
from typing import Any, Callable, Coroutine, Optional, Tuple

from .exceptions import DownloadBusyError
from .jobs import DownloadState, EventKind, JobDescriptor, JobStatus, ProgressEvent
from .router import ProgressRouter

ManagerEventCallback = Callable[[Tuple[str, Any]], Coroutine[Any, Any, None]]


class SingleDownloadController:
    """
    Owns the state of the interactive download.

    Events reach this controller through the ProgressRouter whenever no batch
    item owns the stream. There is no retry logic: starting the same job again
    is the retry.
    """
    def __init__(self, fetcher, router: ProgressRouter, event_callback: Optional[ManagerEventCallback] = None):
        """
        Initializes the controller and registers it as the router's interactive consumer.

        Args:
            fetcher: Provides `start_media_fetch(job, sink)`.
            router: The shared progress router.
            event_callback: Async function called with ('single_updated', DownloadState).
        """
        self.fetcher = fetcher
        self.router = router
        self.event_callback = event_callback
        self.logger = logging.getLogger(__name__)
        self.state = DownloadState()
        self.handle = None
        self._finished = asyncio.Event()
        self._finished.set()
        router.bind_interactive(self)

    @property
    def busy(self) -> bool:
        return self.state.busy

    async def start(self, job: JobDescriptor):
        """
        Starts downloading `job`.

        Raises:
            DownloadBusyError: If a download is already in flight.
            MediaFetchError, OSError: If the process cannot be started. The
                controller is released before the error propagates.
        """
        if self.state.busy:
            raise DownloadBusyError("A download is already in progress.")

        self.state = DownloadState(
            job=job, busy=True, progress_percent=0.0, status=JobStatus.DOWNLOADING,
            last_output_path=self.state.last_output_path,
        )
        self._finished.clear()
        self.logger.info(f"Starting interactive download of '{job.display_title}' ({job.source_url})")
        await self._notify()

        try:
            self.handle = await self.fetcher.start_media_fetch(job, self.router.dispatch)
        except Exception as e:
            await self._finish(JobStatus.FAILED, error=str(e))
            raise

    async def wait(self) -> DownloadState:
        """Waits until the current download reaches a terminal state."""
        await self._finished.wait()
        return self.state.copy()

    async def handle_event(self, event: ProgressEvent):
        """Applies one routed event to the interactive download state."""
        job = self.state.job
        if job is None or not self.state.busy:
            self.logger.debug(f"Ignoring {event.kind.value} event; no interactive download is active")
            return
        if event.job_id is not None and event.job_id != job.job_id:
            self.logger.debug(f"Ignoring {event.kind.value} event from job {event.job_id}")
            return

        if event.kind == EventKind.PROGRESS:
            if event.percent is not None:
                self.state.progress_percent = event.percent
            self.state.speed = event.speed
            self.state.eta = event.eta
            await self._notify()
        elif event.kind == EventKind.STATUS_TEXT:
            self.state.status_text = event.message
            await self._notify()
        elif event.kind == EventKind.COMPLETED:
            await self._finish(JobStatus.COMPLETED, output_path=event.result_path)
        elif event.kind == EventKind.ERROR:
            await self._finish(JobStatus.FAILED, error=event.message or "Download failed")

    async def _finish(self, status: JobStatus, error: Optional[str] = None, output_path: Optional[str] = None):
        self.state.busy = False
        self.state.status = status
        if status == JobStatus.COMPLETED:
            self.state.progress_percent = 100.0
            self.state.last_output_path = output_path
            self.state.last_error = None
            self.logger.info(f"Download complete: {output_path}")
        else:
            self.state.last_error = error
            self.logger.error(f"Download failed: {error}")
        self.handle = None
        self._finished.set()
        await self._notify()

    async def _notify(self):
        if self.event_callback:
            await self.event_callback(('single_updated', self.state.copy()))
