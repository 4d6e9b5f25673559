"""Stand-ins for the yt-dlp backed collaborators of the download controllers."""
from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from vibe_downloader.exceptions import MediaFetchError, MetadataFetchError
from vibe_downloader.jobs import JobDescriptor, ProgressEvent
from vibe_downloader.url_extractor import ErrorCategory, MediaMetadata


class FakeHandle:
    def __init__(self, task: asyncio.Task) -> None:
        self.task = task
        self.terminated = False

    @property
    def closed(self) -> bool:
        return self.task.done()

    def terminate(self) -> None:
        self.terminated = True
        self.task.cancel()


class FakeFetcher:
    """
    Plays a scripted event sequence per URL.

    Plans: 'ok' (progress then completed), 'error' (error then completed, as
    yt-dlp does when it prints ERROR but exits cleanly), 'exit_error' (error
    only), 'hang' (never finishes), 'refuse' (cannot start), 'deny' (an OS error
    before the process exists), or an asyncio.Event to wait for before completing.
    A list of plans is consumed one per start, the last one repeating.
    """

    def __init__(self, plans: Optional[Dict[str, Any]] = None) -> None:
        self.plans = plans or {}
        self.started: List[JobDescriptor] = []
        self.handles: List[FakeHandle] = []

    async def start_media_fetch(self, job: JobDescriptor, sink) -> FakeHandle:
        plan = self.plans.get(job.source_url, 'ok')
        if isinstance(plan, list):
            plan = plan.pop(0) if len(plan) > 1 else plan[0]
        if plan == 'refuse':
            raise MediaFetchError("yt-dlp executable not found")
        if plan == 'deny':
            raise PermissionError(13, "Permission denied")
        self.started.append(job)
        handle = FakeHandle(asyncio.create_task(self._play(job, sink, plan)))
        self.handles.append(handle)
        return handle

    async def _play(self, job: JobDescriptor, sink, plan) -> None:
        await asyncio.sleep(0)
        if plan == 'hang':
            await asyncio.Event().wait()
        if isinstance(plan, asyncio.Event):
            await plan.wait()
        await sink(ProgressEvent.progress(job.job_id, 50.0, speed='1.00MiB/s', eta='00:01'))
        if plan in ('error', 'exit_error'):
            await sink(ProgressEvent.error(job.job_id, "Video unavailable"))
            if plan == 'exit_error':
                return
        await sink(ProgressEvent.completed(job.job_id, f"/downloads/{job.display_title}.mp4"))


class FakeExtractor:
    def __init__(self, failures: Optional[Dict[str, str]] = None, fail_once: Optional[Dict[str, str]] = None,
                 hang: tuple = ()) -> None:
        self.failures = failures or {}
        self.fail_once = dict(fail_once or {})
        self.hang = hang
        self.calls: List[str] = []

    async def fetch_metadata(self, url: str) -> MediaMetadata:
        self.calls.append(url)
        if url in self.hang:
            await asyncio.sleep(3600)
        if url in self.failures:
            raise MetadataFetchError(self.failures[url], category=ErrorCategory.GENERIC)
        if url in self.fail_once:
            raise MetadataFetchError(self.fail_once.pop(url), category=ErrorCategory.GENERIC)
        return MediaMetadata(id=url[-1], title=f"Title {url.rsplit('/', 1)[-1]}", webpage_url=url,
                             thumbnail=f"{url}/thumb.jpg")


class Recorder:
    """Collects manager events sent to an event_callback."""

    def __init__(self) -> None:
        self.events: List[tuple] = []

    async def __call__(self, event: tuple) -> None:
        self.events.append(event)

    def of_type(self, msg_type: str) -> List[Any]:
        return [value for kind, value in self.events if kind == msg_type]
