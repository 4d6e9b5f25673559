from __future__ import annotations

import asyncio

import pytest

from fakes import FakeFetcher, Recorder
from vibe_downloader.exceptions import DownloadBusyError, MediaFetchError
from vibe_downloader.jobs import JobDescriptor, JobStatus, ProgressEvent, new_job_id
from vibe_downloader.router import ProgressRouter
from vibe_downloader.single import SingleDownloadController

URL = "https://www.instagram.com/reel/abc/"


def _job(url: str = URL) -> JobDescriptor:
    return JobDescriptor(new_job_id(), url, "My Reel")


def test_download_completes_and_reports_the_output_path() -> None:
    async def scenario():
        recorder = Recorder()
        controller = SingleDownloadController(FakeFetcher(), ProgressRouter(), recorder)
        await controller.start(_job())
        return await controller.wait(), recorder

    state, recorder = asyncio.run(scenario())

    assert state.status == JobStatus.COMPLETED
    assert not state.busy
    assert state.progress_percent == 100.0
    assert state.last_output_path == "/downloads/My Reel.mp4"
    updates = recorder.of_type('single_updated')
    assert any(update.progress_percent == 50.0 for update in updates)
    assert updates[-1].status == JobStatus.COMPLETED


def test_second_start_while_busy_is_rejected() -> None:
    async def scenario():
        gate = asyncio.Event()
        fetcher = FakeFetcher({URL: gate})
        controller = SingleDownloadController(fetcher, ProgressRouter())
        await controller.start(_job())
        with pytest.raises(DownloadBusyError):
            await controller.start(_job("https://www.youtube.com/watch?v=x"))
        gate.set()
        return await controller.wait(), fetcher

    state, fetcher = asyncio.run(scenario())

    assert state.status == JobStatus.COMPLETED
    assert len(fetcher.started) == 1


def test_first_terminal_event_wins() -> None:
    async def scenario():
        controller = SingleDownloadController(FakeFetcher({URL: 'error'}), ProgressRouter())
        await controller.start(_job())
        state = await controller.wait()
        await asyncio.sleep(0.01)
        return state, controller.state

    state, final_state = asyncio.run(scenario())

    assert state.status == JobStatus.FAILED
    assert state.last_error == "Video unavailable"
    assert final_state.status == JobStatus.FAILED
    assert final_state.last_output_path is None


def test_start_failure_marks_the_download_failed() -> None:
    async def scenario():
        controller = SingleDownloadController(FakeFetcher({URL: 'refuse'}), ProgressRouter())
        with pytest.raises(MediaFetchError):
            await controller.start(_job())
        return controller

    controller = asyncio.run(scenario())

    assert not controller.busy
    assert controller.state.status == JobStatus.FAILED
    assert controller.state.last_error == "yt-dlp executable not found"


def test_events_for_other_jobs_are_ignored() -> None:
    async def scenario():
        gate = asyncio.Event()
        controller = SingleDownloadController(FakeFetcher({URL: gate}), ProgressRouter())
        await controller.start(_job())
        await controller.handle_event(ProgressEvent.error("someone-else", "late failure"))
        assert controller.busy
        gate.set()
        return await controller.wait()

    state = asyncio.run(scenario())

    assert state.status == JobStatus.COMPLETED


def test_os_error_on_start_releases_the_controller() -> None:
    async def scenario():
        controller = SingleDownloadController(FakeFetcher({URL: 'deny'}), ProgressRouter())
        with pytest.raises(PermissionError):
            await controller.start(_job())
        failed = controller.state.copy()

        # A later start is accepted and wait() returns
        await controller.start(_job("https://www.youtube.com/watch?v=x"))
        return failed, await asyncio.wait_for(controller.wait(), timeout=1)

    failed, state = asyncio.run(scenario())

    assert not failed.busy
    assert failed.status == JobStatus.FAILED
    assert "Permission denied" in failed.last_error
    assert state.status == JobStatus.COMPLETED
