from __future__ import annotations

import asyncio

import pytest

from vibe_downloader.exceptions import MediaFetchError, RouterBusyError
from vibe_downloader.jobs import EventKind, ProgressEvent
from vibe_downloader.router import ProgressRouter


class _Interactive:
    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    async def handle_event(self, event: ProgressEvent) -> None:
        self.events.append(event)


def _router():
    interactive = _Interactive()
    return ProgressRouter(interactive), interactive


def test_events_go_to_the_interactive_consumer_without_a_registration() -> None:
    router, interactive = _router()

    asyncio.run(router.dispatch(ProgressEvent.progress("job-1", 10.0)))

    assert [e.kind for e in interactive.events] == [EventKind.PROGRESS]


def test_events_without_any_consumer_are_dropped() -> None:
    router = ProgressRouter()

    asyncio.run(router.dispatch(ProgressEvent.error("job-1", "boom")))

    assert router.current_job_id is None


def test_registered_batch_item_receives_progress_and_completion() -> None:
    async def scenario():
        router, interactive = _router()
        seen = []

        async def on_event(event):
            seen.append(event)

        future = router.expect("job-1", on_event)
        await router.dispatch(ProgressEvent.progress("job-1", 42.0))
        await router.dispatch(ProgressEvent.status_text("job-1", "Merging..."))
        await router.dispatch(ProgressEvent.completed("job-1", "/out/a.mp4"))
        result = await future
        router.release(future)
        return router, interactive, seen, result

    router, interactive, seen, result = asyncio.run(scenario())

    assert [e.kind for e in seen] == [EventKind.PROGRESS, EventKind.STATUS_TEXT]
    assert result == "/out/a.mp4"
    assert interactive.events == []
    assert router.current_job_id is None


def test_error_fails_the_future_and_later_events_are_duplicates() -> None:
    async def scenario():
        router, interactive = _router()
        seen = []

        async def on_event(event):
            seen.append(event)

        future = router.expect("job-1", on_event)
        await router.dispatch(ProgressEvent.error("job-1", "Video unavailable"))
        await router.dispatch(ProgressEvent.completed("job-1", "/out/a.mp4"))
        await router.dispatch(ProgressEvent.progress("job-1", 99.0))
        with pytest.raises(MediaFetchError, match="Video unavailable"):
            await future
        return interactive, seen

    interactive, seen = asyncio.run(scenario())

    assert seen == []
    assert interactive.events == []


def test_stale_events_from_another_job_are_dropped_while_an_item_is_outstanding() -> None:
    async def scenario():
        router, interactive = _router()
        seen = []

        async def on_event(event):
            seen.append(event)

        future = router.expect("job-2", on_event)
        await router.dispatch(ProgressEvent.completed("job-1", "/out/old.mp4"))
        await router.dispatch(ProgressEvent.error("job-1", "late failure"))
        assert not future.done()
        await router.dispatch(ProgressEvent.progress("job-2", 5.0))
        router.release(future)
        return interactive, seen, future

    interactive, seen, future = asyncio.run(scenario())

    assert [e.job_id for e in seen] == ["job-2"]
    assert interactive.events == []
    assert future.cancelled()


def test_only_one_registration_at_a_time() -> None:
    async def scenario():
        router, _ = _router()

        async def on_event(event):
            pass

        first = router.expect("job-1", on_event)
        with pytest.raises(RouterBusyError):
            router.expect("job-2", on_event)

        router.release(asyncio.get_running_loop().create_future())
        assert router.current_job_id == "job-1"
        assert router.batch_outstanding

        router.release(first)
        second = router.expect("job-2", on_event)
        router.release(second)
        return router

    router = asyncio.run(scenario())

    assert router.current_job_id is None
    assert not router.batch_outstanding
