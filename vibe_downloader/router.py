"""
Routes the shared download event stream to whichever consumer owns it.

Exactly one consumer owns the stream at a time: the batch item that has
registered with `expect()`, or otherwise the interactive download controller.
The decision is re-evaluated for every event because ownership can change
between two events, e.g. when a batch finishes just as an interactive
download starts.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol

from .exceptions import MediaFetchError, RouterBusyError
from .jobs import EventKind, ProgressEvent

BatchEventCallback = Callable[[ProgressEvent], Awaitable[None]]


class InteractiveConsumer(Protocol):
    async def handle_event(self, event: ProgressEvent) -> None: ...


@dataclass
class _Registration:
    job_id: str
    future: asyncio.Future
    on_event: BatchEventCallback


class ProgressRouter:
    """
    The single subscription point for download events.

    While a batch item is registered, its non-terminal events go to the item's
    callback, an ERROR event fails the item's future, and a COMPLETED event
    resolves it with the result path. Without a registration every event goes
    to the interactive consumer.
    """
    def __init__(self, interactive: Optional[InteractiveConsumer] = None):
        self.interactive = interactive
        self.logger = logging.getLogger(__name__)
        self._registration: Optional[_Registration] = None

    def bind_interactive(self, consumer: InteractiveConsumer):
        self.interactive = consumer

    @property
    def batch_outstanding(self) -> bool:
        """True while a registered batch item is still waiting for its terminal event."""
        registration = self._registration
        return registration is not None and not registration.future.done()

    @property
    def current_job_id(self) -> Optional[str]:
        return self._registration.job_id if self._registration else None

    def expect(self, job_id: str, on_event: BatchEventCallback) -> asyncio.Future:
        """
        Claims the event stream for a batch item.

        Returns:
            A future resolved with the result path, or failed with MediaFetchError.

        Raises:
            RouterBusyError: If another batch item still holds the stream.
        """
        if self._registration is not None:
            raise RouterBusyError(f"Job {self._registration.job_id} still owns the progress stream")
        future = asyncio.get_running_loop().create_future()
        self._registration = _Registration(job_id, future, on_event)
        self.logger.debug(f"Batch job {job_id} now owns the progress stream")
        return future

    def release(self, future: asyncio.Future):
        """Gives the stream back. Releasing a stale future is a no-op."""
        registration = self._registration
        if registration is None or registration.future is not future:
            return
        if not future.done():
            future.cancel()
        self._registration = None
        self.logger.debug(f"Batch job {registration.job_id} released the progress stream")

    async def dispatch(self, event: ProgressEvent):
        """Delivers one event to its current owner."""
        registration = self._registration
        if registration is not None:
            if event.job_id is not None and event.job_id != registration.job_id:
                # Late output from a process whose item already timed out.
                if not self.batch_outstanding:
                    return await self._to_interactive(event)
                self.logger.debug(f"Dropping stale {event.kind.value} event from job {event.job_id}")
                return
            if registration.future.done():
                self.logger.debug(f"Ignoring {event.kind.value} event after terminal state for job {registration.job_id}")
                return
            await self._to_batch(registration, event)
            return
        await self._to_interactive(event)

    async def _to_batch(self, registration: _Registration, event: ProgressEvent):
        if event.kind == EventKind.ERROR:
            registration.future.set_exception(MediaFetchError(event.message or "Download failed"))
        elif event.kind == EventKind.COMPLETED:
            registration.future.set_result(event.result_path)
        else:
            await registration.on_event(event)

    async def _to_interactive(self, event: ProgressEvent):
        if self.interactive is None:
            self.logger.debug(f"No consumer for {event.kind.value} event; dropped")
            return
        await self.interactive.handle_event(event)
