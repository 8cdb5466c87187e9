"""
Progress Event Bus - Fans pipeline progress out to streaming clients.

Each project has at most one live subscriber (the open progress stream).
Delivery is best-effort: a slow consumer loses intermediate events, but the
terminal event of an ingestion or export always gets through.
"""

import asyncio
import logging
from typing import Optional

from clipforge.schemas.responses import ClipResponse, ProgressEvent
from clipforge.services.project_store import ProjectStore

logger = logging.getLogger(__name__)


_CLOSED = object()


class Subscription:
    """
    A bounded, async-iterable queue of progress events for one project.

    Must be created and consumed on the event loop thread.
    """

    def __init__(self, project_id: str, maxsize: int = 64):
        self.project_id = project_id
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, maxsize))
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, event: ProgressEvent) -> bool:
        """
        Enqueue an event without blocking.

        When the queue is full, non-terminal events are dropped and terminal
        events evict the oldest queued event.
        """
        if self._closed:
            return False

        if self._queue.full():
            if not event.is_terminal:
                self.dropped += 1
                return False
            self._queue.get_nowait()
            self.dropped += 1

        self._queue.put_nowait(event)
        return True

    def close(self) -> None:
        """Stop delivery. A pending or future get() returns immediately."""
        if self._closed:
            return
        self._closed = True
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    async def get(self, timeout: Optional[float] = None) -> Optional[ProgressEvent]:
        """
        Wait for the next event.

        Returns None on timeout or once the subscription is closed; check
        `closed` to tell them apart.
        """
        if self._closed and self._queue.empty():
            return None
        try:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None
        if item is _CLOSED:
            return None
        return item

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ProgressEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class ProgressEventBus:
    """Routes progress events from pipelines to the current subscriber of each project."""

    def __init__(self, store: ProjectStore, queue_size: int = 64):
        self.store = store
        self.queue_size = queue_size
        self._subscribers: dict[str, Subscription] = {}

    def subscribe(self, project_id: str) -> Optional[Subscription]:
        """
        Open the progress stream of a project.

        The first event is a snapshot of the project's current state. A newer
        subscription supersedes (closes) the previous one.

        Returns:
            The subscription, or None if the project does not exist
        """
        project = self.store.get_project(project_id)
        if project is None:
            return None

        previous = self._subscribers.get(project_id)
        if previous is not None:
            logger.debug(f"Superseding progress subscriber for project {project_id}")
            previous.close()

        subscription = Subscription(project_id, self.queue_size)
        subscription.offer(ProgressEvent(
            progress_percent=project.progress,
            message=project.progress_message,
            status=project.status,
            clips=[ClipResponse.from_clip(project.id, c) for c in project.clips],
        ))
        self._subscribers[project_id] = subscription
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Close a subscription and forget it if it is still the current one."""
        subscription.close()
        if self._subscribers.get(subscription.project_id) is subscription:
            del self._subscribers[subscription.project_id]

    def publish(self, project_id: str, event: ProgressEvent) -> None:
        """Deliver an event to the project's subscriber, if any."""
        subscription = self._subscribers.get(project_id)
        if subscription is None:
            return
        if subscription.closed:
            self._subscribers.pop(project_id, None)
            return
        if not subscription.offer(event):
            logger.debug(f"Progress event dropped for slow subscriber of project {project_id}")

    def has_subscriber(self, project_id: str) -> bool:
        subscription = self._subscribers.get(project_id)
        return subscription is not None and not subscription.closed
