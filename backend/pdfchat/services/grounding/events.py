"""
Pipeline Events

The closed set of outcomes the highlight pipeline reports to its host, and
a small in-process bus that fans them out to callbacks and SSE streams.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Union

from .models import Highlight

logger = logging.getLogger(__name__)

NO_MATCH_MESSAGE = "I couldn't find relevant content for that answer in this PDF."


@dataclass
class HighlightAdded:
    highlight: Highlight


@dataclass
class NoMatchFound:
    message: str = NO_MATCH_MESSAGE


@dataclass
class DocumentLoaded:
    num_pages: int


@dataclass
class RenderFailed:
    message: str


PipelineEvent = Union[HighlightAdded, NoMatchFound, DocumentLoaded, RenderFailed]

EVENT_NAMES = {
    HighlightAdded: "highlight_added",
    NoMatchFound: "no_match_found",
    DocumentLoaded: "document_loaded",
    RenderFailed: "render_failed",
}


def event_to_dict(event: PipelineEvent) -> dict:
    """Serialize an event for transport (SSE data, API responses)."""
    name = EVENT_NAMES[type(event)]

    if isinstance(event, HighlightAdded):
        payload = {"highlight": event.highlight.to_dict()}
    elif isinstance(event, DocumentLoaded):
        payload = {"num_pages": event.num_pages}
    else:
        payload = {"message": event.message}

    return {"event_type": name, "payload": payload}


class EventBus:
    """
    Fan-out of pipeline events.

    Callbacks run synchronously in emit order. A callback that raises is
    logged and skipped so it never interrupts the pipeline.
    """

    def __init__(self):
        self._subscribers: list[Callable[[PipelineEvent], None]] = []
        self._queues: list[asyncio.Queue] = []

    def subscribe(self, callback: Callable[[PipelineEvent], None]) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[PipelineEvent], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def emit(self, event: PipelineEvent) -> None:
        logger.debug(f"Emitting {EVENT_NAMES[type(event)]}")

        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Event subscriber failed: {e}", exc_info=True)

        for queue in list(self._queues):
            queue.put_nowait(event)

    @asynccontextmanager
    async def _listen(self) -> AsyncIterator[asyncio.Queue]:
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(queue)
        try:
            yield queue
        finally:
            self._queues.remove(queue)

    async def stream(self) -> AsyncIterator[PipelineEvent]:
        """Yield events emitted after the call, until the consumer stops."""
        async with self._listen() as queue:
            while True:
                yield await queue.get()

    @property
    def listener_count(self) -> int:
        return len(self._subscribers) + len(self._queues)
