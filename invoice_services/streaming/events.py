"""Ordered update stream from the invoice pipeline to a display surface.

A run emits typed events in a fixed order; the consumer applies them strictly
in arrival order. For a full-collection display the order is::

    kind, id, title, clear, invoice-data, finish

A single-document display omits ``clear``. Each ``invoice-data`` payload is the
full current content and replaces whatever was displayed before; ``finish``
ends the run without discarding the last payload.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass, replace
from enum import Enum

from pydantic import BaseModel

from invoice_services.documents.codec import decode, parse_content
from invoice_services.documents.schema import Invoice, TokenUsage
from invoice_services.storage.base import INVOICE_KIND

logger = logging.getLogger(__name__)

COLLECTION_TITLE = "All Invoices"


class StreamEventType(str, Enum):
    """Event kinds, listed in emission order; ``error`` ends a failed run."""

    KIND = "kind"
    ID = "id"
    TITLE = "title"
    CLEAR = "clear"
    INVOICE_DATA = "invoice-data"
    FINISH = "finish"
    ERROR = "error"


class StreamEvent(BaseModel):
    """One stream event."""

    type: StreamEventType
    content: str = ""


class StreamSink(ABC):
    """Write channel for stream events. Writes are not acknowledged."""

    @abstractmethod
    async def write(self, event: StreamEvent) -> None:
        """Append an event to the stream."""


class NullSink(StreamSink):
    """Sink that discards every event."""

    async def write(self, event: StreamEvent) -> None:
        return None


class CollectingSink(StreamSink):
    """Sink that keeps events in a list."""

    def __init__(self) -> None:
        self.events: list[StreamEvent] = []

    async def write(self, event: StreamEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[StreamEventType]:
        return [event.type for event in self.events]


class QueueSink(StreamSink):
    """Sink feeding an asyncio queue, consumed with ``async for``.

    The producer calls :meth:`close` when the run is over, whether or not
    it ended with a ``finish`` event.
    """

    _CLOSED = None

    def __init__(self) -> None:
        self._queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()

    async def write(self, event: StreamEvent) -> None:
        await self._queue.put(event)

    async def close(self) -> None:
        await self._queue.put(self._CLOSED)

    async def __aiter__(self) -> AsyncIterator[StreamEvent]:
        while True:
            event = await self._queue.get()
            if event is self._CLOSED:
                return
            yield event


async def emit_collection(
    sink: StreamSink, display_id: str, content: str, title: str = COLLECTION_TITLE
) -> None:
    """Emit the full-collection display sequence."""
    for event_type, value in (
        (StreamEventType.KIND, INVOICE_KIND),
        (StreamEventType.ID, display_id),
        (StreamEventType.TITLE, title),
        (StreamEventType.CLEAR, ""),
        (StreamEventType.INVOICE_DATA, content),
        (StreamEventType.FINISH, ""),
    ):
        await sink.write(StreamEvent(type=event_type, content=value))


async def emit_document(sink: StreamSink, document_id: str, title: str, content: str) -> None:
    """Emit the single-document display sequence (no ``clear``)."""
    for event_type, value in (
        (StreamEventType.KIND, INVOICE_KIND),
        (StreamEventType.ID, document_id),
        (StreamEventType.TITLE, title),
        (StreamEventType.INVOICE_DATA, content),
        (StreamEventType.FINISH, ""),
    ):
        await sink.write(StreamEvent(type=event_type, content=value))


async def emit_data(sink: StreamSink, content: str) -> None:
    """Emit a content replacement followed by ``finish``."""
    await sink.write(StreamEvent(type=StreamEventType.INVOICE_DATA, content=content))
    await sink.write(StreamEvent(type=StreamEventType.FINISH))


def format_sse(event: StreamEvent) -> str:
    """Render an event as one server-sent-events message."""
    return f"data: {event.model_dump_json()}\n\n"


@dataclass(frozen=True)
class InvoiceViewState:
    """Display state reconstructed from the stream."""

    kind: str | None = None
    id: str | None = None
    title: str | None = None
    content: str | None = None
    token_usage: TokenUsage | None = None
    finished: bool = False
    failure: str | None = None

    @property
    def invoices(self) -> list[Invoice]:
        return decode(self.content, self.id)

    @property
    def error(self) -> str | None:
        if self.failure:
            return self.failure
        if not self.content:
            return None
        try:
            return parse_content(self.content).error
        except json.JSONDecodeError:
            return None


def reduce_event(state: InvoiceViewState, event: StreamEvent) -> InvoiceViewState:
    """Apply one event to the display state.

    Args:
        state: Current state
        event: Next event in arrival order

    Returns:
        New state
    """
    if event.type is StreamEventType.KIND:
        return replace(state, kind=event.content, finished=False, failure=None)
    if event.type is StreamEventType.ID:
        return replace(state, id=event.content)
    if event.type is StreamEventType.TITLE:
        return replace(state, title=event.content)
    if event.type is StreamEventType.CLEAR:
        return replace(state, content=None, token_usage=None)
    if event.type is StreamEventType.INVOICE_DATA:
        try:
            decoded = parse_content(event.content)
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring undecodable invoice-data event: {e}")
            return state
        token_usage = decoded.token_usage or state.token_usage
        return replace(state, content=event.content, token_usage=token_usage)
    if event.type is StreamEventType.ERROR:
        return replace(state, failure=event.content, finished=True)
    return replace(state, finished=True)


def reduce_events(events: Iterable[StreamEvent]) -> InvoiceViewState:
    """Fold a complete event sequence into display state."""
    state = InvoiceViewState()
    for event in events:
        state = reduce_event(state, event)
    return state
