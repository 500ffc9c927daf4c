"""
Event emitters for client-facing chat events.

One emitter is chosen per session:
- StreamingEventEmitter writes Server-Sent Events into a queue drained
  by the HTTP response generator.
- BufferedEventEmitter accumulates events and produces one result
  document when the session ends.

Both classify fatal session errors the same way (see classify_error).
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..config import ErrorMessages
from ..domain.entities import ChatEvent, ChatEventType, ErrorType
from ..domain.ports import IEventEmitter

logger = logging.getLogger(__name__)

# Marks the end of a stream in the SSE queue
STREAM_END = object()


def _status_of(error: BaseException) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if status is None:
        status = getattr(error, "status", None)
    return status if isinstance(status, int) else None


def classify_error(
    error: BaseException, messages: Optional[ErrorMessages] = None
) -> ChatEvent:
    """Map a fatal session error to exactly one client event.

    Args:
        error: The exception that ended the session
        messages: Client error strings

    Returns:
        An `error` or `rate_limit_exceeded` event
    """
    messages = messages or ErrorMessages()
    status = _status_of(error)
    text = str(error) or error.__class__.__name__

    if status == 401 or "auth" in text.lower() or "key" in text.lower():
        return ChatEvent.error_event(
            messages.auth_failed,
            messages.api_key_error,
            ErrorType.AUTHENTICATION,
        )

    if status in (429, 529) or "Overloaded" in text:
        return ChatEvent.error_event(
            messages.rate_limit_exceeded,
            messages.rate_limit_details,
            ErrorType.RATE_LIMIT,
        )

    return ChatEvent.error_event(messages.generic_error, text, ErrorType.GENERIC)


def encode_sse(event: ChatEvent) -> str:
    """Encode an event as one SSE frame."""
    return f"data: {json.dumps(event.to_dict())}\n\n"


class StreamingEventEmitter(IEventEmitter):
    """Writes events as SSE frames into an asyncio.Queue.

    The HTTP layer drains `queue` until it receives STREAM_END. Delivery
    never raises; once the client has gone (detach) or the stream has been
    closed, sends are dropped.

    Usage:
        emitter = StreamingEventEmitter()
        asyncio.create_task(orchestrator.run(context, emitter))

        while (frame := await emitter.queue.get()) is not STREAM_END:
            yield frame
    """

    def __init__(self, error_messages: Optional[ErrorMessages] = None):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.error_messages = error_messages or ErrorMessages()
        self._closed = False
        self._detached = False

    @property
    def is_open(self) -> bool:
        return not (self._closed or self._detached)

    async def send(self, event: ChatEvent) -> None:
        if not self.is_open:
            logger.debug(f"Dropping {event.type.value} event, stream not writable")
            return
        try:
            self.queue.put_nowait(encode_sse(event))
        except Exception as e:
            logger.error(f"Failed to enqueue {event.type.value} event: {e}")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if not self._detached:
            self.queue.put_nowait(STREAM_END)

    async def on_error(self, error: BaseException) -> None:
        logger.error(f"Chat session failed: {error}")
        await self.send(classify_error(error, self.error_messages))

    def detach(self) -> None:
        """Stop writing to the client (it disconnected)."""
        self._detached = True


@dataclass
class BufferedResult:
    """Aggregate of a buffered session.

    Attributes:
        text: Concatenation of every chunk
        events: Every event in send order
        products: Products of the last product_results event
        error: The classified error event, if the session failed
    """

    text: str = ""
    events: list[dict[str, Any]] = field(default_factory=list)
    products: list[dict[str, Any]] = field(default_factory=list)
    error: Optional[dict[str, Any]] = None


class BufferedEventEmitter(IEventEmitter):
    """Accumulates events in memory for a single JSON response."""

    def __init__(self, error_messages: Optional[ErrorMessages] = None):
        self.error_messages = error_messages or ErrorMessages()
        self._text_parts: list[str] = []
        self._events: list[dict[str, Any]] = []
        self._products: list[dict[str, Any]] = []
        self._error: Optional[dict[str, Any]] = None
        self.closed = False

    async def send(self, event: ChatEvent) -> None:
        self._events.append(event.to_dict())
        if event.type == ChatEventType.CHUNK and event.chunk:
            self._text_parts.append(event.chunk)
        elif event.type == ChatEventType.PRODUCT_RESULTS:
            self._products = list(event.products or [])

    async def close(self) -> None:
        self.closed = True

    async def on_error(self, error: BaseException) -> None:
        logger.error(f"Chat session failed: {error}")
        event = classify_error(error, self.error_messages)
        self._error = event.to_dict()
        await self.send(event)

    def get_result(self) -> BufferedResult:
        return BufferedResult(
            text="".join(self._text_parts),
            events=list(self._events),
            products=list(self._products),
            error=self._error,
        )
