"""
Server-Sent Events line protocol parser.
"""

from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, List, Optional, Union


@dataclass
class SSEEvent:
    """A dispatched SSE event; ``data`` joins multiple data lines with newlines."""
    data: str
    event: str = "message"
    id: Optional[str] = None
    retry: Optional[int] = None


@dataclass
class SSEComment:
    """A ``:``-prefixed line, used by servers as keepalive."""
    text: str


@dataclass
class SSEKeepalive:
    """An event that carried fields but no data, e.g. ``event: ping``."""
    event: Optional[str] = None


SSEItem = Union[SSEEvent, SSEComment, SSEKeepalive]


class SSEParser:
    """Incremental parser fed one line (without terminator) at a time."""

    def __init__(self):
        self._data: List[str] = []
        self._event: Optional[str] = None
        self._id: Optional[str] = None
        self._retry: Optional[int] = None
        self._pending = False

    def feed_line(self, line: str) -> Optional[SSEItem]:
        """Consume a line; returns an item when one is complete."""
        line = line.rstrip("\r\n")

        if not line:
            return self._dispatch()

        if line.startswith(":"):
            return SSEComment(text=line[1:].lstrip(" "))

        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]
        self._pending = True

        if field == "data":
            self._data.append(value)
        elif field == "event":
            self._event = value
        elif field == "id":
            self._id = value
        elif field == "retry":
            if value.isdigit():
                self._retry = int(value)
        # Other fields are ignored

        return None

    def _dispatch(self) -> Optional[SSEItem]:
        if not self._pending:
            return None
        self._pending = False

        if not self._data:
            keepalive = SSEKeepalive(event=self._event)
            self._event = None
            self._retry = None
            return keepalive

        event = SSEEvent(
            data="\n".join(self._data),
            event=self._event or "message",
            id=self._id,
            retry=self._retry
        )
        self._data = []
        self._event = None
        self._retry = None
        return event


async def iter_sse(lines: AsyncIterable[str]) -> AsyncIterator[SSEItem]:
    """Turn an async iterable of lines into SSE events and comments.

    An event left unterminated when the stream ends is dropped.
    """
    parser = SSEParser()
    async for line in lines:
        item = parser.feed_line(line)
        if item is not None:
            yield item
