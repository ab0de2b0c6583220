"""Wire protocol — decouples the channel core from the display.

The exchange loop emits events onto the wire; a display (plain CLI feed or
the TUI) subscribes and renders them. Displays have no way to write back
into the core.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any

from pipeloop.pipe.errors import ChannelError


class EventType(enum.Enum):
    LINE_SENT = "line_sent"
    LINE_RECEIVED = "line_received"
    CHANNEL_FAILED = "channel_failed"
    WORKER_EXIT = "worker_exit"
    ERROR = "error"


@dataclass
class WireEvent:
    """An event on the wire."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


class Wire:
    """Async message bus: exchange loop -> display subscribers.

    Single-producer, multi-consumer broadcast.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[WireEvent | None]] = []
        self._closed: bool = False

    def send(self, event: WireEvent) -> None:
        """Send an event to all subscribers.

        Silently drops events after ``close()`` has been called.
        """
        if self._closed:
            return
        for q in self._subscribers:
            q.put_nowait(event)

    def send_line_sent(self, index: int, data: bytes) -> None:
        """The exact bytes just written to the worker."""
        self.send(
            WireEvent(
                type=EventType.LINE_SENT,
                data={"index": index, "raw": data, "text": _decode(data)},
            )
        )

    def send_line_received(self, index: int, data: bytes) -> None:
        """An assembled inbound line, terminator included."""
        self.send(
            WireEvent(
                type=EventType.LINE_RECEIVED,
                data={"index": index, "raw": data, "text": _decode(data)},
            )
        )

    def send_channel_failed(self, error: ChannelError) -> None:
        data: dict[str, Any] = {
            "kind": str(error.kind),
            "message": str(error),
            "errno": error.errno,
        }
        pending = getattr(error, "pending", b"")
        if pending:
            data["pending"] = _decode(pending)
        self.send(WireEvent(type=EventType.CHANNEL_FAILED, data=data))

    def send_worker_exit(self, pid: int, exit_code: int | None) -> None:
        """Notify subscribers that the worker process has been reaped."""
        self.send(
            WireEvent(
                type=EventType.WORKER_EXIT,
                data={"pid": pid, "exit_code": exit_code},
            )
        )

    def send_error(self, error: str) -> None:
        self.send(WireEvent(type=EventType.ERROR, data={"error": error}))

    def subscribe(self) -> asyncio.Queue[WireEvent | None]:
        """Subscribe to events. Returns a queue to read from."""
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        """Unsubscribe from events."""
        if q in self._subscribers:
            self._subscribers.remove(q)

    def close(self) -> None:
        """Signal all subscribers that the wire is closing."""
        self._closed = True
        for q in self._subscribers:
            q.put_nowait(None)

    @property
    def closed(self) -> bool:
        return self._closed
