"""Bridge between exchange_loop callbacks and the Wire event bus.

- LINE_SENT fires right after each message is written (via on_sent)
- LINE_RECEIVED fires for each assembled inbound line (via on_received)
- CHANNEL_FAILED fires once, with the error that ended the loop (via on_failed)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from pipeloop.pipe.errors import ChannelError
from pipeloop.session.wire import Wire


def make_on_sent(wire: Wire) -> Callable[[int, bytes], None]:
    """Create an on_sent callback that emits LINE_SENT events."""

    def on_sent(index: int, data: bytes) -> None:
        wire.send_line_sent(index, data)

    return on_sent


def make_on_received(wire: Wire) -> Callable[[int, bytes], None]:
    """Create an on_received callback that emits LINE_RECEIVED events."""

    def on_received(index: int, data: bytes) -> None:
        wire.send_line_received(index, data)

    return on_received


def make_on_failed(wire: Wire) -> Callable[[ChannelError], None]:
    """Create an on_failed callback that emits CHANNEL_FAILED events."""

    def on_failed(error: ChannelError) -> None:
        wire.send_channel_failed(error)

    return on_failed


@dataclass
class ExchangeCallbacks:
    """The three exchange_loop callbacks, bound to one wire."""

    on_sent: Callable[[int, bytes], None]
    on_received: Callable[[int, bytes], None]
    on_failed: Callable[[ChannelError], None]

    @classmethod
    def for_wire(cls, wire: Wire) -> ExchangeCallbacks:
        return cls(
            on_sent=make_on_sent(wire),
            on_received=make_on_received(wire),
            on_failed=make_on_failed(wire),
        )
