"""The exchange loop — write a line, drain echoed lines, wait, repeat."""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Callable

from pipeloop.pipe.controller import ControllerLoop, Line, NoLineYet, PollError
from pipeloop.pipe.errors import ChannelError, ErrorKind

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE = "Line: {n}"
DEFAULT_INTERVAL = 0.25


class ExchangeOutcome(enum.Enum):
    """Why did the exchange end?"""

    CLOSED = "closed"  # Worker closed its output (end-of-stream)
    FAILED = "failed"  # Read or write error on the channel


@dataclass
class ExchangeResult:
    outcome: ExchangeOutcome
    error: ChannelError
    sent: int = 0
    received: int = 0


def format_message(template: str, n: int) -> bytes:
    """Render message number ``n``, always newline-terminated."""
    text = template.format(n=n)
    if not text.endswith("\n"):
        text += "\n"
    return text.encode("utf-8")


async def exchange_loop(
    controller: ControllerLoop,
    interval: float = DEFAULT_INTERVAL,
    max_messages: int | None = None,
    template: str = DEFAULT_TEMPLATE,
    on_sent: Callable[[int, bytes], None] | None = None,
    on_received: Callable[[int, bytes], None] | None = None,
    on_failed: Callable[[ChannelError], None] | None = None,
) -> ExchangeResult:
    """Run the exchange until the channel fails.

    Each iteration:
    1. Send the next message (until ``max_messages`` have been sent)
    2. Drain every line the worker has echoed so far
    3. Sleep ``interval`` seconds

    Once ``max_messages`` messages are out, the outbound pipe is closed so
    the worker sees end-of-input; the loop then keeps draining until the
    worker's exit shows up as end-of-stream. Nothing is retried: the first
    channel error ends the loop. Cancellation propagates to the caller.

    Args:
        controller: An initialized controller.
        interval: Pause between iterations, in seconds.
        max_messages: Stop sending after this many messages (None: forever).
        template: Message template; ``{n}`` is the message counter.
        on_sent: Callback after each send (index, exact bytes written).
        on_received: Callback per inbound line (index, line with terminator).
        on_failed: Callback with the terminal channel error.
    """
    sent = 0
    received = 0

    def _finish(error: ChannelError) -> ExchangeResult:
        if on_failed:
            on_failed(error)
        if error.kind == ErrorKind.CHANNEL_CLOSED:
            outcome = ExchangeOutcome.CLOSED
        else:
            outcome = ExchangeOutcome.FAILED
        logger.info(
            "Exchange ended (%s): sent=%d received=%d", outcome.value, sent, received
        )
        return ExchangeResult(outcome=outcome, error=error, sent=sent, received=received)

    outbound_open = True

    while True:
        # 1. Send
        if max_messages is None or sent < max_messages:
            message = format_message(template, sent)
            try:
                controller.send(message)
            except ChannelError as e:
                return _finish(e)
            if on_sent:
                on_sent(sent, message)
            sent += 1
        if outbound_open and max_messages is not None and sent >= max_messages:
            logger.info("Sent %d messages, closing outbound pipe", sent)
            controller.close_outbound()
            outbound_open = False

        # 2. Drain
        while True:
            result = controller.poll_line()
            if isinstance(result, NoLineYet):
                break
            if isinstance(result, PollError):
                return _finish(result.error)
            assert isinstance(result, Line)
            if on_received:
                on_received(received, result.data)
            received += 1

        # 3. Pace
        await asyncio.sleep(interval)
