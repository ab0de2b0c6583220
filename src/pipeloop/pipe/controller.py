"""Controller side of the channel — send lines, poll for echoed lines.

The inbound read end is non-blocking, so ``poll_line`` always returns
immediately. ``send`` may block briefly while the outbound pipe buffer is
full; that is ordinary backpressure.
"""

from __future__ import annotations

import fcntl
import logging
import os
from dataclasses import dataclass

from pipeloop.pipe.assembler import LineAssembler
from pipeloop.pipe.channel import DuplexChannel, PipeEnd
from pipeloop.pipe.errors import (
    ChannelClosed,
    ChannelError,
    ChannelReadFailed,
    ChannelWriteFailed,
    ErrorKind,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Line:
    """A complete inbound line, terminator included."""

    data: bytes

    def text(self, encoding: str = "utf-8") -> str:
        return self.data.decode(encoding, errors="replace")


@dataclass(frozen=True)
class NoLineYet:
    """Nothing complete to report; poll again later."""


@dataclass(frozen=True)
class PollError:
    """A fatal read-side condition. The caller must stop polling."""

    error: ChannelError

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind


PollResult = Line | NoLineYet | PollError

NO_LINE_YET = NoLineYet()


class ControllerLoop:
    """Owns ``outbound.write_end`` and ``inbound.read_end`` after ``initialize``.

    Usage:
        channel = DuplexChannel.create()
        worker = spawn_worker(channel, ["cat", "-"])
        controller = ControllerLoop.initialize(channel)
        controller.send(b"Line: 0\\n")
        result = controller.poll_line()   # Line | NoLineYet | PollError
    """

    def __init__(self, write_end: PipeEnd, read_end: PipeEnd) -> None:
        self._write_end = write_end
        self._read_end = read_end
        self._assembler = LineAssembler()
        self._failure: ChannelError | None = None
        self.bytes_sent = 0
        self.lines_received = 0

    @classmethod
    def initialize(cls, channel: DuplexChannel) -> ControllerLoop:
        """Close the worker-side ends and make the inbound read non-blocking.

        Must be called after the worker has been spawned.
        """
        channel.outbound.read_end.close()
        channel.inbound.write_end.close()

        read_fd = channel.inbound.read_end.fileno()
        flags = fcntl.fcntl(read_fd, fcntl.F_GETFL)
        fcntl.fcntl(read_fd, fcntl.F_SETFL, flags | os.O_NONBLOCK)

        return cls(channel.outbound.write_end, channel.inbound.read_end)

    def send(self, message: bytes) -> int:
        """Write all of ``message`` to the worker, looping over short writes.

        Returns the number of bytes written.

        Raises:
            ChannelWriteFailed: The write failed (usually the worker is gone).
            ChannelClosed: The outbound side was already shut down.
        """
        if self._failure is not None:
            raise self._failure
        if self._write_end.closed:
            raise ChannelClosed("Outbound pipe was shut down")

        view = memoryview(message)
        total = 0
        while total < len(view):
            try:
                written = os.write(self._write_end.fd, view[total:])
            except InterruptedError:
                continue
            except OSError as e:
                self._failure = ChannelWriteFailed(
                    f"Write to worker failed: {e.strerror}", errno=e.errno
                )
                logger.error("Channel write failed: %s", e)
                raise self._failure from e
            total += written
        self.bytes_sent += total
        return total

    def poll_line(self) -> PollResult:
        """Read whatever is available, one byte at a time, up to one newline.

        At most one line is reported per call. Bytes after that newline stay
        in the pipe for the next call.
        """
        if self._failure is not None:
            return PollError(self._failure)

        self._assembler.begin()
        while True:
            try:
                chunk = os.read(self._read_end.fd, 1)
            except BlockingIOError:
                return NO_LINE_YET
            except InterruptedError:
                continue
            except OSError as e:
                return self._fail(
                    ChannelReadFailed(f"Read from worker failed: {e.strerror}", errno=e.errno)
                )

            if not chunk:
                return self._fail(
                    ChannelClosed(
                        "Worker closed its output", pending=self._assembler.pending
                    )
                )

            if self._assembler.push(chunk):
                self.lines_received += 1
                return Line(self._assembler.line())

    def close_outbound(self) -> None:
        """Signal end-of-input to the worker by closing our write end."""
        self._write_end.close()

    def shutdown(self) -> None:
        """Release both controller-owned descriptors."""
        self._write_end.close()
        self._read_end.close()

    def _fail(self, error: ChannelError) -> PollError:
        self._failure = error
        if error.kind == ErrorKind.CHANNEL_CLOSED:
            logger.info("Channel closed by worker")
        else:
            logger.error("Channel read failed: %s", error)
        return PollError(error)

    @property
    def failure(self) -> ChannelError | None:
        return self._failure

    @property
    def failed(self) -> bool:
        return self._failure is not None

    @property
    def pending(self) -> bytes:
        """Bytes received toward a line that has not completed yet."""
        return self._assembler.pending

    @property
    def write_end(self) -> PipeEnd:
        return self._write_end

    @property
    def read_end(self) -> PipeEnd:
        return self._read_end
