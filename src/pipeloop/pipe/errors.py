"""Error taxonomy for the duplex pipe channel.

Every error here is fatal: it either prevents setup or ends the exchange.
"No data available yet" on a non-blocking read is not an error and has no
class here.
"""

from __future__ import annotations

import enum


class ErrorKind(enum.StrEnum):
    """Which stage of the channel failed."""

    RESOURCE_EXHAUSTED = "resource_exhausted"
    PROCESS_DUPLICATION_FAILED = "process_duplication_failed"
    PROCESS_REPLACEMENT_FAILED = "process_replacement_failed"
    CHANNEL_WRITE_FAILED = "channel_write_failed"
    CHANNEL_READ_FAILED = "channel_read_failed"
    CHANNEL_CLOSED = "channel_closed"


class PipeloopError(Exception):
    """Base class for all pipeloop errors."""


class ChannelError(PipeloopError):
    """A fatal condition on the channel or its worker process."""

    kind: ErrorKind

    def __init__(self, message: str, errno: int | None = None) -> None:
        self.errno = errno
        super().__init__(message)

    def describe(self) -> str:
        """Human-readable one-liner including the error kind."""
        return f"[{self.kind}] {self}"


class ResourceExhausted(ChannelError):
    """The OS could not allocate pipe descriptors."""

    kind = ErrorKind.RESOURCE_EXHAUSTED


class ProcessDuplicationFailed(ChannelError):
    """fork() failed; no redirection has happened."""

    kind = ErrorKind.PROCESS_DUPLICATION_FAILED


class ProcessReplacementFailed(ChannelError):
    """The filter program could not be executed."""

    kind = ErrorKind.PROCESS_REPLACEMENT_FAILED


class ChannelWriteFailed(ChannelError):
    """Writing to the outbound pipe failed; the worker is unreachable."""

    kind = ErrorKind.CHANNEL_WRITE_FAILED


class ChannelReadFailed(ChannelError):
    """Reading from the inbound pipe failed with something other than EAGAIN."""

    kind = ErrorKind.CHANNEL_READ_FAILED


class ChannelClosed(ChannelError):
    """The inbound pipe reached end-of-stream.

    ``pending`` holds any unterminated bytes that were still in the line
    assembler when the stream ended.
    """

    kind = ErrorKind.CHANNEL_CLOSED

    def __init__(self, message: str, pending: bytes = b"") -> None:
        self.pending = pending
        super().__init__(message)
