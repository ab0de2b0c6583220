"""Duplex channel — two anonymous pipes between controller and worker."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from pipeloop.pipe.errors import ResourceExhausted

logger = logging.getLogger(__name__)


@dataclass
class PipeEnd:
    """One end of a pipe: a single OS-level descriptor.

    Ownership is explicit. Whoever does not use an end must ``close()`` it;
    closing twice is a no-op.
    """

    fd: int
    name: str = ""
    _closed: bool = field(default=False, init=False, repr=False)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            os.close(self.fd)
        except OSError as e:
            logger.debug("close(%s fd=%d) failed: %s", self.name, self.fd, e)

    @property
    def closed(self) -> bool:
        return self._closed

    def fileno(self) -> int:
        if self._closed:
            raise ValueError(f"{self.name or 'pipe end'} is closed")
        return self.fd


@dataclass
class Pipe:
    """A unidirectional byte stream with a read end and a write end."""

    read_end: PipeEnd
    write_end: PipeEnd

    @classmethod
    def open(cls, name: str) -> Pipe:
        try:
            r, w = os.pipe()
        except OSError as e:
            raise ResourceExhausted(
                f"Could not allocate {name} pipe: {e.strerror}", errno=e.errno
            ) from e
        return cls(
            read_end=PipeEnd(r, name=f"{name}.read_end"),
            write_end=PipeEnd(w, name=f"{name}.write_end"),
        )

    def close(self) -> None:
        self.read_end.close()
        self.write_end.close()


@dataclass
class DuplexChannel:
    """Two pipes: ``outbound`` (controller -> worker) and ``inbound``
    (worker -> controller).

    The channel never closes anything on its own after ``create()``
    returns. The four ends are handed to the worker bootstrap and the
    controller, each of which closes the two it does not own.
    """

    outbound: Pipe
    inbound: Pipe

    @classmethod
    def create(cls) -> DuplexChannel:
        """Allocate both pipes. Must run before the worker is spawned so the
        descriptors can be inherited.

        Raises:
            ResourceExhausted: If either pipe cannot be allocated. A first
                pipe that was already allocated is closed again.
        """
        outbound = Pipe.open("outbound")
        try:
            inbound = Pipe.open("inbound")
        except ResourceExhausted:
            outbound.close()
            raise
        logger.debug(
            "Channel created: outbound=(%d, %d) inbound=(%d, %d)",
            outbound.read_end.fd,
            outbound.write_end.fd,
            inbound.read_end.fd,
            inbound.write_end.fd,
        )
        return cls(outbound=outbound, inbound=inbound)

    def ends(self) -> list[PipeEnd]:
        return [
            self.outbound.read_end,
            self.outbound.write_end,
            self.inbound.read_end,
            self.inbound.write_end,
        ]

    def close(self) -> None:
        """Close every end still open. Used for cleanup on setup failure."""
        for end in self.ends():
            end.close()
