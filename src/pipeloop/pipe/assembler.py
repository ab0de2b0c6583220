"""Line assembler — turns an unstructured byte stream into lines."""

from __future__ import annotations


class LineAssembler:
    """Accumulates bytes until a newline completes a line.

    One assembler belongs to one inbound stream. After a completed line has
    been handed out, the next ``begin()`` starts a fresh accumulator, so the
    caller never has to clear it.
    """

    SEPARATOR = b"\n"

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._awaiting_reset = False

    def begin(self) -> None:
        """Start a polling round. Discards the previously reported line."""
        if self._awaiting_reset:
            self._buffer.clear()
            self._awaiting_reset = False

    def push(self, data: bytes) -> bool:
        """Append one unit of input. Returns True if it completed a line."""
        self._buffer += data
        if data.endswith(self.SEPARATOR):
            self._awaiting_reset = True
            return True
        return False

    def line(self) -> bytes:
        """The completed line, separator included."""
        if not self._awaiting_reset:
            raise ValueError("No completed line available")
        return bytes(self._buffer)

    @property
    def pending(self) -> bytes:
        """Bytes accumulated toward a line that has not completed yet."""
        if self._awaiting_reset:
            return b""
        return bytes(self._buffer)

    @property
    def awaiting_reset(self) -> bool:
        return self._awaiting_reset

    def __len__(self) -> int:
        return len(self._buffer)
