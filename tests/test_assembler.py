"""Tests for pipeloop.pipe.assembler.LineAssembler."""

from __future__ import annotations

import pytest

from pipeloop.pipe.assembler import LineAssembler


def _feed(asm: LineAssembler, data: bytes) -> list[bytes]:
    """Push bytes one at a time, the way the controller reads them."""
    lines = []
    for i in range(len(data)):
        if asm.push(data[i : i + 1]):
            lines.append(asm.line())
            asm.begin()
    return lines


class TestLineAssemblerBasics:
    def test_empty(self) -> None:
        asm = LineAssembler()
        assert len(asm) == 0
        assert asm.pending == b""
        assert not asm.awaiting_reset

    def test_push_without_newline(self) -> None:
        asm = LineAssembler()
        assert asm.push(b"a") is False
        assert asm.push(b"b") is False
        assert asm.pending == b"ab"

    def test_newline_completes_line(self) -> None:
        asm = LineAssembler()
        asm.push(b"x")
        assert asm.push(b"\n") is True
        assert asm.line() == b"x\n"
        assert asm.awaiting_reset

    def test_line_before_completion_raises(self) -> None:
        asm = LineAssembler()
        asm.push(b"x")
        with pytest.raises(ValueError):
            asm.line()

    def test_bare_newline_is_a_line(self) -> None:
        asm = LineAssembler()
        assert asm.push(b"\n") is True
        assert asm.line() == b"\n"


class TestLineAssemblerReset:
    def test_begin_clears_after_completed_line(self) -> None:
        asm = LineAssembler()
        asm.push(b"a")
        asm.push(b"\n")
        asm.begin()
        assert len(asm) == 0
        assert not asm.awaiting_reset

    def test_begin_keeps_partial_line(self) -> None:
        asm = LineAssembler()
        asm.push(b"par")
        asm.begin()
        asm.begin()
        assert asm.pending == b"par"

    def test_line_still_readable_until_begin(self) -> None:
        asm = LineAssembler()
        _ = [asm.push(bytes([c])) for c in b"hi\n"]
        assert asm.line() == b"hi\n"
        assert asm.line() == b"hi\n"
        assert asm.pending == b""


class TestLineAssemblerSequences:
    def test_multiple_lines_in_order(self) -> None:
        asm = LineAssembler()
        assert _feed(asm, b"one\ntwo\nthree\n") == [b"one\n", b"two\n", b"three\n"]

    def test_trailing_partial_is_retained(self) -> None:
        asm = LineAssembler()
        assert _feed(asm, b"done\nhalf") == [b"done\n"]
        assert asm.pending == b"half"

    def test_non_utf8_bytes_pass_through(self) -> None:
        asm = LineAssembler()
        assert _feed(asm, b"\xff\xfe\x00\n") == [b"\xff\xfe\x00\n"]

    def test_independent_assemblers_do_not_share_state(self) -> None:
        a = LineAssembler()
        b = LineAssembler()
        a.push(b"left")
        b.push(b"right")
        assert a.pending == b"left"
        assert b.pending == b"right"
