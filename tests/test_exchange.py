"""Tests for pipeloop.exchange.loop (exchange_loop, format_message)."""

from __future__ import annotations

import asyncio
import shutil

import pytest

from pipeloop.exchange.loop import (
    DEFAULT_TEMPLATE,
    ExchangeOutcome,
    exchange_loop,
    format_message,
)
from pipeloop.pipe.channel import DuplexChannel
from pipeloop.pipe.controller import NO_LINE_YET, ControllerLoop, Line, PollError, PollResult
from pipeloop.pipe.errors import ChannelClosed, ChannelError, ChannelReadFailed, ChannelWriteFailed
from pipeloop.pipe.worker import spawn_worker


class ScriptedController:
    """Stands in for ControllerLoop: replays a fixed list of poll results."""

    def __init__(self, polls: list[PollResult], fail_send_at: int | None = None) -> None:
        self._polls = list(polls)
        self._fail_send_at = fail_send_at
        self.sent: list[bytes] = []
        self.poll_calls = 0
        self.outbound_closed = False

    def send(self, message: bytes) -> int:
        if self._fail_send_at is not None and len(self.sent) == self._fail_send_at:
            raise ChannelWriteFailed("broken pipe", errno=32)
        self.sent.append(message)
        return len(message)

    def poll_line(self) -> PollResult:
        self.poll_calls += 1
        if not self._polls:
            return NO_LINE_YET
        return self._polls.pop(0)

    def close_outbound(self) -> None:
        self.outbound_closed = True


def _run(controller: object, **kwargs: object):
    return asyncio.run(exchange_loop(controller, interval=0, **kwargs))  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# format_message
# ---------------------------------------------------------------------------


class TestFormatMessage:
    def test_default_template(self) -> None:
        assert format_message(DEFAULT_TEMPLATE, 0) == b"Line: 0\n"
        assert format_message(DEFAULT_TEMPLATE, 41) == b"Line: 41\n"

    def test_existing_newline_not_doubled(self) -> None:
        assert format_message("msg {n}\n", 3) == b"msg 3\n"

    def test_utf8(self) -> None:
        assert format_message("ñ{n}", 1) == "ñ1\n".encode()


# ---------------------------------------------------------------------------
# exchange_loop with a scripted controller
# ---------------------------------------------------------------------------


class TestExchangeLoopScripted:
    def test_drains_all_available_lines_per_iteration(self) -> None:
        closed = ChannelClosed("eof")
        ctl = ScriptedController(
            [Line(b"a\n"), Line(b"b\n"), NO_LINE_YET, PollError(closed)]
        )
        received: list[bytes] = []
        result = _run(ctl, on_received=lambda i, d: received.append(d))
        assert received == [b"a\n", b"b\n"]
        assert result.outcome == ExchangeOutcome.CLOSED
        assert result.error is closed
        # Iteration 1 sent once and drained a, b; iteration 2 sent again and hit EOF.
        assert ctl.sent == [b"Line: 0\n", b"Line: 1\n"]
        assert (result.sent, result.received) == (2, 2)

    def test_read_failure_outcome(self) -> None:
        ctl = ScriptedController([PollError(ChannelReadFailed("EIO", errno=5))])
        failures: list[ChannelError] = []
        result = _run(ctl, on_failed=failures.append)
        assert result.outcome == ExchangeOutcome.FAILED
        assert len(failures) == 1
        assert isinstance(failures[0], ChannelReadFailed)

    def test_write_failure_ends_loop_without_retry(self) -> None:
        ctl = ScriptedController([], fail_send_at=2)
        failures: list[ChannelError] = []
        result = _run(ctl, on_failed=failures.append)
        assert result.outcome == ExchangeOutcome.FAILED
        assert isinstance(result.error, ChannelWriteFailed)
        assert len(ctl.sent) == 2
        assert failures == [result.error]

    def test_callbacks_see_exact_bytes_and_indices(self) -> None:
        ctl = ScriptedController(
            [NO_LINE_YET, Line(b"Line: 0\n"), NO_LINE_YET, PollError(ChannelClosed("eof"))]
        )
        events: list[tuple[str, int, bytes]] = []
        _run(
            ctl,
            on_sent=lambda i, d: events.append(("tx", i, d)),
            on_received=lambda i, d: events.append(("rx", i, d)),
        )
        assert events == [
            ("tx", 0, b"Line: 0\n"),
            ("tx", 1, b"Line: 1\n"),
            ("rx", 0, b"Line: 0\n"),
            ("tx", 2, b"Line: 2\n"),
        ]

    def test_max_messages_closes_outbound(self) -> None:
        polls: list[PollResult] = [NO_LINE_YET] * 5 + [PollError(ChannelClosed("eof"))]
        ctl = ScriptedController(polls)
        result = _run(ctl, max_messages=3)
        assert len(ctl.sent) == 3
        assert ctl.outbound_closed
        assert result.outcome == ExchangeOutcome.CLOSED

    def test_zero_max_messages_closes_outbound_without_sending(self) -> None:
        ctl = ScriptedController([NO_LINE_YET, PollError(ChannelClosed("eof"))])
        result = _run(ctl, max_messages=0)
        assert ctl.sent == []
        assert ctl.outbound_closed
        assert result.outcome == ExchangeOutcome.CLOSED
        assert (result.sent, result.received) == (0, 0)

    def test_custom_template(self) -> None:
        ctl = ScriptedController([PollError(ChannelClosed("eof"))])
        _run(ctl, template="ping #{n}")
        assert ctl.sent == [b"ping #0\n"]

    def test_cancellation_propagates(self) -> None:
        ctl = ScriptedController([])

        async def _main() -> None:
            task = asyncio.create_task(exchange_loop(ctl, interval=10))  # type: ignore[arg-type]
            await asyncio.sleep(0)
            task.cancel()
            await task

        with pytest.raises(asyncio.CancelledError):
            asyncio.run(_main())
        assert len(ctl.sent) == 1


# ---------------------------------------------------------------------------
# exchange_loop against cat
# ---------------------------------------------------------------------------


@pytest.mark.skipif(shutil.which("cat") is None, reason="needs cat")
class TestExchangeLoopWithCat:
    @pytest.mark.parametrize("method", ["fork", "subprocess"])
    def test_finite_run_echoes_everything(self, method: str) -> None:
        channel = DuplexChannel.create()
        worker = spawn_worker(channel, ["cat", "-"], method)  # type: ignore[arg-type]
        controller = ControllerLoop.initialize(channel)
        received: list[bytes] = []
        try:
            result = asyncio.run(
                exchange_loop(
                    controller,
                    interval=0.001,
                    max_messages=10,
                    on_received=lambda i, d: received.append(d),
                )
            )
        finally:
            controller.shutdown()
            if worker.wait(timeout=5) is None:
                worker.terminate()

        assert result.outcome == ExchangeOutcome.CLOSED
        assert result.sent == 10
        assert received == [f"Line: {i}\n".encode() for i in range(10)]
        assert worker.returncode == 0

    def test_zero_messages_lets_cat_exit(self) -> None:
        channel = DuplexChannel.create()
        worker = spawn_worker(channel, ["cat", "-"], "fork")
        controller = ControllerLoop.initialize(channel)

        async def _bounded():
            return await asyncio.wait_for(
                exchange_loop(controller, interval=0.01, max_messages=0), timeout=5
            )

        try:
            result = asyncio.run(_bounded())
        finally:
            controller.shutdown()
            if worker.wait(timeout=5) is None:
                worker.terminate()
        assert result.outcome == ExchangeOutcome.CLOSED
        assert (result.sent, result.received) == (0, 0)
        assert worker.returncode == 0

    def test_worker_that_exits_immediately(self) -> None:
        true_bin = shutil.which("true")
        if true_bin is None:
            pytest.skip("needs true")
        channel = DuplexChannel.create()
        worker = spawn_worker(channel, [true_bin], "fork")
        controller = ControllerLoop.initialize(channel)
        try:
            result = asyncio.run(exchange_loop(controller, interval=0.01))
        finally:
            controller.shutdown()
            worker.wait(timeout=5)
        assert result.outcome in (ExchangeOutcome.CLOSED, ExchangeOutcome.FAILED)
        assert result.received == 0
