"""Textual application: TX pane on the left, RX pane on the right."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING

from rich.markup import escape

from textual import work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal
from textual.widgets import Footer, Header, Log, Static

from pipeloop.exchange.loop import ExchangeResult, exchange_loop
from pipeloop.session.wire import EventType, Wire, WireEvent
from pipeloop.tui.bridge import ExchangeCallbacks

if TYPE_CHECKING:
    from pipeloop.cli import ExchangePipeline
    from pipeloop.config import PipeloopConfig

logger = logging.getLogger(__name__)

MAX_PANE_LINES = 5_000


class TUILogHandler(logging.Handler):
    """Logging handler that keeps the last log message for the status bar.

    Writing to stderr would corrupt the Textual display.
    """

    def __init__(self, app: PipeloopApp) -> None:
        super().__init__()
        self._app = app
        self._thread_id = threading.get_ident()
        self.last_message: str = ""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.last_message = self.format(record)
            if threading.get_ident() == self._thread_id:
                self._app._update_status()
            else:
                self._app.call_from_thread(self._app._update_status)
        except Exception:
            self.handleError(record)


class PipeloopApp(App[ExchangeResult | None]):
    """Shows what goes out to the worker and what comes back.

    The app exits with the ExchangeResult once the channel fails, or with
    None if the user quits first or the loop raised; in the latter case
    ``error`` holds the exception.
    """

    TITLE = "Pipe Demo"
    SUB_TITLE = "^C to exit"
    CSS = """
    #panes {
        layout: horizontal;
        height: 1fr;
    }

    #tx-log, #rx-log {
        width: 1fr;
        border: solid $primary;
    }

    #status-bar {
        dock: bottom;
        height: 1;
        background: $surface;
        color: $text-muted;
        padding: 0 1;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("ctrl+c", "quit", "Quit"),
    ]

    def __init__(
        self,
        wire: Wire,
        pipeline: ExchangePipeline,
        config: PipeloopConfig,
    ) -> None:
        super().__init__()
        self.wire = wire
        self._pipeline = pipeline
        self._config = config
        self._result: ExchangeResult | None = None
        self.error: Exception | None = None
        self._sent = 0
        self._received = 0
        self._worker_state = f"pid {pipeline.worker.pid}"
        self._failure = ""
        self._log_handler: TUILogHandler | None = None

    def compose(self) -> ComposeResult:
        yield Header()
        with Horizontal(id="panes"):
            yield Log(id="tx-log", max_lines=MAX_PANE_LINES)
            yield Log(id="rx-log", max_lines=MAX_PANE_LINES)
        yield Static(id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        self.query_one("#tx-log", Log).border_title = "TX"
        self.query_one("#rx-log", Log).border_title = "RX"
        self._install_log_handler()
        self._update_status()
        self._listen_wire()
        self._run_exchange()

    def _install_log_handler(self) -> None:
        root = logging.getLogger()
        for handler in root.handlers[:]:
            root.removeHandler(handler)
        self._log_handler = TUILogHandler(self)
        self._log_handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        root.addHandler(self._log_handler)

    # --- Status bar ---

    def _update_status(self) -> None:
        try:
            status = self.query_one("#status-bar", Static)
        except Exception:
            return
        parts = [
            f"Sent: {self._sent}",
            f"Received: {self._received}",
            f"Worker: {escape(self._worker_state)}",
        ]
        if self._failure:
            parts.append(f"[bold red]{escape(self._failure)}[/bold red]")
        elif self._log_handler and self._log_handler.last_message:
            last_log = self._log_handler.last_message
            if len(last_log) > 80:
                last_log = last_log[:77] + "..."
            parts.append(f"[dim]{escape(last_log)}[/dim]")
        status.update(" | ".join(parts))

    # --- Exchange ---

    @work(exclusive=False)
    async def _run_exchange(self) -> None:
        pipeline = self._pipeline
        callbacks = ExchangeCallbacks.for_wire(self.wire)
        exchange = self._config.exchange
        try:
            self._result = await exchange_loop(
                pipeline.controller,
                interval=exchange.interval,
                max_messages=exchange.max_messages,
                template=exchange.template,
                on_sent=callbacks.on_sent,
                on_received=callbacks.on_received,
                on_failed=callbacks.on_failed,
            )
            code = await asyncio.to_thread(
                pipeline.close, self._config.worker.terminate_grace
            )
            self.wire.send_worker_exit(pipeline.worker.pid, code)
        except Exception as e:
            logger.exception("Exchange loop error")
            self.error = e
            self.wire.send_error(str(e))
        finally:
            self.wire.close()

    # --- Wire event loop ---

    @work(exclusive=True)
    async def _listen_wire(self) -> None:
        queue = self.wire.subscribe()
        try:
            while True:
                event = await queue.get()
                if event is None:
                    self.exit(self._result)
                    break
                self._handle_event(event)
        finally:
            self.wire.unsubscribe(queue)

    def _handle_event(self, event: WireEvent) -> None:
        d = event.data
        if event.type == EventType.LINE_SENT:
            self._sent += 1
            self.query_one("#tx-log", Log).write_line(d["text"].rstrip("\n"))
        elif event.type == EventType.LINE_RECEIVED:
            self._received += 1
            self.query_one("#rx-log", Log).write_line(d["text"].rstrip("\n"))
        elif event.type == EventType.CHANNEL_FAILED:
            self._failure = f"{d['kind']}: {d['message']}"
        elif event.type == EventType.WORKER_EXIT:
            self._worker_state = f"pid {d['pid']} exited (code={d['exit_code']})"
        elif event.type == EventType.ERROR:
            self._failure = d.get("error", "Unknown error")
        self._update_status()
