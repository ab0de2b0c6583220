"""CLI entry point for pipeloop."""

from __future__ import annotations

import asyncio
import logging
import shlex
from dataclasses import dataclass, field

import typer

from pipeloop.config import PipeloopConfig
from pipeloop.exchange.loop import ExchangeOutcome, ExchangeResult, exchange_loop
from pipeloop.pipe.channel import DuplexChannel
from pipeloop.pipe.controller import ControllerLoop
from pipeloop.pipe.errors import ChannelError
from pipeloop.pipe.worker import WorkerProcess, spawn_worker
from pipeloop.session.wire import EventType, Wire
from pipeloop.tui.bridge import ExchangeCallbacks


app = typer.Typer(
    name="pipeloop",
    help="Exchange lines with a pipe-unaware child process over two anonymous pipes.",
    no_args_is_help=True,
)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


@dataclass
class ExchangePipeline:
    """Channel, worker and controller for one run — shared between CLI and TUI."""

    channel: DuplexChannel
    worker: WorkerProcess
    controller: ControllerLoop
    _closed: bool = field(default=False, init=False)
    _exit_code: int | None = field(default=None, init=False)

    def close(self, grace: float = 2.0) -> int | None:
        """Release the controller's descriptors and reap the worker.

        Closing the outbound pipe normally makes the filter exit by itself;
        it is terminated if it has not done so within ``grace`` seconds.
        Safe to call more than once. Returns the worker's exit code.
        """
        if self._closed:
            return self._exit_code
        self._closed = True
        self.controller.shutdown()
        code = self.worker.wait(timeout=grace)
        if code is None:
            code = self.worker.terminate(grace=grace)
        self._exit_code = code
        return code


def _build_pipeline(config: PipeloopConfig) -> ExchangePipeline:
    """Create the channel, spawn the worker, take over the controller ends.

    Raises:
        ChannelError: ResourceExhausted, ProcessDuplicationFailed or
            ProcessReplacementFailed. No descriptors are left open.
    """
    channel = DuplexChannel.create()
    try:
        worker = spawn_worker(channel, config.worker.command, config.worker.spawn)
    except ChannelError:
        channel.close()
        raise
    controller = ControllerLoop.initialize(channel)
    return ExchangePipeline(channel=channel, worker=worker, controller=controller)


def _apply_overrides(
    config: PipeloopConfig,
    command: str | None,
    interval: float | None,
    count: int | None,
    spawn: str | None,
) -> PipeloopConfig:
    data = config.model_dump()
    if command:
        data["worker"]["command"] = shlex.split(command)
    if spawn:
        data["worker"]["spawn"] = spawn
    if interval is not None:
        data["exchange"]["interval"] = interval
    if count is not None:
        data["exchange"]["max_messages"] = count
    return PipeloopConfig.model_validate(data)


def _load_config(
    config_file: str | None,
    command: str | None,
    interval: float | None,
    count: int | None,
    spawn: str | None,
) -> PipeloopConfig | None:
    """Load and override the config; report a bad one instead of raising."""
    try:
        return _apply_overrides(
            PipeloopConfig.load(config_file), command, interval, count, spawn
        )
    except ValueError as e:  # ValidationError and bad JSON included
        typer.echo(f"pipeloop: setup failed: invalid configuration: {e}", err=True)
        return None


def _report(
    result: ExchangeResult | None,
    exit_code: int | None,
    error: Exception | None = None,
) -> None:
    """Diagnostics go to stderr; the process still exits with status 0."""
    if error is not None:
        typer.echo(f"pipeloop: exchange aborted: {type(error).__name__}: {error}", err=True)
    elif result is None:
        typer.echo("pipeloop: interrupted", err=True)
    else:
        label = "closed" if result.outcome == ExchangeOutcome.CLOSED else "failed"
        typer.echo(
            f"pipeloop: channel {label} after {result.sent} sent / "
            f"{result.received} received: {result.error.describe()}",
            err=True,
        )
        pending = getattr(result.error, "pending", b"")
        if pending:
            typer.echo(f"pipeloop: unterminated input dropped: {pending!r}", err=True)
    if exit_code is not None:
        typer.echo(f"pipeloop: worker exited (code={exit_code})", err=True)


# Shared options
_COMMAND = typer.Option(None, "--command", "-C", help="Worker command line (default: cat -).")
_INTERVAL = typer.Option(None, "--interval", "-i", help="Seconds between iterations.")
_COUNT = typer.Option(
    None, "--count", "-n", help="Send this many messages, then close the outbound pipe."
)
_SPAWN = typer.Option(None, "--spawn", "-s", help="Spawn method: fork or subprocess.")
_VERBOSE = typer.Option(False, "--verbose", "-v", help="Enable debug logging.")
_CONFIG = typer.Option(None, "--config", "-c", help="Config file path.")


@app.command()
def run(
    command: str | None = _COMMAND,
    interval: float | None = _INTERVAL,
    count: int | None = _COUNT,
    spawn: str | None = _SPAWN,
    verbose: bool = _VERBOSE,
    config_file: str | None = _CONFIG,
) -> None:
    """Run the exchange with plain TX/RX lines on stdout."""
    setup_logging(verbose)

    config = _load_config(config_file, command, interval, count, spawn)
    if config is None:
        return

    try:
        pipeline = _build_pipeline(config)
    except ChannelError as e:
        typer.echo(f"pipeloop: setup failed: {e.describe()}", err=True)
        return

    result: ExchangeResult | None = None
    try:
        result = asyncio.run(_run_exchange(pipeline, config))
    except KeyboardInterrupt:
        pass
    finally:
        exit_code = pipeline.close(config.worker.terminate_grace)

    _report(result, exit_code)


async def _run_exchange(
    pipeline: ExchangePipeline, config: PipeloopConfig
) -> ExchangeResult:
    """Run the exchange loop with plain CLI output."""
    wire = Wire()
    # Subscribe before the loop starts; the first send happens before the
    # consumer task gets to run.
    queue = wire.subscribe()

    async def _consume_wire() -> None:
        while True:
            event = await queue.get()
            if event is None:
                break
            d = event.data
            if event.type == EventType.LINE_SENT:
                print(f"TX: {d['text']}", end="", flush=True)
            elif event.type == EventType.LINE_RECEIVED:
                print(f"RX: {d['text']}", end="", flush=True)
        wire.unsubscribe(queue)

    consumer_task = asyncio.create_task(_consume_wire())

    callbacks = ExchangeCallbacks.for_wire(wire)
    exchange = config.exchange
    try:
        result = await exchange_loop(
            pipeline.controller,
            interval=exchange.interval,
            max_messages=exchange.max_messages,
            template=exchange.template,
            on_sent=callbacks.on_sent,
            on_received=callbacks.on_received,
            on_failed=callbacks.on_failed,
        )
        code = await asyncio.to_thread(pipeline.close, config.worker.terminate_grace)
        wire.send_worker_exit(pipeline.worker.pid, code)
    finally:
        wire.close()
        await consumer_task

    return result


@app.command()
def tui(
    command: str | None = _COMMAND,
    interval: float | None = _INTERVAL,
    count: int | None = _COUNT,
    spawn: str | None = _SPAWN,
    verbose: bool = _VERBOSE,
    config_file: str | None = _CONFIG,
) -> None:
    """Run the exchange in a two-pane terminal UI."""
    # No stderr handler here: it would corrupt the Textual display. The app
    # installs its own handler on mount that routes logs to the status bar.
    logging.getLogger().setLevel(logging.DEBUG if verbose else logging.INFO)
    for h in logging.getLogger().handlers[:]:
        logging.getLogger().removeHandler(h)

    config = _load_config(config_file, command, interval, count, spawn)
    if config is None:
        return

    try:
        pipeline = _build_pipeline(config)
    except ChannelError as e:
        typer.echo(f"pipeloop: setup failed: {e.describe()}", err=True)
        return

    from pipeloop.tui.app import PipeloopApp

    wire = Wire()
    tui_app = PipeloopApp(wire=wire, pipeline=pipeline, config=config)

    try:
        result = tui_app.run()
    finally:
        exit_code = pipeline.close(config.worker.terminate_grace)

    _report(result, exit_code, tui_app.error)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
