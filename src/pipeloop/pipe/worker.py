"""Worker process — the filter program wired onto the channel.

The worker never learns about the pipes. It reads its standard input and
writes its standard output; the bootstrap below makes those two streams be
``outbound.read_end`` and ``inbound.write_end``.
"""

from __future__ import annotations

import enum
import errno
import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass, field
from typing import Literal, NoReturn

from pipeloop.pipe.channel import DuplexChannel
from pipeloop.pipe.errors import ProcessDuplicationFailed, ProcessReplacementFailed

logger = logging.getLogger(__name__)

SpawnMethod = Literal["fork", "subprocess"]

EXEC_FAILED_STATUS = 127

_EXEC_ERRNOS = {errno.ENOENT, errno.EACCES, errno.ENOEXEC, errno.ENOTDIR, errno.EPERM}


class WorkerBootstrap:
    """Runs inside the forked child. Never returns.

    Order matters: stdin/stdout are rewired first, then every end the
    worker does not own is closed, then the image is replaced. A leaked
    ``inbound.write_end`` would keep the inbound pipe open after the filter
    exits and the controller would never see end-of-stream.
    """

    def __init__(self, channel: DuplexChannel, command: list[str]) -> None:
        self.channel = channel
        self.command = command

    def run(self) -> NoReturn:
        try:
            self._redirect()
            self._exec()
        except BaseException as e:  # The child must never return into controller code
            self._die(f"pipeloop worker: cannot exec {self.command[0]!r}: {e}\n")
        self._die("pipeloop worker: exec returned\n")

    def _redirect(self) -> None:
        out, inb = self.channel.outbound, self.channel.inbound

        os.dup2(out.read_end.fd, 0)
        if out.read_end.fd != 0:
            os.close(out.read_end.fd)

        os.dup2(inb.write_end.fd, 1)
        if inb.write_end.fd != 1:
            os.close(inb.write_end.fd)

        # Controller-owned ends. Skip one that already got replaced by a dup2.
        for fd in (out.write_end.fd, inb.read_end.fd):
            if fd not in (0, 1):
                os.close(fd)

    def _exec(self) -> None:
        # The interpreter ignores SIGPIPE; the filter expects the default.
        signal.signal(signal.SIGPIPE, signal.SIG_DFL)
        os.execvp(self.command[0], self.command)

    @staticmethod
    def _die(message: str) -> NoReturn:
        # No logging here: its locks may have been held by another thread at fork time.
        try:
            os.write(2, message.encode("utf-8", errors="replace"))
        finally:
            os._exit(EXEC_FAILED_STATUS)


class WorkerStatus(enum.Enum):
    """Lifecycle states for a worker process."""

    RUNNING = "running"
    EXITED = "exited"  # Process exited on its own
    KILLED = "killed"  # Terminated by us


@dataclass
class WorkerProcess:
    """Handle on the spawned worker: reaping, exit code and termination."""

    pid: int
    command: list[str] = field(default_factory=list)
    _proc: subprocess.Popen | None = field(default=None, repr=False)
    _status: WorkerStatus = field(default=WorkerStatus.RUNNING, init=False)
    _returncode: int | None = field(default=None, init=False)

    def poll(self) -> int | None:
        """Reap the worker if it has exited. Returns its exit code or None."""
        if self._returncode is not None:
            return self._returncode
        if self._proc is not None:
            code = self._proc.poll()
        else:
            try:
                pid, status = os.waitpid(self.pid, os.WNOHANG)
            except ChildProcessError:
                # Reaped elsewhere; the exit code is lost.
                code = -1
            else:
                code = os.waitstatus_to_exitcode(status) if pid else None
        if code is not None:
            self._returncode = code
            if self._status == WorkerStatus.RUNNING:
                self._status = WorkerStatus.EXITED
            logger.info("Worker %d exited (code=%s)", self.pid, code)
        return code

    def wait(self, timeout: float | None = None) -> int | None:
        """Wait for the worker to exit. Returns exit code or None on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            code = self.poll()
            if code is not None:
                return code
            if deadline is not None and time.monotonic() >= deadline:
                return None
            time.sleep(0.02)

    def terminate(self, grace: float = 2.0) -> int | None:
        """SIGTERM the worker, escalating to SIGKILL after ``grace`` seconds.

        The worker is always reaped: after SIGKILL this blocks until it is gone.
        """
        if self.poll() is not None:
            return self._returncode
        self._status = WorkerStatus.KILLED
        try:
            os.kill(self.pid, signal.SIGTERM)
        except ProcessLookupError:
            return self.poll()
        code = self.wait(timeout=grace)
        if code is not None:
            return code
        logger.warning("Worker %d still running after SIGTERM, sending SIGKILL", self.pid)
        try:
            os.kill(self.pid, signal.SIGKILL)
        except ProcessLookupError:
            return self.poll()
        # SIGKILL cannot be caught or ignored.
        return self.wait()

    @property
    def alive(self) -> bool:
        return self.poll() is None

    @property
    def status(self) -> WorkerStatus:
        self.poll()
        return self._status

    @property
    def returncode(self) -> int | None:
        return self._returncode


def spawn_worker(
    channel: DuplexChannel,
    command: list[str],
    method: SpawnMethod = "fork",
) -> WorkerProcess:
    """Start the filter program on the channel's worker-side ends.

    The controller-side ends are left open for ``ControllerLoop.initialize``,
    which also closes the two worker-side ends in this process.

    Raises:
        ProcessDuplicationFailed: fork() failed.
        ProcessReplacementFailed: The program could not be executed
            (``subprocess`` method only; with ``fork`` the child exits with
            status 127 and the controller sees end-of-stream).
    """
    if not command:
        raise ValueError("Worker command must not be empty")
    if method == "fork":
        worker = _spawn_fork(channel, command)
    elif method == "subprocess":
        worker = _spawn_subprocess(channel, command)
    else:
        raise ValueError(f"Unknown spawn method: {method!r}")
    logger.info("Worker started: pid=%d method=%s cmd=%s", worker.pid, method, " ".join(command))
    return worker


def _spawn_fork(channel: DuplexChannel, command: list[str]) -> WorkerProcess:
    try:
        pid = os.fork()
    except OSError as e:
        raise ProcessDuplicationFailed(f"fork failed: {e.strerror}", errno=e.errno) from e
    if pid == 0:
        WorkerBootstrap(channel, command).run()
    return WorkerProcess(pid=pid, command=list(command))


def _spawn_subprocess(channel: DuplexChannel, command: list[str]) -> WorkerProcess:
    try:
        proc = subprocess.Popen(
            command,
            stdin=channel.outbound.read_end.fd,
            stdout=channel.inbound.write_end.fd,
            close_fds=True,  # Only stdin/stdout/stderr survive in the child
        )
    except OSError as e:
        if e.errno in _EXEC_ERRNOS:
            raise ProcessReplacementFailed(
                f"Cannot execute {command[0]!r}: {e.strerror}", errno=e.errno
            ) from e
        raise ProcessDuplicationFailed(
            f"Cannot start {command[0]!r}: {e.strerror}", errno=e.errno
        ) from e
    return WorkerProcess(pid=proc.pid, command=list(command), _proc=proc)
