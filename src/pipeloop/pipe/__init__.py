"""Duplex pipe channel — a controller talking to a pipe-unaware worker.

The controller allocates two anonymous pipes, spawns a filter program whose
stdin/stdout are silently redirected onto them, and exchanges
newline-delimited lines with it using non-blocking reads.
"""

from pipeloop.pipe.assembler import LineAssembler
from pipeloop.pipe.channel import DuplexChannel, Pipe, PipeEnd
from pipeloop.pipe.controller import (
    NO_LINE_YET,
    ControllerLoop,
    Line,
    NoLineYet,
    PollError,
    PollResult,
)
from pipeloop.pipe.errors import (
    ChannelClosed,
    ChannelError,
    ChannelReadFailed,
    ChannelWriteFailed,
    ErrorKind,
    PipeloopError,
    ProcessDuplicationFailed,
    ProcessReplacementFailed,
    ResourceExhausted,
)
from pipeloop.pipe.worker import WorkerBootstrap, WorkerProcess, WorkerStatus, spawn_worker

__all__ = [
    "ChannelClosed",
    "ChannelError",
    "ChannelReadFailed",
    "ChannelWriteFailed",
    "ControllerLoop",
    "DuplexChannel",
    "ErrorKind",
    "Line",
    "LineAssembler",
    "NO_LINE_YET",
    "NoLineYet",
    "Pipe",
    "PipeEnd",
    "PipeloopError",
    "PollError",
    "PollResult",
    "ProcessDuplicationFailed",
    "ProcessReplacementFailed",
    "ResourceExhausted",
    "WorkerBootstrap",
    "WorkerProcess",
    "WorkerStatus",
    "spawn_worker",
]
