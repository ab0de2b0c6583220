"""Configuration — Pydantic models for pipeloop settings."""

from __future__ import annotations

import json
import os
import shlex
from typing import Any, Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class WorkerConfig(BaseModel):
    """The filter program run as the worker.

    Any program that copies stdin to stdout line by line works; it is
    never told about the pipes.
    """

    command: list[str] = Field(
        default_factory=lambda: ["cat", "-"],
        min_length=1,
        description="Program and arguments, resolved through PATH",
    )
    spawn: Literal["fork", "subprocess"] = Field(
        default="fork",
        description=(
            "'fork' rewires descriptors by hand in the forked child before exec; "
            "'subprocess' lets subprocess.Popen do the same redirection."
        ),
    )
    terminate_grace: float = Field(
        default=2.0, ge=0, description="Seconds between SIGTERM and SIGKILL on shutdown"
    )


class ExchangeConfig(BaseModel):
    """Outer message loop settings."""

    interval: float = Field(default=0.25, ge=0, description="Seconds between iterations")
    template: str = Field(
        default="Line: {n}", description="Message template, {n} is the counter"
    )
    max_messages: int | None = Field(
        default=None,
        ge=0,
        description="Close the outbound pipe after this many messages (None: run until interrupted)",
    )


class PipeloopConfig(BaseModel):
    """Top-level pipeloop configuration."""

    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)

    @classmethod
    def load(cls, config_path: str | None = None) -> PipeloopConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults. Env values are left as
        strings for pydantic to coerce, so a malformed one raises
        ValidationError naming the field.

        Env vars:
            PIPELOOP_COMMAND       - Worker command line (shell-split)
            PIPELOOP_SPAWN         - Spawn method: fork or subprocess
            PIPELOOP_INTERVAL      - Seconds between iterations
            PIPELOOP_MAX_MESSAGES  - Stop sending after this many messages
        """
        load_dotenv(override=True)

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        worker = config_data.get("worker", {})
        exchange = config_data.get("exchange", {})

        env_command = os.environ.get("PIPELOOP_COMMAND")
        if env_command:
            worker["command"] = shlex.split(env_command)

        env_spawn = os.environ.get("PIPELOOP_SPAWN")
        if env_spawn:
            worker["spawn"] = env_spawn.lower()

        env_interval = os.environ.get("PIPELOOP_INTERVAL")
        if env_interval:
            exchange["interval"] = env_interval

        env_max = os.environ.get("PIPELOOP_MAX_MESSAGES")
        if env_max:
            exchange["max_messages"] = env_max

        if worker:
            config_data["worker"] = worker
        if exchange:
            config_data["exchange"] = exchange

        return cls.model_validate(config_data)
