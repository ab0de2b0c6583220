"""Exchange loop — paced send/poll cycle over a controller."""

from pipeloop.exchange.loop import (
    DEFAULT_TEMPLATE,
    ExchangeOutcome,
    ExchangeResult,
    exchange_loop,
    format_message,
)

__all__ = [
    "DEFAULT_TEMPLATE",
    "ExchangeOutcome",
    "ExchangeResult",
    "exchange_loop",
    "format_message",
]
