"""pipeloop — duplex line exchange with a child process over anonymous pipes."""

__version__ = "0.1.0"
