"""Exceptions raised by the ping engine."""

from typing import Optional


class PingError(Exception):
    """Base class for all rawping errors."""


class ConfigurationError(PingError, ValueError):
    """Invalid session parameters, detected before any socket is opened."""


class ResolutionError(PingError):
    """The target host could not be resolved."""

    def __init__(self, host: str):
        super().__init__(f"Cannot resolve hostname: {host}")
        self.host = host


class TransportError(PingError):
    """A raw socket operation failed."""

    def __init__(self, message: str, errno: Optional[int] = None):
        super().__init__(message)
        self.errno = errno


class TransportTimeout(TransportError):
    """A send or receive did not complete within the socket timeout."""
