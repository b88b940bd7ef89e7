from __future__ import annotations


class PsuError(Exception):
    """Base error for everything raised by psubench."""


class TransportError(PsuError):
    """Open/write/read failure on the byte stream (refused, closed by peer, OS error)."""


class NotConnectedError(PsuError):
    pass


class ConnectionFailedError(PsuError):
    """Identity check failed during connect(); the transport is already closed."""


class LimitExceededError(PsuError, ValueError):
    pass


class InvalidArgumentError(PsuError, ValueError):
    pass


class ParseError(PsuError, ValueError):
    pass


class ProtocolError(PsuError):
    """A query came back empty: the device stayed silent or the read timed out."""
