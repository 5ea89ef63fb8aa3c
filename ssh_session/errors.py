"""Exception taxonomy and error-handling policy for SSH sessions."""
from enum import Enum


class ErrorPolicy(Enum):
    PROPAGATE = "propagate"  # Record the error, then raise it
    LOG = "log"              # Record the error and log it at ERROR
    SILENT = "silent"        # Record the error only


class SessionError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(SessionError):
    """Invalid option name or value."""


class TransportError(SessionError):
    """Connect or authentication failure reported by the transport."""


class TrustError(SessionError):
    """Server identity rejected or known-hosts store could not be updated."""


class ChannelError(SessionError):
    """Channel open, exec request or read failure."""


class CommandTimeoutError(SessionError, TimeoutError):
    """A command exhausted its overall or no-data time limit."""

    def __init__(self, message: str, reason: str = "overall"):
        super().__init__(message)
        self.reason = reason


class ProtocolError(SessionError):
    """Unexpected data from the transport layer."""
