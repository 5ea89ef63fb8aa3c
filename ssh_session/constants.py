"""Status codes and enumerations shared across the package."""
from enum import Enum, IntEnum
import logging


class SshStatus(IntEnum):
    OK = 0
    ERROR = -1
    AGAIN = -2  # Returned for commands stopped by their own timers
    EOF = -127


class AuthResult(IntEnum):
    ERROR = -1
    SUCCESS = 0
    DENIED = 1
    PARTIAL = 2
    INFO = 3
    AGAIN = 4


class HostKeyState(Enum):
    UNKNOWN = "unknown"
    KNOWN_OK = "known_ok"
    CHANGED = "changed"
    FOUND_OTHER = "found_other"
    NOT_FOUND = "not_found"
    LOOKUP_ERROR = "lookup_error"


class PublicKeyHash(IntEnum):
    SHA1 = 0
    MD5 = 1
    SHA256 = 2


class LogVerbosity(IntEnum):
    NOLOG = 0
    WARNING = 1
    PROTOCOL = 2
    PACKET = 3
    FUNCTIONS = 4


# Python logging level applied to the paramiko logger for each verbosity
LOG_VERBOSITY_LEVELS = {
    LogVerbosity.NOLOG: logging.CRITICAL + 10,
    LogVerbosity.WARNING: logging.WARNING,
    LogVerbosity.PROTOCOL: logging.INFO,
    LogVerbosity.PACKET: logging.DEBUG,
    LogVerbosity.FUNCTIONS: logging.DEBUG,
}

DEFAULT_PORT = 22
DEFAULT_CONNECT_TIMEOUT = 10
DEFAULT_PARALLEL = 4
DEFAULT_COMMAND_TIMEOUT = 300
DEFAULT_NODATA_TIMEOUT = 120
