"""Parallel remote command execution over a single SSH connection."""
from .command_executor import CommandScheduler
from .constants import AuthResult, HostKeyState, LogVerbosity, PublicKeyHash, SshStatus
from .datastructures import ChannelId, CommandResult, CommandStatus, RemoteCommand
from .errors import (
    ChannelError, CommandTimeoutError, ConfigError, ErrorPolicy, ProtocolError,
    SessionError, TransportError, TrustError,
)
from .session import Session

__version__ = "0.1.0"

__all__ = [
    "Session",
    "CommandScheduler",
    "RemoteCommand",
    "CommandResult",
    "CommandStatus",
    "ChannelId",
    "ErrorPolicy",
    "SshStatus",
    "AuthResult",
    "HostKeyState",
    "PublicKeyHash",
    "LogVerbosity",
    "SessionError",
    "ConfigError",
    "TransportError",
    "TrustError",
    "ChannelError",
    "CommandTimeoutError",
    "ProtocolError",
]
