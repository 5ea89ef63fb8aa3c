"""Data structures for SSH command scheduling."""
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from .constants import SshStatus
from .errors import ProtocolError

_CHANNEL_TOKEN = re.compile(r"^(\d+)\.(\d+)$")


class CommandStatus(Enum):
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    CHANNEL_ERROR = "channel_error"


class ChannelState(Enum):
    NEW = "new"
    OPENED = "opened"
    EXECUTING = "executing"
    EOF = "eof"
    CLOSED = "closed"


class Stream(Enum):
    STDOUT = 0
    STDERR = 1


@dataclass(frozen=True, order=True)
class ChannelId:
    """Identifies one channel of one session."""
    session_id: int
    channel_id: int

    def __str__(self) -> str:
        return f"{self.session_id}.{self.channel_id}"

    @classmethod
    def parse(cls, token: str) -> "ChannelId":
        """Parse a ``"<session-id>.<channel-id>"`` token."""
        match = _CHANNEL_TOKEN.match(token.strip()) if isinstance(token, str) else None
        if not match:
            raise ProtocolError(f"malformed channel identifier: {token!r}")
        return cls(int(match.group(1)), int(match.group(2)))


@dataclass
class CommandResult:
    command: str
    status: CommandStatus
    code: SshStatus
    stdout: str
    stderr: str
    userdata: Any
    exit_code: Optional[int] = None
    error: Optional[Exception] = None
    session: Any = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def ok(self) -> bool:
        return self.status == CommandStatus.COMPLETED

    @property
    def error_message(self) -> Optional[str]:
        return str(self.error) if self.error else None


@dataclass
class RemoteCommand:
    command: str
    callback: Callable[[CommandResult], Any]
    userdata: Any = None
    timeout: Optional[float] = None  # Overall limit, seconds
    timeout_nodata: Optional[float] = None  # Limit without any output, seconds


@dataclass
class Slot:
    """Scheduler bookkeeping for one command in flight."""
    channel: Any
    command: RemoteCommand
    timeout: float
    timeout_nodata: float
    timeout_counter: float = 0.0
    timeout_nodata_counter: float = 0.0
    stdout: bytearray = field(default_factory=bytearray)
    stderr: bytearray = field(default_factory=bytearray)
    received: bool = False
    start_time: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        self.timeout_counter = self.timeout
        self.timeout_nodata_counter = self.timeout_nodata
