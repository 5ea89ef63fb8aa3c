"""A single exec channel on a shared SSH transport."""
import logging
import socket
from typing import Any, Optional

import paramiko

from .datastructures import ChannelId, ChannelState, Stream
from .errors import ChannelError


class Channel:
    """Wraps one paramiko channel carrying one remote command.

    State moves NEW -> OPENED -> EXECUTING -> EOF -> CLOSED. ``close()`` is
    allowed from any state and is idempotent.
    """

    # Upper bound on waiting for exit-status after the remote sent EOF
    EXIT_STATUS_WAIT = 1.0

    def __init__(self, session_id: int):
        self.logger = logging.getLogger('ssh_session.channel')
        self.session_id = session_id
        self.state = ChannelState.NEW
        self.raw: Any = None
        self._id: Optional[ChannelId] = None

    def __repr__(self) -> str:
        return f"Channel(id={self._id}, state={self.state.value})"

    @property
    def id(self) -> Optional[ChannelId]:
        return self._id

    def _expect(self, *states: ChannelState) -> None:
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise ChannelError(f"channel {self._id} is {self.state.value}, expected {allowed}")

    def open(self, transport, timeout: Optional[float] = None) -> ChannelId:
        self._expect(ChannelState.NEW)
        self.raw = transport.open_session(timeout=timeout)
        self._id = ChannelId(self.session_id, self.raw.get_id())
        self.state = ChannelState.OPENED
        self.logger.debug(f"[CHAN_OPEN] {self._id}")
        return self._id

    def request_exec(self, command: str) -> None:
        self._expect(ChannelState.OPENED)
        try:
            self.raw.exec_command(command)
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise ChannelError(f"exec request on {self._id} failed: {e}")
        self.state = ChannelState.EXECUTING
        self.logger.debug(f"[CHAN_EXEC] {self._id}: {command[:100]}")

    def read(self, stream: Stream, size: int) -> bytes:
        """Read at most ``size`` buffered bytes; returns b"" if none are ready."""
        self._expect(ChannelState.EXECUTING, ChannelState.EOF)
        try:
            if stream == Stream.STDOUT:
                if not self.raw.recv_ready():
                    return b""
                return self.raw.recv(size)
            if not self.raw.recv_stderr_ready():
                return b""
            return self.raw.recv_stderr(size)
        except socket.timeout:
            return b""
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise ChannelError(f"read on {self._id} failed: {e}")

    def has_pending(self) -> bool:
        """True when a read or an end-of-stream check would make progress."""
        raw = self.raw
        if raw is None:
            return False
        return bool(raw.recv_ready() or raw.recv_stderr_ready() or raw.eof_received or raw.closed)

    def is_eof(self) -> bool:
        """True once the remote side finished and all output was read."""
        if self.state == ChannelState.EOF:
            return True
        if self.state != ChannelState.EXECUTING:
            return False
        raw = self.raw
        if (raw.eof_received or raw.closed) and not raw.recv_ready() and not raw.recv_stderr_ready():
            self.state = ChannelState.EOF
            self.logger.debug(f"[CHAN_EOF] {self._id}")
            return True
        return False

    def exit_status(self, wait: Optional[float] = None) -> int:
        """Exit status of the remote command, -1 if the server never sent one."""
        self._expect(ChannelState.EOF)
        wait = self.EXIT_STATUS_WAIT if wait is None else wait
        if not self.raw.exit_status_ready() and not self.raw.status_event.wait(wait):
            self.logger.warning(f"No exit status received on {self._id}")
            return -1
        return self.raw.recv_exit_status()

    def close(self) -> None:
        if self.state == ChannelState.CLOSED:
            return
        if self.raw is not None:
            try:
                if not self.raw.closed:
                    self.raw.shutdown_write()
            except Exception as e:
                self.logger.warning(f"Error sending EOF on {self._id}: {e}")
            try:
                self.raw.close()
            except Exception as e:
                self.logger.warning(f"Error closing channel {self._id}: {e}")
        self.state = ChannelState.CLOSED
        self.logger.debug(f"[CHAN_CLOSE] {self._id}")
