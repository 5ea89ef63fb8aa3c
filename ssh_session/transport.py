"""Paramiko-backed transport used by Session.

Everything that touches the wire goes through ParamikoTransport: TCP connect
and SSH handshake, server key retrieval, authentication, channel creation and
the readiness wait across channels. Session and the scheduler only see this
surface, which keeps them testable with a fake transport.
"""
import logging
import select
import socket
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence

import paramiko

from .constants import AuthResult
from .datastructures import ChannelId
from .errors import ProtocolError, TransportError


class ParamikoTransport:
    """Owns one socket and the paramiko.Transport running over it."""

    def __init__(self):
        self.logger = logging.getLogger('ssh_session.transport')
        self._sock: Optional[socket.socket] = None
        self._transport: Optional[paramiko.Transport] = None
        self._last_error: str = ""

    @property
    def last_error(self) -> str:
        return self._last_error

    def _fail(self, message: str, exc_type=TransportError):
        self._last_error = message
        return exc_type(message)

    def connect(self, host: str, port: int, timeout: float) -> None:
        logger = self.logger.getChild('connect')
        logger.debug(f"[CONN_DEBUG] Attempting connection to {host}:{port} (timeout={timeout})")
        # Reconnecting replaces the previous transport
        self.disconnect()
        try:
            sock = socket.create_connection((host, port), timeout=timeout)
        except OSError as e:
            raise self._fail(f"Unable to connect to {host}:{port} - {e}")

        transport = paramiko.Transport(sock)
        transport.banner_timeout = timeout
        transport.auth_timeout = timeout
        try:
            transport.start_client(timeout=timeout)
        except (paramiko.SSHException, EOFError, OSError) as e:
            logger.error(f"[CONN_DEBUG] Handshake failed with {host}:{port}: {type(e).__name__}: {e}")
            transport.close()
            sock.close()
            raise self._fail(f"SSH handshake with {host}:{port} failed - {e}")

        self._sock = sock
        self._transport = transport
        logger.debug(f"[CONN_DEBUG] Connection successful to {host}:{port}")

    def is_connected(self) -> bool:
        return self._transport is not None and self._transport.is_active()

    def disconnect(self) -> None:
        if self._transport is not None:
            try:
                self._transport.close()
            except Exception as e:
                self.logger.warning(f"Error closing transport: {e}")
            self._transport = None
        if self._sock is not None:
            try:
                self._sock.close()
            except OSError as e:
                self.logger.warning(f"Error closing socket: {e}")
            self._sock = None

    def _require_transport(self) -> paramiko.Transport:
        if self._transport is None or not self._transport.is_active():
            raise self._fail("Not connected")
        return self._transport

    def get_banner(self) -> Optional[str]:
        if self._transport is None:
            return None
        banner = self._transport.get_banner()
        if banner is None:
            return None
        return banner.decode('utf-8', errors='replace') if isinstance(banner, bytes) else banner

    @contextmanager
    def server_public_key(self) -> Iterator[paramiko.PKey]:
        """Yield the server host key; the reference is dropped on exit."""
        key = self._require_transport().get_remote_server_key()
        if key is None:
            raise self._fail("server did not present a host key")
        try:
            yield key
        finally:
            self.logger.debug(f"Released server key {key.get_name()}")
            del key

    # Authentication -------------------------------------------------------

    def _auth(self, method: str, call) -> AuthResult:
        logger = self.logger.getChild('auth')
        try:
            remaining = call()
        except paramiko.AuthenticationException as e:
            self._last_error = f"{method} authentication denied: {e}"
            logger.info(self._last_error)
            return AuthResult.DENIED
        except (paramiko.SSHException, OSError, EOFError) as e:
            self._last_error = f"{method} authentication error: {e}"
            logger.error(self._last_error)
            return AuthResult.ERROR
        if remaining:
            logger.info(f"{method} accepted, further methods required: {remaining}")
            return AuthResult.PARTIAL
        return AuthResult.SUCCESS

    def auth_password(self, username: str, password: str) -> AuthResult:
        try:
            transport = self._require_transport()
        except TransportError:
            return AuthResult.ERROR
        return self._auth('password', lambda: transport.auth_password(username, password))

    def auth_publickey(self, username: str, key: paramiko.PKey) -> AuthResult:
        try:
            transport = self._require_transport()
        except TransportError:
            return AuthResult.ERROR
        return self._auth('publickey', lambda: transport.auth_publickey(username, key))

    def auth_none(self, username: str) -> AuthResult:
        try:
            transport = self._require_transport()
        except TransportError:
            return AuthResult.ERROR
        return self._auth('none', lambda: transport.auth_none(username))

    def agent_keys(self) -> List[paramiko.PKey]:
        try:
            return list(paramiko.Agent().get_keys())
        except paramiko.SSHException as e:
            self.logger.debug(f"SSH agent unavailable: {e}")
            return []

    # Channels -------------------------------------------------------------

    def open_session(self, timeout: Optional[float] = None) -> paramiko.Channel:
        transport = self._require_transport()
        try:
            return transport.open_session(timeout=timeout)
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise self._fail(f"channel open failed: {e}")

    def select_read(self, channels: Sequence, wait: float) -> List[ChannelId]:
        """Wait up to ``wait`` seconds for any channel to have data or EOF.

        Returns the ids of ready channels in the order given. A paramiko
        channel's file descriptor is signalled for stdout data, stderr data
        and EOF alike.
        """
        ready = [channel.id for channel in channels if channel.has_pending()]
        if ready:
            return ready
        try:
            select.select([channel.raw for channel in channels], [], [], wait)
        except (OSError, ValueError) as e:
            raise self._fail(f"select on channels failed: {e}", ProtocolError)
        return [channel.id for channel in channels if channel.has_pending()]
