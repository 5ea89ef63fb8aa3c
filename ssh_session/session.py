"""SSH session: one authenticated connection shared by many exec channels."""
import itertools
import logging
from typing import Any, Dict, Iterable, Optional, Union

from .auth import candidate_identity_files, load_private_key
from .channel import Channel
from .command_executor import CommandScheduler
from .constants import (
    AuthResult, DEFAULT_COMMAND_TIMEOUT, DEFAULT_NODATA_TIMEOUT, DEFAULT_PARALLEL,
    HostKeyState, PublicKeyHash, SshStatus,
)
from .datastructures import ChannelId, RemoteCommand
from .errors import ChannelError, ConfigError, ErrorPolicy, SessionError, TransportError
from .known_hosts import TrustVerifier
from .options import ResolvedTarget, SessionOptions, apply_option, resolve_target
from .transport import ParamikoTransport

_session_ids = itertools.count(1)


class Session:
    """Owns one SSH transport, its options, its error sink and its channels.

    Usage:
        with Session(error_policy=ErrorPolicy.LOG) as session:
            session.options(Host="10.0.0.5", User="admin")
            if session.connect() != SshStatus.OK:
                print(session.error())
            session.auth_publickey_auto()
            session.execute([RemoteCommand("uptime", callback=print)], parallel=4)

    A Session must only be used from one thread.
    """

    def __init__(self, error_policy: ErrorPolicy = ErrorPolicy.SILENT, transport=None):
        self.session_id = next(_session_ids)
        self.logger = logging.getLogger('ssh_session').getChild(f'session.{self.session_id}')
        self._options = SessionOptions(error_policy=ErrorPolicy(error_policy))
        self._transport = transport if transport is not None else ParamikoTransport()
        self._target: Optional[ResolvedTarget] = None
        self._channels: Dict[ChannelId, Channel] = {}
        self._slots: Optional[Dict[ChannelId, Any]] = None
        self.last_error: Optional[str] = None
        self.last_exception: Optional[SessionError] = None
        self.host_key_state = HostKeyState.UNKNOWN
        self.host_key_fingerprint: Optional[str] = None
        self.logger.debug("Session created")

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Session(id={self.session_id}, host={self._options.host!r}, channels={len(self._channels)})"

    # Errors -----------------------------------------------------------------

    @property
    def error_policy(self) -> ErrorPolicy:
        return self._options.error_policy

    @property
    def settings(self) -> SessionOptions:
        return self._options

    def _set_error(self, exc: SessionError) -> None:
        """Record ``exc`` in the error sink, then apply the error policy."""
        self.last_error = str(exc)
        self.last_exception = exc
        policy = self._options.error_policy
        if policy == ErrorPolicy.PROPAGATE:
            raise exc
        if policy == ErrorPolicy.LOG:
            self.logger.error(self.last_error)
        else:
            self.logger.debug(f"[ERROR] {self.last_error}")

    def error(self, from_transport: bool = False) -> Optional[str]:
        """Last error message; with ``from_transport`` refresh it from the transport first."""
        if from_transport and self._transport.last_error:
            self.last_error = self._transport.last_error
        return self.last_error

    # Options ----------------------------------------------------------------

    def options(self, **options: Any) -> bool:
        """Apply named options, e.g. ``options(Host="h", Port=2222)``.

        Stops at the first invalid option and returns False.
        """
        logger = self.logger.getChild('options')
        for key, value in options.items():
            try:
                apply_option(self._options, key, value)
            except ConfigError as e:
                self._set_error(e)
                return False
            logger.debug(f"Option {key} set")
        self._target = None
        return True

    # Connection -------------------------------------------------------------

    def connect(self, skip_key_problem: bool = True, connect_only: bool = False) -> SshStatus:
        """Open the transport and, unless ``connect_only``, verify the host key."""
        logger = self.logger.getChild('connect')
        try:
            self._target = resolve_target(self._options)
        except ConfigError as e:
            self._set_error(e)
            return SshStatus.ERROR

        target = self._target
        logger.info(f"Connecting to {target.user}@{target.host}:{target.port}")
        try:
            self._transport.connect(target.host, target.port, self._options.timeout)
        except TransportError as e:
            self._set_error(TransportError(f"connect failed: {e}"))
            return SshStatus.ERROR

        if connect_only:
            logger.info("Connected (host key not checked)")
            return SshStatus.OK

        status = self.verify_knownhost(skip_key_problem=skip_key_problem)
        if status == SshStatus.OK:
            logger.info(f"Connected to {target.host}:{target.port} ({self.host_key_state.value})")
        return status

    def verify_knownhost(self, skip_key_problem: bool = False,
                         hash_type: PublicKeyHash = PublicKeyHash.SHA1) -> SshStatus:
        if self._target is None:
            try:
                self._target = resolve_target(self._options)
            except ConfigError as e:
                self._set_error(e)
                return SshStatus.ERROR

        verifier = TrustVerifier(
            self._transport,
            self._options.known_hosts_path,
            self._target.host,
            self._target.port,
            strict=self._options.strict_host_key_check,
            hash_type=hash_type,
        )
        try:
            verifier.verify(skip_key_problem=skip_key_problem)
        except SessionError as e:
            self.host_key_state = verifier.state
            self.host_key_fingerprint = verifier.fingerprint
            self._set_error(e)
            return SshStatus.ERROR
        self.host_key_state = verifier.state
        self.host_key_fingerprint = verifier.fingerprint
        return SshStatus.OK

    def is_connected(self) -> bool:
        return self._transport.is_connected()

    def disconnect(self) -> None:
        if self._transport.is_connected():
            self.logger.info("Disconnecting")
        self._transport.disconnect()

    def get_issue_banner(self) -> Optional[str]:
        return self._transport.get_banner()

    def close(self) -> None:
        """Close every open channel, then the connection."""
        for channel_id in list(self._channels):
            self.close_channel(channel_id)
        self.disconnect()

    # Authentication ---------------------------------------------------------

    def _auth_result(self, result: AuthResult) -> AuthResult:
        if result == AuthResult.ERROR:
            self._set_error(TransportError(f"authentication failed: {self._transport.last_error}"))
        return result

    def _username(self) -> Optional[str]:
        if self._target is None:
            try:
                self._target = resolve_target(self._options)
            except ConfigError as e:
                self._set_error(e)
                return None
        return self._target.user

    def auth_password(self, password: str) -> AuthResult:
        username = self._username()
        if username is None:
            return AuthResult.ERROR
        return self._auth_result(self._transport.auth_password(username, password))

    def auth_none(self) -> AuthResult:
        username = self._username()
        if username is None:
            return AuthResult.ERROR
        return self._auth_result(self._transport.auth_none(username))

    def auth_publickey_auto(self, passphrase: Optional[str] = None) -> AuthResult:
        """Try agent keys, then the configured identity, then default key files."""
        logger = self.logger.getChild('auth')
        username = self._username()
        if username is None:
            return AuthResult.ERROR
        result = AuthResult.DENIED

        for key in self._transport.agent_keys():
            result = self._transport.auth_publickey(username, key)
            logger.debug(f"Agent key {key.get_name()}: {result.name}")
            if result != AuthResult.DENIED:
                return self._auth_result(result)

        identity = self._target.identity if self._target else self._options.identity
        for path in candidate_identity_files(self._options.ssh_dir, identity):
            key = load_private_key(path, passphrase)
            if key is None:
                continue
            result = self._transport.auth_publickey(username, key)
            logger.debug(f"Key {path}: {result.name}")
            if result != AuthResult.DENIED:
                return self._auth_result(result)

        if result == AuthResult.DENIED:
            logger.info("No public key was accepted")
        return self._auth_result(result)

    # Channels ---------------------------------------------------------------

    @property
    def channels(self) -> Dict[ChannelId, Channel]:
        return self._channels

    def open_channel(self) -> Channel:
        """Open a new session channel and register it; raises ChannelError."""
        channel = Channel(self.session_id)
        try:
            channel_id = channel.open(self._transport, timeout=self._options.timeout)
        except TransportError as e:
            raise ChannelError(f"cannot init channel: {e}")
        self._channels[channel_id] = channel
        return channel

    def get_channel(self, channel_id: Union[ChannelId, str]) -> Optional[Channel]:
        if isinstance(channel_id, str):
            channel_id = ChannelId.parse(channel_id)
        return self._channels.get(channel_id)

    def close_channel(self, channel_id: Union[ChannelId, str]) -> bool:
        if isinstance(channel_id, str):
            channel_id = ChannelId.parse(channel_id)
        channel = self._channels.pop(channel_id, None)
        if channel is None:
            return False
        channel.close()
        return True

    # Execution --------------------------------------------------------------

    def execute(self, commands: Iterable[RemoteCommand], parallel: int = DEFAULT_PARALLEL,
                timeout: float = DEFAULT_COMMAND_TIMEOUT,
                timeout_nodata: float = DEFAULT_NODATA_TIMEOUT,
                select_wait: Optional[float] = None) -> SshStatus:
        """Run ``commands`` over parallel channels until every callback has fired."""
        try:
            scheduler = CommandScheduler(self, parallel=parallel, timeout=timeout,
                                         timeout_nodata=timeout_nodata, select_wait=select_wait)
        except ConfigError as e:
            self._set_error(e)
            return SshStatus.ERROR
        scheduler.run(commands)
        return SshStatus.OK
