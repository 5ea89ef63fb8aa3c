"""Session configuration and the table of recognized option keys."""
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import paramiko

from .constants import DEFAULT_CONNECT_TIMEOUT, DEFAULT_PORT, LogVerbosity
from .errors import ConfigError, ErrorPolicy
from .logging_manager import apply_log_verbosity

_UINT = re.compile(r"^\d+$")


@dataclass
class SessionOptions:
    host: Optional[str] = None
    port: Optional[int] = None
    user: Optional[str] = None
    timeout: int = DEFAULT_CONNECT_TIMEOUT
    strict_host_key_check: bool = False
    ssh_dir: str = '~/.ssh'
    known_hosts: Optional[str] = None
    identity: Optional[str] = None
    log_verbosity: LogVerbosity = LogVerbosity.NOLOG
    error_policy: ErrorPolicy = ErrorPolicy.SILENT

    @property
    def ssh_dir_path(self) -> Path:
        return Path(os.path.expanduser(self.ssh_dir))

    @property
    def known_hosts_path(self) -> str:
        if self.known_hosts:
            return os.path.expanduser(self.known_hosts)
        return str(self.ssh_dir_path / 'known_hosts')


@dataclass
class ResolvedTarget:
    host: str
    port: int
    user: str
    identity: Optional[str]


def _check_uint(name: str, value: Any) -> int:
    if value is None or value == '':
        raise ConfigError(f"option '{name}' failed: please set a value")
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        if value < 0:
            raise ConfigError(f"option '{name}' failed: please set a positive number")
        return value
    if not _UINT.match(str(value)):
        raise ConfigError(f"option '{name}' failed: please set a positive number")
    return int(value)


def _check_number(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"option '{name}' failed: please set a number, not {value!r}")
    return _check_uint(name, value)


def _check_str(name: str, value: Any) -> str:
    if value is None or str(value) == '':
        raise ConfigError(f"option '{name}' failed: please set a value")
    return str(value)


def _set_host(opts: SessionOptions, value: Any) -> None:
    opts.host = _check_str('Host', value)


def _set_port(opts: SessionOptions, value: Any) -> None:
    port = _check_number('Port', value)
    if not 0 < port < 65536:
        raise ConfigError(f"option 'Port' failed: {port} is not a valid port")
    opts.port = port


def _set_user(opts: SessionOptions, value: Any) -> None:
    opts.user = _check_str('User', value)


def _set_timeout(opts: SessionOptions, value: Any) -> None:
    timeout = _check_number('Timeout', value)
    if timeout < 1:
        raise ConfigError("option 'Timeout' failed: please set at least 1 second")
    opts.timeout = timeout


def _set_strict_host_key_check(opts: SessionOptions, value: Any) -> None:
    opts.strict_host_key_check = bool(_check_uint('StrictHostKeyCheck', value))


def _set_ssh_dir(opts: SessionOptions, value: Any) -> None:
    opts.ssh_dir = _check_str('SshDir', value)


def _set_known_hosts(opts: SessionOptions, value: Any) -> None:
    opts.known_hosts = _check_str('KnownHosts', value)


def _set_identity(opts: SessionOptions, value: Any) -> None:
    opts.identity = _check_str('Identity', value)


def _set_log_verbosity(opts: SessionOptions, value: Any) -> None:
    level = _check_uint('LogVerbosity', value)
    try:
        verbosity = LogVerbosity(level)
    except ValueError:
        raise ConfigError(f"option 'LogVerbosity' failed: {level} is not between 0 and 4")
    opts.log_verbosity = verbosity
    apply_log_verbosity(verbosity)


def _set_raise_error(opts: SessionOptions, value: Any) -> None:
    if value:
        opts.error_policy = ErrorPolicy.PROPAGATE
    elif opts.error_policy == ErrorPolicy.PROPAGATE:
        opts.error_policy = ErrorPolicy.SILENT


def _set_print_error(opts: SessionOptions, value: Any) -> None:
    # Raising already reports the error, so PROPAGATE is left alone
    if opts.error_policy == ErrorPolicy.PROPAGATE:
        return
    opts.error_policy = ErrorPolicy.LOG if value else ErrorPolicy.SILENT


# Keys are matched case-insensitively
OPTION_SETTERS: Dict[str, Callable[[SessionOptions, Any], None]] = {
    'host': _set_host,
    'port': _set_port,
    'user': _set_user,
    'timeout': _set_timeout,
    'stricthostkeycheck': _set_strict_host_key_check,
    'sshdir': _set_ssh_dir,
    'knownhosts': _set_known_hosts,
    'identity': _set_identity,
    'logverbosity': _set_log_verbosity,
    'raiseerror': _set_raise_error,
    'printerror': _set_print_error,
}


def apply_option(opts: SessionOptions, key: str, value: Any) -> None:
    setter = OPTION_SETTERS.get(str(key).lower())
    if setter is None:
        raise ConfigError(f"option '{key}' is not supported")
    setter(opts, value)


def load_ssh_config(ssh_dir: Path) -> paramiko.SSHConfig:
    """Load <ssh_dir>/config if present."""
    ssh_config = paramiko.SSHConfig()
    config_path = ssh_dir / 'config'
    if config_path.exists():
        with open(config_path) as f:
            ssh_config.parse(f)
    return ssh_config


def resolve_target(opts: SessionOptions) -> ResolvedTarget:
    """Resolve connection parameters, explicit options over ssh config."""
    logger = logging.getLogger('ssh_session.options').getChild('resolve')
    if not opts.host:
        raise ConfigError("option 'Host' failed: please set a value")

    host_config = load_ssh_config(opts.ssh_dir_path).lookup(opts.host)
    resolved_host = host_config.get('hostname', opts.host)
    resolved_user = opts.user or host_config.get('user') or os.getenv('USER', 'root')
    if opts.port is not None:
        resolved_port = opts.port
    else:
        try:
            resolved_port = int(host_config.get('port', DEFAULT_PORT))
        except ValueError:
            raise ConfigError(f"invalid Port in ssh config for {opts.host}: {host_config.get('port')!r}")
    resolved_identity = opts.identity or (host_config.get('identityfile') or [None])[0]

    logger.debug(f"Resolved {opts.host} -> {resolved_user}@{resolved_host}:{resolved_port}")
    return ResolvedTarget(resolved_host, resolved_port, resolved_user, resolved_identity)
