"""MCP server exposing parallel SSH command execution."""
from typing import List, Optional

from fastmcp import FastMCP

from .constants import AuthResult, SshStatus
from .datastructures import CommandResult, RemoteCommand
from .errors import ErrorPolicy
from .logging_manager import configure_file_logging
from .session import Session

# Stdout carries the MCP protocol, so logs go to a file
logger = configure_file_logging().getChild('server')

mcp = FastMCP("ssh-session")


def _open_session(host: str, username: Optional[str], port: Optional[int],
                  key_filename: Optional[str], timeout: Optional[int]) -> Session:
    session = Session(error_policy=ErrorPolicy.LOG)
    options = {'Host': host}
    if username:
        options['User'] = username
    if port:
        options['Port'] = port
    if key_filename:
        options['Identity'] = key_filename
    if timeout:
        options['Timeout'] = timeout
    session.options(**options)
    return session


def format_results(results: List[CommandResult]) -> str:
    blocks = []
    for result in results:
        if result.ok:
            block = f"$ {result.command}\nExit Status: {result.exit_code}\n"
        else:
            block = f"$ {result.command}\nStatus: {result.status.value} ({result.error_message})\n"
        if result.stdout:
            block += f"\nSTDOUT:\n{result.stdout}\n"
        if result.stderr:
            block += f"\nSTDERR:\n{result.stderr}\n"
        blocks.append(block)
    return "\n".join(blocks)


def run_batch(host: str, commands: List[str], username: Optional[str] = None,
              password: Optional[str] = None, key_filename: Optional[str] = None,
              port: Optional[int] = None, parallel: int = 4, timeout: int = 300,
              timeout_nodata: int = 120, skip_key_problem: bool = False,
              connect_timeout: Optional[int] = None) -> str:
    """Connect, authenticate and run ``commands``; returns a text report."""
    logger.info(f"[BATCH] host={host}, commands={len(commands)}, parallel={parallel}")
    with _open_session(host, username, port, key_filename, connect_timeout) as session:
        if session.error():
            return f"Error: {session.error()}"
        if session.connect(skip_key_problem=skip_key_problem) != SshStatus.OK:
            return f"Error: {session.error()}"

        if password:
            auth = session.auth_password(password)
        else:
            auth = session.auth_publickey_auto()
        if auth != AuthResult.SUCCESS:
            return f"Error: authentication failed ({auth.name}) {session.error() or ''}".rstrip()

        results: List[Optional[CommandResult]] = [None] * len(commands)

        def collect(result: CommandResult) -> None:
            results[result.userdata] = result

        batch = [RemoteCommand(command, callback=collect, userdata=index)
                 for index, command in enumerate(commands)]
        if session.execute(batch, parallel=parallel, timeout=timeout,
                           timeout_nodata=timeout_nodata) != SshStatus.OK:
            return f"Error: {session.error()}"

    return format_results([r for r in results if r is not None])


@mcp.tool()
def run_commands(
    host: str,
    commands: List[str],
    username: Optional[str] = None,
    password: Optional[str] = None,
    key_filename: Optional[str] = None,
    port: Optional[int] = None,
    parallel: int = 4,
    timeout: int = 300,
    timeout_nodata: int = 120,
    skip_key_problem: bool = False,
) -> str:
    """Run several commands on one SSH host in parallel.

    All commands share a single connection; each gets its own channel. Up to
    ``parallel`` commands run at once and the rest wait their turn in order.

    Args:
        host: Hostname, IP address, or SSH config alias
        commands: Commands to execute, one per channel
        username: SSH username (optional, will use SSH config or current user)
        password: Password (optional, public key auth is used otherwise)
        key_filename: Path to SSH key file (optional)
        port: SSH port (optional, will use SSH config or default 22)
        parallel: Maximum commands running at once (default: 4)
        timeout: Overall per-command timeout in seconds (default: 300)
        timeout_nodata: Per-command timeout without any output in seconds (default: 120)
        skip_key_problem: Accept a changed host key for this call (default: False)
    """
    return run_batch(host, commands, username=username, password=password,
                     key_filename=key_filename, port=port, parallel=parallel,
                     timeout=timeout, timeout_nodata=timeout_nodata,
                     skip_key_problem=skip_key_problem)


def host_key_report(host: str, port: Optional[int] = None, username: Optional[str] = None) -> str:
    with _open_session(host, username, port, None, None) as session:
        if session.error():
            return f"Error: {session.error()}"
        if session.connect(connect_only=True) != SshStatus.OK:
            return f"Error: {session.error()}"
        status = session.verify_knownhost(skip_key_problem=False)
        report = (
            f"Host key state: {session.host_key_state.value}\n"
            f"Fingerprint (sha1): {session.host_key_fingerprint}\n"
        )
        if status != SshStatus.OK:
            report += f"Rejected: {session.error()}\n"
        return report


@mcp.tool()
def check_host_key(host: str, port: Optional[int] = None, username: Optional[str] = None) -> str:
    """Check a host's key against known_hosts without running anything.

    An unknown host is added to known_hosts, unless StrictHostKeyCheck is on.

    Args:
        host: Hostname, IP address, or SSH config alias
        port: SSH port (optional, will use SSH config or default 22)
        username: SSH username (optional)
    """
    return host_key_report(host, port=port, username=username)


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
